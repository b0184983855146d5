"""Cookie-backed session management.

The server keeps no session state. After a successful callback the verified
identity, the bearer token and the absolute expiry are serialized, encrypted
with Fernet (AES-128-CBC + HMAC-SHA256) and handed to the browser as an
HTTP-only cookie. Every protected request decodes the cookie again and
re-checks expiry and scopes; an expired session is rejected, never renewed.

Because the payload is authenticated, a client cannot extend its own
``expires`` or swap in another character's identity.
"""

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from cryptography.fernet import Fernet, InvalidToken
from starlette.requests import Request
from starlette.responses import Response

from evedash.auth.errors import (
    ConfigurationError,
    Expired,
    InsufficientScope,
    StoreError,
    StoreErrorKind,
    Unauthenticated,
)
from evedash.auth.sso import Identity, TokenGrant
from evedash.config import SessionConfig
from evedash.logging_config import get_logger

logger = get_logger(__name__)

# Bumped whenever the payload layout changes; older cookies decode as malformed.
PAYLOAD_VERSION = 1


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


@dataclass
class Session:
    """Authenticated browser session, persisted only in the session cookie."""

    identity: Identity
    access_token: str = field(repr=False)
    expires_at: datetime
    token_type: str = "Bearer"
    refresh_token: str | None = field(default=None, repr=False)

    def is_expired(self, now: datetime) -> bool:
        """Valid strictly before ``expires_at``; no grace period."""
        return now >= self.expires_at

    def remaining_seconds(self, now: datetime) -> int:
        return max(int((self.expires_at - now).total_seconds()), 0)


@dataclass
class AuthenticatedCharacter:
    """What a protected endpoint gets back from session validation."""

    identity: Identity
    access_token: str = field(repr=False)

    @property
    def character_id(self) -> int:
        return self.identity.character_id


def materialize_session(identity: Identity, grant: TokenGrant, now: datetime) -> Session:
    """Combine a verified identity and a token grant into a session.

    ``expires_at`` is fixed here, from the grant's lifetime, and never
    recomputed afterwards.
    """
    return Session(
        identity=identity,
        access_token=grant.access_token,
        expires_at=now + timedelta(seconds=grant.expires_in),
        token_type=grant.token_type,
        refresh_token=grant.refresh_token,
    )


def build_fernet(secret_key: str) -> Fernet:
    """Create the cookie cipher, generating an ephemeral key when none is set.

    Raises:
        ConfigurationError: if ``secret_key`` is set but not a valid Fernet key.
    """
    if not secret_key:
        logger.warning(
            "No session key configured (EVEDASH_SESSION__SECRET_KEY). "
            "Using an ephemeral key; sessions will not survive a restart."
        )
        return Fernet(Fernet.generate_key())

    try:
        return Fernet(secret_key.encode())
    except ValueError as e:
        raise ConfigurationError("EVEDASH_SESSION__SECRET_KEY is not a valid Fernet key") from e


class SessionStore:
    """Reads, writes and validates the session cookie."""

    def __init__(self, config: SessionConfig, fernet: Fernet) -> None:
        self._config = config
        self._fernet = fernet

    @property
    def cookie_name(self) -> str:
        return self._config.cookie_name

    # --- Encoding ---

    def encode(self, session: Session) -> str:
        payload: dict[str, Any] = {
            "v": PAYLOAD_VERSION,
            "identity": session.identity.to_dict(),
            "access_token": session.access_token,
            "token_type": session.token_type,
            "refresh_token": session.refresh_token,
            "expires": session.expires_at.isoformat(),
        }
        return self._fernet.encrypt(json.dumps(payload).encode()).decode()

    def decode(self, raw: str | None) -> Session:
        """Decode a cookie value.

        Raises:
            StoreError: ABSENT for an empty value, MALFORMED for anything that
                does not decrypt or parse. Never any other exception.
        """
        if not raw:
            raise StoreError(StoreErrorKind.ABSENT)

        try:
            plaintext = self._fernet.decrypt(raw.encode())
        except (InvalidToken, UnicodeEncodeError):
            raise StoreError(StoreErrorKind.MALFORMED, "cookie failed authentication") from None

        try:
            data = json.loads(plaintext)
            if data.get("v") != PAYLOAD_VERSION:
                raise ValueError(f"unsupported payload version {data.get('v')!r}")
            expires_at = datetime.fromisoformat(data["expires"])
            if expires_at.tzinfo is None:
                raise ValueError("naive expiry timestamp")
            return Session(
                identity=Identity.from_dict(data["identity"]),
                access_token=str(data["access_token"]),
                expires_at=expires_at,
                token_type=data.get("token_type") or "Bearer",
                refresh_token=data.get("refresh_token"),
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise StoreError(StoreErrorKind.MALFORMED, str(e)) from None

    # --- Cookie I/O ---

    def write(self, response: Response, session: Session, now: datetime, secure: bool) -> None:
        """Set the session cookie; it lives exactly as long as the token."""
        response.set_cookie(
            key=self._config.cookie_name,
            value=self.encode(session),
            max_age=session.remaining_seconds(now),
            httponly=True,
            secure=secure,
            samesite="lax",
            path="/",
        )

    def read(self, request: Request) -> Session:
        return self.decode(request.cookies.get(self._config.cookie_name))

    def clear(self, response: Response, secure: bool) -> None:
        """Tell the browser to drop the session cookie immediately."""
        response.delete_cookie(
            key=self._config.cookie_name,
            httponly=True,
            secure=secure,
            samesite="lax",
            path="/",
        )

    # --- Validation ---

    def validate(
        self,
        raw_cookie: str | None,
        required_scopes: frozenset[str] | set[str] = frozenset(),
        now: datetime | None = None,
    ) -> AuthenticatedCharacter:
        """Gate a protected request on the session cookie.

        Detect-only: the stored session is never modified or extended.

        Raises:
            Unauthenticated: cookie absent or malformed.
            Expired: ``now >= expires_at``.
            InsufficientScope: a required scope was not granted.
        """
        try:
            session = self.decode(raw_cookie)
        except StoreError as e:
            if e.kind is StoreErrorKind.MALFORMED:
                logger.info("Rejected malformed session cookie", reason=str(e))
            raise Unauthenticated() from e

        now = now or utc_now()
        if session.is_expired(now):
            logger.info(
                "Rejected expired session",
                character_id=session.identity.character_id,
                expired_at=session.expires_at.isoformat(),
            )
            raise Expired()

        missing = set(required_scopes) - session.identity.scopes
        if missing:
            logger.info(
                "Rejected session lacking scope",
                character_id=session.identity.character_id,
                missing=sorted(missing),
            )
            raise InsufficientScope(missing)

        return AuthenticatedCharacter(identity=session.identity, access_token=session.access_token)
