"""EVE Online SSO client.

Builds the authorization redirect, exchanges the callback code for tokens
(server-to-server, HTTP Basic with the application's client id and secret),
and resolves the character behind an access token via the verify endpoint.

The client holds no per-user state; one instance serves every request.
"""

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

import httpx

from evedash.auth.auth_state import validate_state
from evedash.auth.errors import (
    ConfigurationError,
    ExchangeError,
    ExchangeErrorKind,
    ExchangeNetworkError,
    VerifyError,
)
from evedash.config import EVESSOConfig
from evedash.logging_config import get_logger

logger = get_logger(__name__)

# Provider error bodies can be large HTML pages; only the head is logged.
_LOGGED_BODY_LIMIT = 500


@dataclass
class AuthorizationRequest:
    """Data needed to redirect the user to EVE SSO."""

    authorize_url: str
    state: str


@dataclass
class TokenGrant:
    """Tokens returned by the SSO token endpoint."""

    access_token: str = field(repr=False)
    token_type: str
    expires_in: int
    refresh_token: str | None = field(default=None, repr=False)


@dataclass(frozen=True)
class Identity:
    """The authenticated character, as reported by the verify endpoint.

    ``character_owner_hash`` changes only when the character is transferred
    to another account; it, not the name, is the stable per-account key.
    """

    character_id: int
    character_name: str
    character_owner_hash: str
    scopes: frozenset[str] = frozenset()

    def to_dict(self) -> dict[str, Any]:
        return {
            "character_id": self.character_id,
            "character_name": self.character_name,
            "character_owner_hash": self.character_owner_hash,
            "scopes": sorted(self.scopes),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Identity":
        return cls(
            character_id=int(data["character_id"]),
            character_name=str(data["character_name"]),
            character_owner_hash=str(data["character_owner_hash"]),
            scopes=frozenset(data.get("scopes") or ()),
        )


def parse_scopes(raw: str | None) -> frozenset[str]:
    """Split a space-delimited scope string into a set.

    Irregular spacing is ignored and an empty string gives an empty set.
    """
    if not raw:
        return frozenset()
    return frozenset(raw.split())


def build_authorize_url(
    client_id: str,
    redirect_uri: str,
    scopes: list[str],
    state: str,
    authorize_endpoint: str = "https://login.eveonline.com/v2/oauth/authorize",
) -> str:
    """Build the SSO authorization URL.

    Raises:
        ConfigurationError: if ``client_id`` is empty.
    """
    if not client_id:
        raise ConfigurationError("EVE SSO client_id is not configured")

    params = {
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "client_id": client_id,
        "scope": " ".join(scopes),
        "state": state,
    }
    return f"{authorize_endpoint}?{urlencode(params)}"


class EVESSOClient:
    """OAuth2 authorization code client for login.eveonline.com."""

    def __init__(self, config: EVESSOConfig) -> None:
        self._config = config

    @property
    def config(self) -> EVESSOConfig:
        return self._config

    def build_authorization_request(self, state: str) -> AuthorizationRequest:
        """Build the redirect for a fresh login attempt."""
        authorize_url = build_authorize_url(
            client_id=self._config.client_id,
            redirect_uri=self._config.callback_url,
            scopes=self._config.scopes,
            state=state,
            authorize_endpoint=self._config.authorize_url,
        )
        return AuthorizationRequest(authorize_url=authorize_url, state=state)

    async def exchange_code(
        self,
        code: str | None,
        returned_state: str | None,
        stored_state: str | None,
        error: str | None = None,
    ) -> TokenGrant:
        """Exchange a callback authorization code for tokens.

        Checks run in a fixed order and the first failure wins: provider
        error, missing code, state mismatch, missing credentials. Only then
        is the token endpoint called. Nothing is retried.

        Raises:
            ExchangeError: with the kind of the first failed check.
        """
        if error:
            raise ExchangeError(ExchangeErrorKind.PROVIDER_DENIED, error)

        if not code:
            raise ExchangeError(ExchangeErrorKind.MISSING_CODE)

        if not validate_state(returned_state, stored_state):
            raise ExchangeError(
                ExchangeErrorKind.STATE_MISMATCH,
                "stored state absent" if not stored_state else "state does not match",
            )

        if not self._config.client_id or not self._config.client_secret:
            raise ExchangeError(ExchangeErrorKind.MISSING_CREDENTIALS)

        try:
            async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as client:
                resp = await client.post(
                    self._config.token_url,
                    data={"grant_type": "authorization_code", "code": code},
                    auth=httpx.BasicAuth(self._config.client_id, self._config.client_secret),
                    headers={"Accept": "application/json"},
                )
        except httpx.RequestError as e:
            logger.error("Token endpoint unreachable", url=self._config.token_url, error=str(e))
            raise ExchangeNetworkError(type(e).__name__) from e

        if not resp.is_success:
            logger.error(
                "Token exchange failed",
                status_code=resp.status_code,
                body=resp.text[:_LOGGED_BODY_LIMIT],
            )
            raise ExchangeError(
                ExchangeErrorKind.TOKEN_ENDPOINT_REJECTED, f"HTTP {resp.status_code}"
            )

        grant = _parse_token_response(resp)
        logger.debug("Token exchange succeeded", expires_in=grant.expires_in)
        return grant

    async def verify_token(self, access_token: str) -> Identity:
        """Resolve the character that owns ``access_token``.

        Raises:
            VerifyError: if the verify endpoint is unreachable, rejects the
                token, or answers with an unusable body.
        """
        try:
            async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as client:
                resp = await client.get(
                    self._config.verify_url,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.RequestError as e:
            logger.error("Verify endpoint unreachable", url=self._config.verify_url, error=str(e))
            raise VerifyError(f"verify endpoint unreachable: {type(e).__name__}") from e

        if not resp.is_success:
            logger.warning("Token verification rejected", status_code=resp.status_code)
            raise VerifyError(f"verify endpoint answered HTTP {resp.status_code}")

        try:
            data = resp.json()
            identity = Identity(
                character_id=int(data["CharacterID"]),
                character_name=str(data["CharacterName"]),
                character_owner_hash=str(data["CharacterOwnerHash"]),
                scopes=parse_scopes(data.get("Scopes")),
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Malformed verify response", error=str(e))
            raise VerifyError("malformed verify response") from e

        logger.info(
            "EVE SSO verification successful",
            character_id=identity.character_id,
            character_name=identity.character_name,
            scopes=sorted(identity.scopes),
        )
        return identity


def _parse_token_response(resp: httpx.Response) -> TokenGrant:
    """Build a TokenGrant, rejecting bodies without a usable token."""
    try:
        data = resp.json()
        access_token = data["access_token"]
        expires_in = int(data["expires_in"])
    except (ValueError, KeyError, TypeError) as e:
        logger.error("Malformed token response", error=str(e))
        raise ExchangeError(
            ExchangeErrorKind.TOKEN_ENDPOINT_REJECTED, "malformed token response"
        ) from e

    if not access_token or expires_in <= 0:
        logger.error("Unusable token response", expires_in=expires_in)
        raise ExchangeError(ExchangeErrorKind.TOKEN_ENDPOINT_REJECTED, "unusable token response")

    return TokenGrant(
        access_token=access_token,
        token_type=data.get("token_type", "Bearer"),
        expires_in=expires_in,
        refresh_token=data.get("refresh_token"),
    )
