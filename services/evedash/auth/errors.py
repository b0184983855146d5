"""Error taxonomy for the EVE SSO login and session lifecycle.

Four families, each resolved differently by the caller:

- ConfigurationError: client credentials missing. Not user-fixable.
- ProtocolError: provider denied, state mismatch, provider rejected the code
  or the token. The handshake must restart from /login.
- TransportError: network failure or timeout talking to the provider.
- SessionError: stored session absent, malformed, expired or lacking a
  scope. Always resolved by logging in again.

Route handlers catch these at the boundary and turn them into a redirect
with an ``error`` query parameter (browser flow) or a JSON error body (API).
"""

from enum import StrEnum


class EveAuthError(Exception):
    """Base class for all login and session errors."""


class ConfigurationError(EveAuthError):
    """Client id, secret or other required SSO setting is missing."""


class ProtocolError(EveAuthError):
    """The authorization handshake cannot continue and must restart."""


class TransportError(EveAuthError):
    """The identity provider could not be reached."""


class SessionError(EveAuthError):
    """The browser has no usable session."""


# --- Token exchange ---


class ExchangeErrorKind(StrEnum):
    """Why a callback failed before a TokenGrant was produced."""

    PROVIDER_DENIED = "provider_denied"
    MISSING_CODE = "missing_code"
    STATE_MISMATCH = "state_mismatch"
    MISSING_CREDENTIALS = "missing_credentials"
    TOKEN_ENDPOINT_REJECTED = "token_endpoint_rejected"
    NETWORK_FAILURE = "network_failure"


# Redirect ``error`` code sent back to the dashboard for each kind.
EXCHANGE_REDIRECT_CODES: dict[ExchangeErrorKind, str] = {
    ExchangeErrorKind.PROVIDER_DENIED: "access_denied",
    ExchangeErrorKind.MISSING_CODE: "no_code",
    ExchangeErrorKind.STATE_MISMATCH: "invalid_state",
    ExchangeErrorKind.MISSING_CREDENTIALS: "config_error",
    ExchangeErrorKind.TOKEN_ENDPOINT_REJECTED: "token_exchange_failed",
    ExchangeErrorKind.NETWORK_FAILURE: "token_exchange_failed",
}


class ExchangeError(ProtocolError):
    """Authorization code exchange failed.

    ``detail`` is for logs only. For PROVIDER_DENIED it holds the provider's
    own error code, which is passed back to the browser unchanged.
    """

    def __init__(self, kind: ExchangeErrorKind, detail: str = "") -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)

    @property
    def redirect_code(self) -> str:
        if self.kind is ExchangeErrorKind.PROVIDER_DENIED and self.detail:
            return self.detail
        return EXCHANGE_REDIRECT_CODES[self.kind]

    @property
    def is_configuration_error(self) -> bool:
        return self.kind is ExchangeErrorKind.MISSING_CREDENTIALS

    @property
    def is_transport_error(self) -> bool:
        return self.kind is ExchangeErrorKind.NETWORK_FAILURE


class ExchangeNetworkError(ExchangeError, TransportError):
    """The token endpoint could not be reached or timed out."""

    def __init__(self, detail: str = "") -> None:
        super().__init__(ExchangeErrorKind.NETWORK_FAILURE, detail)


class VerifyError(ProtocolError):
    """The verification endpoint rejected the access token."""

    redirect_code = "verification_failed"


# --- Session store ---


class StoreErrorKind(StrEnum):
    ABSENT = "absent"
    MALFORMED = "malformed"


class StoreError(SessionError):
    """The session cookie is missing or could not be decoded."""

    def __init__(self, kind: StoreErrorKind, detail: str = "") -> None:
        self.kind = kind
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)


# --- Session validation ---


class AuthError(SessionError):
    """A protected request was refused. Carries its HTTP status and message."""

    status_code = 401
    message = "Not authenticated"


class Unauthenticated(AuthError):
    pass


class Expired(AuthError):
    pass


class InsufficientScope(AuthError):
    status_code = 403

    def __init__(self, missing: set[str]) -> None:
        self.missing = frozenset(missing)
        self.message = "Insufficient permissions. Required scope: " + ", ".join(sorted(missing))
        super().__init__(self.message)
