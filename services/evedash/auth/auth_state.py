"""Anti-CSRF state for the EVE SSO login handshake.

The state token is created in /login, stored in a short-lived HTTP-only
cookie, and consumed in /callback: compared against the ``state`` query
parameter, then deleted whether or not the callback succeeds. It never
shares a cookie with the session.
"""

import secrets

from starlette.requests import Request
from starlette.responses import Response

from evedash.config import SessionConfig
from evedash.logging_config import get_logger

logger = get_logger(__name__)

STATE_TOKEN_BYTES = 32


def generate_state() -> str:
    """Generate a cryptographically random state parameter."""
    return secrets.token_urlsafe(STATE_TOKEN_BYTES)


def validate_state(returned_state: str | None, stored_state: str | None) -> bool:
    """Exact-match the callback ``state`` against the stored token.

    A missing value on either side never matches, including two missing
    values.
    """
    if not returned_state or not stored_state:
        return False
    return returned_state == stored_state


def request_is_secure(request: Request, forced: bool | None = None) -> bool:
    """Whether cookies for this request should carry the Secure attribute.

    ``forced`` comes from configuration. When unset, TLS is detected from the
    request scheme or a reverse proxy's X-Forwarded-Proto header.
    """
    if forced is not None:
        return forced
    forwarded = request.headers.get("x-forwarded-proto", "")
    if forwarded:
        return forwarded.split(",")[0].strip().lower() == "https"
    return request.url.scheme == "https"


def set_state_cookie(response: Response, state: str, config: SessionConfig, secure: bool) -> None:
    """Attach the pending state token to the login redirect."""
    response.set_cookie(
        key=config.state_cookie_name,
        value=state,
        max_age=config.state_ttl_seconds,
        httponly=True,
        secure=secure,
        samesite="lax",
        path="/",
    )


def read_state_cookie(request: Request, config: SessionConfig) -> str | None:
    return request.cookies.get(config.state_cookie_name)


def clear_state_cookie(response: Response, config: SessionConfig, secure: bool) -> None:
    """Delete the state cookie so the token cannot be replayed."""
    response.delete_cookie(
        key=config.state_cookie_name,
        httponly=True,
        secure=secure,
        samesite="lax",
        path="/",
    )
