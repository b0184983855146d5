"""FastAPI dependencies for configuration, the SSO client and session auth.

The SSO client and the session store are built once from ``Settings`` (at
startup, or lazily on first use) and shared by every request; neither holds
per-user state. Protected routes declare the scopes they need with
``require_character(...)``, which is the single place the session cookie is
decoded and checked.
"""

from collections.abc import Awaitable, Callable

from fastapi import Depends, Request

from evedash.auth.sessions import AuthenticatedCharacter, SessionStore, build_fernet
from evedash.auth.sso import EVESSOClient
from evedash.config import ESIConfig, Settings, settings
from evedash.logging_config import get_logger

logger = get_logger(__name__)

# Module-level component references, initialized in lifespan
_sso_client: EVESSOClient | None = None
_session_store: SessionStore | None = None


def init_auth(app_settings: Settings) -> None:
    """Build the SSO client and session store from configuration."""
    global _sso_client, _session_store  # noqa: PLW0603
    _sso_client = EVESSOClient(app_settings.sso)
    fernet = build_fernet(app_settings.session.secret_key)
    _session_store = SessionStore(app_settings.session, fernet)
    logger.info(
        "Auth components initialized",
        client_configured=bool(app_settings.sso.client_id),
        scopes=app_settings.sso.scopes,
    )


def get_app_settings() -> Settings:
    return settings


def get_esi_config(app_settings: Settings = Depends(get_app_settings)) -> ESIConfig:
    return app_settings.esi


def get_sso_client() -> EVESSOClient:
    if _sso_client is None:
        init_auth(get_app_settings())
    assert _sso_client is not None
    return _sso_client


def get_session_store() -> SessionStore:
    if _session_store is None:
        init_auth(get_app_settings())
    assert _session_store is not None
    return _session_store


def require_character(*scopes: str) -> Callable[..., Awaitable[AuthenticatedCharacter]]:
    """Dependency factory: a valid session holding every scope in ``scopes``.

    Usage:
        @router.get("/location")
        async def location(
            character: AuthenticatedCharacter = Depends(require_character(LOCATION_SCOPE)),
        ): ...

    Raises Unauthenticated, Expired or InsufficientScope; the application's
    AuthError handler renders them as 401/403 JSON.
    """
    required = frozenset(scopes)

    async def dependency(
        request: Request,
        store: SessionStore = Depends(get_session_store),
    ) -> AuthenticatedCharacter:
        return store.validate(request.cookies.get(store.cookie_name), required)

    return dependency
