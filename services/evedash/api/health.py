"""
Health check endpoints for the evedash API server.

Provides /health (liveness) and /ready (readiness) endpoints.
"""

from fastapi import APIRouter, Depends, Response, status

from evedash.api.dependencies import get_app_settings
from evedash.auth.errors import ConfigurationError
from evedash.auth.sessions import build_fernet
from evedash.config import Settings
from evedash.logging_config import get_logger

router = APIRouter(tags=["health"])
logger = get_logger(__name__)


@router.get("/health", status_code=status.HTTP_200_OK)
async def health() -> dict[str, str]:
    """Liveness probe endpoint.

    Returns 200 if the API server is running.
    """
    return {"status": "healthy"}


@router.get("/ready", status_code=status.HTTP_200_OK)
async def ready(
    response: Response,
    app_settings: Settings = Depends(get_app_settings),
) -> dict[str, str | dict[str, str]]:
    """Readiness probe endpoint.

    Ready once EVE SSO credentials are configured and the session key, if
    set, is a usable Fernet key. An ephemeral session key is reported but
    does not block readiness.
    """
    checks: dict[str, str] = {}

    sso = app_settings.sso
    checks["sso"] = "configured" if sso.client_id and sso.client_secret else "missing_credentials"

    secret_key = app_settings.session.secret_key
    if not secret_key:
        checks["session_key"] = "ephemeral"
    else:
        try:
            build_fernet(secret_key)
            checks["session_key"] = "configured"
        except ConfigurationError:
            checks["session_key"] = "invalid"

    if checks["sso"] != "configured" or checks["session_key"] == "invalid":
        logger.warning("Readiness check failed", checks=checks)
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not ready", "checks": checks}

    return {"status": "ready", "checks": checks}
