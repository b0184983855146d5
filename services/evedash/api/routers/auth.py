"""EVE SSO authentication router.

Browser flow:
    GET  /api/auth/eve/login      set state cookie, 302 to EVE SSO
    GET  /api/auth/eve/callback   exchange code, verify, set session cookie,
                                  302 back to the dashboard
    POST /api/auth/eve/logout     clear the session cookie
    GET  /api/auth/eve/session    current character, or null

The callback either writes a complete session or none at all. Every failure
is turned into a redirect to the dashboard with an ``error`` query
parameter; nothing is retried.
"""

from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from evedash.api.dependencies import get_app_settings, get_session_store, get_sso_client
from evedash.auth.auth_state import (
    clear_state_cookie,
    generate_state,
    read_state_cookie,
    request_is_secure,
    set_state_cookie,
)
from evedash.auth.errors import ConfigurationError, ExchangeError, StoreError, VerifyError
from evedash.auth.sessions import SessionStore, materialize_session, utc_now
from evedash.auth.sso import EVESSOClient, Identity
from evedash.config import Settings
from evedash.logging_config import get_logger

router = APIRouter(prefix="/auth/eve", tags=["auth"])
logger = get_logger(__name__)


# --- Pydantic models ---


class SessionUser(BaseModel):
    character_id: int
    character_name: str
    character_owner_hash: str
    scopes: list[str]
    portrait_url: str


class SessionResponse(BaseModel):
    user: SessionUser | None = None


# --- Endpoints ---


@router.get("/login")
async def login(
    request: Request,
    app_settings: Settings = Depends(get_app_settings),
    sso: EVESSOClient = Depends(get_sso_client),
) -> Response:
    """Start a fresh login attempt with a new state token."""
    state = generate_state()

    try:
        auth_request = sso.build_authorization_request(state)
    except ConfigurationError as e:
        logger.error("Login refused: SSO not configured", error=str(e))
        return JSONResponse(status_code=500, content={"error": "config_error"})

    response = RedirectResponse(url=auth_request.authorize_url, status_code=302)
    set_state_cookie(
        response,
        state,
        app_settings.session,
        secure=request_is_secure(request, app_settings.session.cookie_secure),
    )

    logger.info("Login: redirecting to EVE SSO", scopes=app_settings.sso.scopes)
    return response


@router.get("/callback")
async def callback(
    request: Request,
    code: str | None = Query(None, description="Authorization code from EVE SSO"),
    state: str | None = Query(None, description="State echoed back by EVE SSO"),
    error: str | None = Query(None, description="Error code when the user or SSO refused"),
    app_settings: Settings = Depends(get_app_settings),
    sso: EVESSOClient = Depends(get_sso_client),
    store: SessionStore = Depends(get_session_store),
) -> RedirectResponse:
    """Handle the EVE SSO redirect back to the application."""
    secure = request_is_secure(request, app_settings.session.cookie_secure)
    stored_state = read_state_cookie(request, app_settings.session)

    try:
        grant = await sso.exchange_code(code, state, stored_state, error=error)
        identity = await sso.verify_token(grant.access_token)
        now = utc_now()
        session = materialize_session(identity, grant, now)

        response = _dashboard_redirect(app_settings.app_base_url, login="success")
        store.write(response, session, now, secure=secure)
        logger.info(
            "Callback: session created",
            character_id=identity.character_id,
            character_name=identity.character_name,
            expires_at=session.expires_at.isoformat(),
        )
    except ExchangeError as e:
        log = logger.error if e.is_configuration_error or e.is_transport_error else logger.warning
        log("Callback: token exchange failed", kind=e.kind.value, detail=e.detail)
        response = _dashboard_redirect(app_settings.app_base_url, error=e.redirect_code)
    except VerifyError as e:
        logger.warning("Callback: token verification failed", error=str(e))
        response = _dashboard_redirect(app_settings.app_base_url, error=VerifyError.redirect_code)
    except Exception:
        logger.exception("Callback: unexpected error")
        response = _dashboard_redirect(app_settings.app_base_url, error="callback_error")

    # The state token is single-use whatever the outcome.
    clear_state_cookie(response, app_settings.session, secure=secure)
    return response


@router.post("/logout")
async def logout(
    request: Request,
    app_settings: Settings = Depends(get_app_settings),
    store: SessionStore = Depends(get_session_store),
) -> JSONResponse:
    """Drop the session cookie."""
    try:
        response = JSONResponse(content={"success": True})
        store.clear(response, secure=request_is_secure(request, app_settings.session.cookie_secure))
    except Exception:
        logger.exception("Logout failed")
        return JSONResponse(status_code=500, content={"error": "Logout failed"})

    logger.info("Session cleared via logout")
    return response


@router.get("/session", response_model=SessionResponse)
async def session_info(
    request: Request,
    app_settings: Settings = Depends(get_app_settings),
    store: SessionStore = Depends(get_session_store),
) -> SessionResponse:
    """Report the logged-in character. Absent, broken or expired sessions give null."""
    try:
        session = store.read(request)
    except StoreError as e:
        logger.debug("No usable session", reason=str(e))
        return SessionResponse(user=None)

    if session.is_expired(utc_now()):
        return SessionResponse(user=None)

    return SessionResponse(user=_session_user(session.identity, app_settings.esi.image_base_url))


# --- Helpers ---


def _dashboard_redirect(base_url: str, **params: str) -> RedirectResponse:
    """302 back to the dashboard root with a status marker."""
    separator = "&" if "?" in base_url else "?"
    return RedirectResponse(url=f"{base_url}{separator}{urlencode(params)}", status_code=302)


def _session_user(identity: Identity, image_base_url: str) -> SessionUser:
    return SessionUser(
        character_id=identity.character_id,
        character_name=identity.character_name,
        character_owner_hash=identity.character_owner_hash,
        scopes=sorted(identity.scopes),
        portrait_url=f"{image_base_url.rstrip('/')}/characters/{identity.character_id}/portrait",
    )
