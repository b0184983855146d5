"""
Top-level test configuration for evedash.
"""

import os
from collections.abc import AsyncGenerator, Callable, Iterator
from http.cookies import SimpleCookie

# Ensure test-friendly defaults
os.environ.setdefault("EVEDASH_JSON_LOGS", "false")
os.environ.setdefault("EVEDASH_LOG_LEVEL", "DEBUG")

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
import respx  # noqa: E402
from cryptography.fernet import Fernet  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from evedash.api.app import create_application  # noqa: E402
from evedash.api.dependencies import (  # noqa: E402
    get_app_settings,
    get_session_store,
    get_sso_client,
)
from evedash.auth.sessions import SessionStore  # noqa: E402
from evedash.auth.sso import EVESSOClient  # noqa: E402
from evedash.config import EVESSOConfig, SessionConfig, Settings  # noqa: E402

DASHBOARD_URL = "http://dashboard.test"


@pytest.fixture
def app_settings() -> Settings:
    """Settings with fabricated SSO credentials and a fresh session key."""
    return Settings(
        app_base_url=DASHBOARD_URL,
        sso=EVESSOConfig(
            client_id="test-client-id",
            client_secret="test-client-secret",
            callback_url=f"{DASHBOARD_URL}/api/auth/eve/callback",
        ),
        session=SessionConfig(secret_key=Fernet.generate_key().decode()),
    )


@pytest.fixture
def session_store(app_settings: Settings) -> SessionStore:
    return SessionStore(app_settings.session, Fernet(app_settings.session.secret_key.encode()))


@pytest.fixture
def sso_client(app_settings: Settings) -> EVESSOClient:
    return EVESSOClient(app_settings.sso)


@pytest_asyncio.fixture
async def client(
    app_settings: Settings, session_store: SessionStore, sso_client: EVESSOClient
) -> AsyncGenerator[AsyncClient]:
    """In-process client for the app, wired to the test settings."""
    app = create_application()
    app.dependency_overrides[get_app_settings] = lambda: app_settings
    app.dependency_overrides[get_session_store] = lambda: session_store
    app.dependency_overrides[get_sso_client] = lambda: sso_client

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        follow_redirects=False,
    ) as c:
        yield c


@pytest.fixture
def mock_http() -> Iterator[respx.MockRouter]:
    """Intercept outbound httpx calls (EVE SSO and ESI)."""
    with respx.mock(assert_all_called=False) as router:
        yield router


@pytest.fixture
def response_cookies() -> Callable[[httpx.Response], dict[str, dict[str, str]]]:
    """Parse every Set-Cookie header of a response into {name: attributes}.

    Attributes include ``value`` plus the lower-cased cookie attributes;
    flag attributes (httponly, secure) are present only when set.
    """

    def parse(response: httpx.Response) -> dict[str, dict[str, str]]:
        cookies: dict[str, dict[str, str]] = {}
        for header in response.headers.get_list("set-cookie"):
            jar: SimpleCookie = SimpleCookie()
            jar.load(header)
            for name, morsel in jar.items():
                attrs = {"value": morsel.value}
                attrs.update({k: str(v).lower() for k, v in morsel.items() if v})
                cookies[name] = attrs
        return cookies

    return parse
