"""
Configuration management for the evedash API server.

Non-secret configuration loaded from YAML file, secrets from environment variables.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def yaml_config_settings_source() -> dict[str, Any]:
    """Load configuration from YAML file."""
    config_path = Path("/etc/evedash/config.yaml")
    if config_path.exists():
        with open(config_path) as f:
            return yaml.safe_load(f) or {}
    return {}


# --- EVE SSO Configuration ---


DEFAULT_SCOPES = [
    "publicData",
    "esi-location.read_location.v1",
    "esi-location.read_ship_type.v1",
    "esi-location.read_online.v1",
    "esi-skills.read_skills.v1",
    "esi-skills.read_skillqueue.v1",
]


class EVESSOConfig(BaseModel):
    """EVE Online SSO (OAuth2 authorization code) client configuration."""

    client_id: str = Field(
        default="", description="Application client ID from developers.eveonline.com"
    )
    client_secret: str = Field(
        default="",
        description="Application secret key (set via EVEDASH_SSO__CLIENT_SECRET)",
        repr=False,
    )
    callback_url: str = Field(
        default="http://localhost:3000/api/auth/eve/callback",
        description="Callback URL registered with the EVE developer application",
    )
    scopes: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SCOPES),
        description="ESI scopes to request, in order",
    )
    authorize_url: str = Field(default="https://login.eveonline.com/v2/oauth/authorize")
    token_url: str = Field(default="https://login.eveonline.com/v2/oauth/token")
    verify_url: str = Field(default="https://login.eveonline.com/oauth/verify")
    timeout_seconds: float = Field(
        default=15.0,
        description="Timeout for token exchange and verification calls",
    )


# --- Session Configuration ---


class SessionConfig(BaseModel):
    """Browser session cookie configuration."""

    cookie_name: str = Field(default="eve_session")
    state_cookie_name: str = Field(default="eve_sso_state")
    state_ttl_seconds: int = Field(default=600, description="Lifetime of the login state cookie")
    cookie_secure: bool | None = Field(
        default=None,
        description="Force the Secure cookie attribute. None detects TLS from the request.",
    )
    secret_key: str = Field(
        default="",
        description="Fernet key used to encrypt the session cookie. Generated at startup if empty "
        "(sessions are then lost on restart). "
        "Generate with: python -c 'from cryptography.fernet import Fernet; "
        "print(Fernet.generate_key().decode())'",
        repr=False,
    )


# --- ESI Configuration ---


class ESIConfig(BaseModel):
    """EVE Swagger Interface (ESI) client configuration."""

    base_url: str = Field(default="https://esi.evetech.net/latest")
    datasource: str = Field(default="tranquility")
    timeout_seconds: float = Field(default=15.0)
    image_base_url: str = Field(default="https://images.evetech.net")


# --- CORS Configuration ---


class CORSConfig(BaseModel):
    """CORS (Cross-Origin Resource Sharing) configuration."""

    allow_origins: list[str] = Field(
        default_factory=list,
        description="Allowed origins. Empty list means CORS middleware is disabled.",
    )
    allow_credentials: bool = Field(
        default=True, description="Allow credentials (cookies, auth headers)"
    )
    allow_methods: list[str] = Field(
        default=["GET", "POST", "OPTIONS"],
        description="Allowed HTTP methods",
    )
    allow_headers: list[str] = Field(
        default=["Content-Type", "X-Request-ID"],
        description="Allowed request headers",
    )


# --- Main Settings ---


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="EVEDASH_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="evedash-api")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=True, description="JSON logging in production")
    app_base_url: str = Field(
        default="http://localhost:3000",
        description="Dashboard URL the browser is sent back to after login",
    )

    # EVE SSO
    sso: EVESSOConfig = Field(default_factory=EVESSOConfig)

    # Sessions
    session: SessionConfig = Field(default_factory=SessionConfig)

    # ESI
    esi: ESIConfig = Field(default_factory=ESIConfig)

    # CORS
    cors: CORSConfig = Field(default_factory=CORSConfig)

    # API
    api_prefix: str = Field(default="/api")

    def startup_problems(self) -> list[str]:
        """Return configuration problems worth reporting once at startup."""
        problems = []
        if not self.sso.client_id:
            problems.append("EVEDASH_SSO__CLIENT_ID is not set; login will answer config_error")
        if not self.sso.client_secret:
            problems.append(
                "EVEDASH_SSO__CLIENT_SECRET is not set; callbacks will answer config_error"
            )
        if not self.session.secret_key:
            problems.append(
                "EVEDASH_SESSION__SECRET_KEY is not set; using an ephemeral key, "
                "sessions will not survive a restart"
            )
        return problems

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: Any,
        env_settings: Any,
        dotenv_settings: Any,
        file_secret_settings: Any,
    ) -> tuple[Any, ...]:
        """Customize settings sources: env vars override YAML config."""
        return (
            init_settings,
            env_settings,
            yaml_config_settings_source,
            dotenv_settings,
            file_secret_settings,
        )


# Global settings instance
settings = Settings()
