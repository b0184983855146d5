"""Tests for settings loading and startup checks."""

from evedash.config import DEFAULT_SCOPES, Settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("EVEDASH_SSO__CLIENT_ID", raising=False)

        s = Settings()

        assert s.sso.scopes == DEFAULT_SCOPES
        assert s.sso.timeout_seconds == 15.0
        assert s.session.cookie_name == "eve_session"
        assert s.session.state_cookie_name == "eve_sso_state"
        assert s.esi.datasource == "tranquility"
        assert s.api_prefix == "/api"

    def test_nested_env_vars(self, monkeypatch):
        monkeypatch.setenv("EVEDASH_SSO__CLIENT_ID", "from-env")
        monkeypatch.setenv("EVEDASH_SSO__CLIENT_SECRET", "secret-from-env")
        monkeypatch.setenv("EVEDASH_APP_BASE_URL", "https://dash.example.test")

        s = Settings()

        assert s.sso.client_id == "from-env"
        assert s.sso.client_secret == "secret-from-env"
        assert s.app_base_url == "https://dash.example.test"

    def test_secrets_hidden_from_repr(self):
        s = Settings(
            sso={"client_id": "id", "client_secret": "very-secret"},
            session={"secret_key": "also-secret"},
        )

        assert "very-secret" not in repr(s)
        assert "also-secret" not in repr(s)


class TestStartupProblems:
    def test_fully_configured(self, app_settings):
        assert app_settings.startup_problems() == []

    def test_everything_missing(self):
        s = Settings(sso={"client_id": "", "client_secret": ""}, session={"secret_key": ""})

        problems = s.startup_problems()

        assert len(problems) == 3
        assert any("EVEDASH_SSO__CLIENT_ID" in p for p in problems)
        assert any("EVEDASH_SSO__CLIENT_SECRET" in p for p in problems)
        assert any("EVEDASH_SESSION__SECRET_KEY" in p for p in problems)
