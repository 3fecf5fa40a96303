import pytest
from pydantic import ValidationError

from oidcflow.settings import ClientSettings


class TestClientSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("OIDCFLOW_TIMEOUT", raising=False)
        monkeypatch.delenv("OIDCFLOW_REDIRECT_URI", raising=False)

        settings = ClientSettings(_env_file=None)

        assert settings.timeout == 30.0
        assert settings.redirect_uri == "oidcflow:/callback"
        assert settings.scopes == ["openid", "offline_access"]
        assert settings.id_token_max_clock_skew == 600
        assert settings.token_refresh_leeway == 30.0

    def test_environment_overrides(self, monkeypatch):
        # Arrange
        monkeypatch.setenv("OIDCFLOW_TIMEOUT", "5")
        monkeypatch.setenv("OIDCFLOW_REDIRECT_URI", "app-scheme:/callback")
        monkeypatch.setenv("OIDCFLOW_SCOPES", '["openid", "webid"]')

        # Act
        settings = ClientSettings(_env_file=None)

        # Assert
        assert settings.timeout == 5.0
        assert settings.redirect_uri == "app-scheme:/callback"
        assert settings.scopes == ["openid", "webid"]

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            ClientSettings(_env_file=None, timeout=0)
