"""Client configuration.

Values are read from the environment (``OIDCFLOW_`` prefix) or a ``.env``
file, e.g. ``OIDCFLOW_TIMEOUT=10``.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from oidcflow.services.id_token import DEFAULT_MAX_CLOCK_SKEW
from oidcflow.services.resource import DEFAULT_REFRESH_LEEWAY
from oidcflow.services.security import SCOPE_OFFLINE_ACCESS, SCOPE_OPENID


class ClientSettings(BaseSettings):
    """Settings for an OIDCClient."""

    model_config = SettingsConfigDict(
        env_prefix="OIDCFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds")
    redirect_uri: str = Field(
        default="oidcflow:/callback",
        description="Private-use scheme redirect URI for the authorization callback",
    )
    client_name: str = Field(default="oidcflow client")
    scopes: list[str] = Field(
        default_factory=lambda: [SCOPE_OPENID, SCOPE_OFFLINE_ACCESS],
        description="Scopes requested at authorization",
    )
    id_token_max_clock_skew: float = Field(
        default=DEFAULT_MAX_CLOCK_SKEW,
        ge=0,
        description="Allowed distance between now and the ID Token iat, in seconds",
    )
    token_refresh_leeway: float = Field(
        default=DEFAULT_REFRESH_LEEWAY,
        ge=0,
        description="Seconds before expiry an access token is refreshed",
    )
