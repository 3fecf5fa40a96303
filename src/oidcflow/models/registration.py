"""Client registration models for OAuth 2.0 Dynamic Client Registration.

Contains models for native client metadata (RFC 7591, OpenID Connect Dynamic
Client Registration 1.0) and registration results.
"""

from __future__ import annotations

import time
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_core import PydanticCustomError

REGISTRATION_INVARIANT_ERROR = "registration_invariant"


class ClientMetadata(BaseModel):
    """Client metadata sent to the registration endpoint.

    Defaults describe a public native client using the authorization code
    grant with refresh tokens.
    """

    client_name: str
    redirect_uris: list[str] = Field(min_length=1)
    application_type: str = "native"
    response_types: list[str] = Field(default=["code"])
    grant_types: list[str] = Field(default=["authorization_code", "refresh_token"])
    token_endpoint_auth_method: str = "none"

    # Optional metadata
    scope: str | None = None
    client_uri: str | None = None
    logo_uri: str | None = None
    contacts: list[str] | None = None

    @field_validator("redirect_uris")
    @classmethod
    def validate_redirect_uris(cls, v: list[str]) -> list[str]:
        """Redirect URIs must carry a scheme; private-use schemes are allowed."""
        for uri in v:
            parsed = urlparse(uri)
            if not parsed.scheme:
                raise ValueError(f"Redirect URI must be absolute: {uri}")
            if parsed.scheme == "http" and parsed.hostname not in (
                "localhost",
                "127.0.0.1",
            ):
                raise ValueError(f"Redirect URI must not use plain HTTP: {uri}")
        return v

    def to_request_body(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True, mode="json")


class RegistrationResult(BaseModel):
    """Client information returned by the registration endpoint."""

    model_config = ConfigDict(frozen=True, extra="allow")

    client_id: str
    client_secret: str | None = None
    client_secret_expires_at: int | None = None
    client_id_issued_at: int | None = None
    registration_access_token: str | None = None
    registration_client_uri: str | None = None
    token_endpoint_auth_method: str | None = None

    @model_validator(mode="after")
    def validate_client_configuration_endpoint(self) -> RegistrationResult:
        # RFC 7591 Section 3.2.1: both or neither
        has_uri = self.registration_client_uri is not None
        has_token = self.registration_access_token is not None
        if has_uri != has_token:
            raise PydanticCustomError(
                REGISTRATION_INVARIANT_ERROR,
                "registration_client_uri and registration_access_token must "
                "appear together or not at all",
            )
        return self

    @property
    def additional_parameters(self) -> dict[str, Any]:
        return dict(self.model_extra or {})

    def is_secret_expired(self, now: float | None = None) -> bool:
        """Check if the client secret has expired.

        ``client_secret_expires_at`` of 0 means the secret never expires.
        """
        if not self.client_secret_expires_at:
            return False
        now = time.time() if now is None else now
        return now >= self.client_secret_expires_at
