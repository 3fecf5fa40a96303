"""Discovery-related models for OpenID Connect provider metadata.

Contains the immutable snapshot of an OpenID Provider's discovery document
(OpenID Connect Discovery 1.0, Section 3).
"""

from __future__ import annotations

from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

WELL_KNOWN_PATH = "/.well-known/openid-configuration"

REQUIRED_FIELDS = (
    "issuer",
    "authorization_endpoint",
    "token_endpoint",
    "jwks_uri",
    "response_types_supported",
    "subject_types_supported",
    "id_token_signing_alg_values_supported",
)


def is_absolute_url(value: str) -> bool:
    parsed = urlparse(value)
    return bool(parsed.scheme and parsed.netloc)


class ProviderConfiguration(BaseModel):
    """OpenID Provider metadata (OpenID Connect Discovery 1.0).

    Created once per discovery call and never mutated. Known fields are
    parsed strongly; every other top-level key is kept verbatim and
    available through ``additional_parameters``.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    # Required
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str
    response_types_supported: list[str] = Field(min_length=1)
    subject_types_supported: list[str] = Field(min_length=1)
    id_token_signing_alg_values_supported: list[str] = Field(min_length=1)

    # Optional endpoints
    registration_endpoint: str | None = None
    userinfo_endpoint: str | None = None
    end_session_endpoint: str | None = None

    # Optional capabilities
    scopes_supported: list[str] | None = None
    grant_types_supported: list[str] | None = None
    code_challenge_methods_supported: list[str] | None = None
    token_endpoint_auth_methods_supported: list[str] | None = None
    dpop_signing_alg_values_supported: list[str] | None = None

    @field_validator(
        "issuer",
        "authorization_endpoint",
        "token_endpoint",
        "jwks_uri",
        "registration_endpoint",
        "userinfo_endpoint",
        "end_session_endpoint",
    )
    @classmethod
    def validate_absolute_url(cls, v: str | None) -> str | None:
        if v is not None and not is_absolute_url(v):
            raise ValueError(f"Must be an absolute URL: {v!r}")
        return v

    @property
    def additional_parameters(self) -> dict[str, Any]:
        """Discovery fields this model does not know about."""
        return dict(self.model_extra or {})

    @property
    def raw_claims(self) -> dict[str, Any]:
        """The full discovery document as received (minus absent optionals)."""
        return self.model_dump(exclude_none=True)

    def supports_scope(self, scope: str) -> bool:
        if self.scopes_supported is None:
            return True
        return scope in self.scopes_supported

    @classmethod
    def missing_fields(cls, document: dict[str, Any]) -> list[str]:
        """Required fields absent (or null) in a raw discovery document."""
        return [name for name in REQUIRED_FIELDS if document.get(name) is None]
