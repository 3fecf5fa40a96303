"""Token request and response models.

Contains the token endpoint request parameters for both grants this client
uses and the parsed token response.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, InstanceOf

from oidcflow.models.discovery import ProviderConfiguration
from oidcflow.models.flow import AuthorizationResponse
from oidcflow.models.security import KeyPair


class GrantType(str, Enum):
    AUTHORIZATION_CODE = "authorization_code"
    REFRESH_TOKEN = "refresh_token"


@dataclass(frozen=True)
class TokenRequest:
    """Token endpoint request parameters (RFC 6749 Sections 4.1.3 and 6).

    ``nonce`` is the nonce of the originating authorization request; it is
    never sent, only compared against the returned ID Token. ``dpop_key`` is
    the key pair the issued access token will be bound to.
    """

    # Required fields first
    configuration: ProviderConfiguration
    grant_type: GrantType
    client_id: str

    # Grant-specific fields
    code: str | None = field(default=None, repr=False)
    code_verifier: str | None = field(default=None, repr=False)
    redirect_uri: str | None = None
    refresh_token: str | None = field(default=None, repr=False)

    # Optional fields with defaults last
    client_secret: str | None = field(default=None, repr=False)
    scope: str | None = None
    nonce: str | None = None
    dpop_key: KeyPair | None = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.grant_type is GrantType.AUTHORIZATION_CODE:
            for name in ("code", "code_verifier", "redirect_uri"):
                if not getattr(self, name):
                    raise ValueError(f"authorization_code grant requires {name}")
        elif self.grant_type is GrantType.REFRESH_TOKEN:
            if not self.refresh_token:
                raise ValueError("refresh_token grant requires refresh_token")

    @classmethod
    def for_authorization_code(
        cls,
        response: AuthorizationResponse,
        dpop_key: KeyPair | None = None,
    ) -> TokenRequest:
        request = response.request
        return cls(
            configuration=request.configuration,
            grant_type=GrantType.AUTHORIZATION_CODE,
            client_id=request.client_id,
            client_secret=request.client_secret,
            code=response.authorization_code,
            code_verifier=request.code_verifier,
            redirect_uri=request.redirect_url,
            nonce=request.nonce,
            dpop_key=dpop_key,
        )

    @classmethod
    def for_refresh(
        cls,
        configuration: ProviderConfiguration,
        refresh_token: str,
        client_id: str,
        client_secret: str | None = None,
        dpop_key: KeyPair | None = None,
        scope: str | None = None,
    ) -> TokenRequest:
        return cls(
            configuration=configuration,
            grant_type=GrantType.REFRESH_TOKEN,
            client_id=client_id,
            client_secret=client_secret,
            refresh_token=refresh_token,
            scope=scope,
            dpop_key=dpop_key,
        )

    @property
    def token_endpoint(self) -> str:
        return self.configuration.token_endpoint

    def to_form_data(self) -> dict[str, str]:
        """Convert to form data for application/x-www-form-urlencoded request."""
        data = {"grant_type": self.grant_type.value}

        if self.grant_type is GrantType.AUTHORIZATION_CODE:
            data["code"] = self.code
            data["redirect_uri"] = self.redirect_uri
            data["code_verifier"] = self.code_verifier
        else:
            data["refresh_token"] = self.refresh_token
            if self.scope:
                data["scope"] = self.scope

        data["client_id"] = self.client_id
        # client_secret_post
        if self.client_secret:
            data["client_secret"] = self.client_secret

        return data


class TokenResponse(BaseModel):
    """Successful token endpoint response (RFC 6749 Section 5.1).

    Unknown top-level members are preserved in ``additional_parameters``.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    access_token: str = Field(repr=False)
    token_type: str
    expires_at: float | None = None  # Unix timestamp
    id_token: str | None = Field(default=None, repr=False)
    refresh_token: str | None = Field(default=None, repr=False)
    scope: str | None = None
    dpop_key: InstanceOf[KeyPair] | None = Field(
        default=None, repr=False, exclude=True
    )

    @classmethod
    def from_response(
        cls,
        data: dict[str, Any],
        dpop_key: KeyPair | None = None,
        now: float | None = None,
    ) -> TokenResponse:
        """Build from a token endpoint JSON body, turning ``expires_in`` into
        an absolute ``expires_at``."""
        data = {k: v for k, v in data.items() if k not in ("expires_at", "dpop_key")}
        expires_in = data.pop("expires_in", None)
        expires_at = None
        if expires_in is not None:
            now = time.time() if now is None else now
            expires_at = now + float(expires_in)
        return cls(**data, expires_at=expires_at, dpop_key=dpop_key)

    @property
    def additional_parameters(self) -> dict[str, Any]:
        return dict(self.model_extra or {})

    @property
    def is_dpop_bound(self) -> bool:
        return self.token_type.lower() == "dpop"

    def is_expired(self, now: float | None = None, leeway: float = 0.0) -> bool:
        """Check if the access token is expired, ``leeway`` seconds early."""
        if self.expires_at is None:
            return False
        now = time.time() if now is None else now
        return now >= self.expires_at - leeway

    def can_refresh(self) -> bool:
        return bool(self.refresh_token)
