"""Authorization flow models for the OpenID Connect code flow.

Contains models for authorization requests and callback handling.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import urlencode, urlparse

from oidcflow.models.discovery import ProviderConfiguration

RESPONSE_TYPE_CODE = "code"
RESPONSE_TYPE_CODE_ID_TOKEN = "code id_token"
SUPPORTED_RESPONSE_TYPES = (RESPONSE_TYPE_CODE, RESPONSE_TYPE_CODE_ID_TOKEN)


class AuthorizationStatus(str, Enum):
    IDLE = "idle"
    REQUESTED = "requested"
    AWAITING_CALLBACK = "awaiting_callback"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class AuthorizationRequest:
    """Authorization request parameters for one authorization attempt."""

    configuration: ProviderConfiguration
    client_id: str
    redirect_url: str
    scope: str
    state: str
    nonce: str
    code_verifier: str = field(repr=False)
    code_challenge: str
    code_challenge_method: str = "S256"
    response_type: str = RESPONSE_TYPE_CODE
    client_secret: str | None = field(default=None, repr=False)
    additional_parameters: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.response_type not in SUPPORTED_RESPONSE_TYPES:
            raise ValueError(f"Unsupported response_type: {self.response_type}")
        for name in ("state", "nonce", "code_verifier", "code_challenge"):
            if not getattr(self, name):
                raise ValueError(f"Authorization request requires {name}")

    def query_parameters(self) -> dict[str, str]:
        """Parameters sent to the authorization endpoint, in wire order."""
        params = {
            "response_type": self.response_type,
            "client_id": self.client_id,
            "redirect_uri": self.redirect_url,
            "scope": self.scope,
            "state": self.state,
            "nonce": self.nonce,
            "code_challenge": self.code_challenge,
            "code_challenge_method": self.code_challenge_method,
        }
        for key, value in self.additional_parameters.items():
            params.setdefault(key, value)
        return params

    def build_authorization_url(self) -> str:
        """Build the complete authorization URL.

        ``urlencode`` applies application/x-www-form-urlencoded rules, so a
        literal ``+`` becomes ``%2B`` and spaces become ``+``.
        """
        endpoint = self.configuration.authorization_endpoint
        separator = "&" if urlparse(endpoint).query else "?"
        return f"{endpoint}{separator}{urlencode(self.query_parameters())}"

    def matches_callback(self, callback_url: str) -> bool:
        """Whether ``callback_url`` is a redirect to this request's redirect URL."""
        expected = urlparse(self.redirect_url)
        actual = urlparse(callback_url)
        return (
            actual.scheme.lower() == expected.scheme.lower()
            and actual.netloc.lower() == expected.netloc.lower()
            and actual.path == expected.path
        )


@dataclass(frozen=True)
class AuthorizationResponse:
    """Successful authorization callback.

    Holds a non-owning reference to the request it answers; the request never
    references its response.
    """

    authorization_code: str = field(repr=False)
    state: str
    request: AuthorizationRequest = field(repr=False, compare=False)
    additional_parameters: dict[str, Any] = field(default_factory=dict)

    @property
    def configuration(self) -> ProviderConfiguration:
        return self.request.configuration
