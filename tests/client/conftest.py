import base64
import json
from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock

import pytest

from oidcflow.models.discovery import ProviderConfiguration
from oidcflow.models.registration import RegistrationResult
from oidcflow.models.security import KeyPair
from oidcflow.primitives.dpop import DPoPProofFactory

NOW = 1_700_000_000.0


def _b64(data: dict[str, Any]) -> str:
    raw = json.dumps(data).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


@pytest.fixture
def now() -> float:
    return NOW


@pytest.fixture
def discovery_document() -> dict[str, Any]:
    return {
        "issuer": "https://op.example.com",
        "authorization_endpoint": "https://op.example.com/authorize",
        "token_endpoint": "https://op.example.com/token",
        "jwks_uri": "https://op.example.com/jwks",
        "registration_endpoint": "https://op.example.com/register",
        "userinfo_endpoint": "https://op.example.com/userinfo",
        "response_types_supported": ["code", "code id_token"],
        "subject_types_supported": ["public"],
        "id_token_signing_alg_values_supported": ["RS256"],
        "scopes_supported": ["openid", "profile", "offline_access", "webid"],
        "dpop_signing_alg_values_supported": ["RS256", "ES256"],
        "solid_oidc_supported": "https://solidproject.org/TR/solid-oidc",
    }


@pytest.fixture
def configuration(discovery_document) -> ProviderConfiguration:
    return ProviderConfiguration.model_validate(discovery_document)


@pytest.fixture
def registration() -> RegistrationResult:
    return RegistrationResult(client_id="client-123")


@pytest.fixture(scope="session")
def key_pair() -> KeyPair:
    # RSA generation is slow; one key for the whole run
    return DPoPProofFactory().generate_key_pair()


@pytest.fixture
def make_id_token() -> Callable[..., str]:
    """Build an unsigned compact JWT; the client never checks signatures."""

    def _make(
        claims: dict[str, Any] | None = None,
        *,
        header: dict[str, Any] | None = None,
        **overrides: Any,
    ) -> str:
        payload = {
            "iss": "https://op.example.com",
            "sub": "user-1",
            "aud": "client-123",
            "exp": NOW + 3600,
            "iat": NOW,
        }
        payload.update(claims or {})
        payload.update(overrides)
        payload = {k: v for k, v in payload.items() if v is not None}
        return ".".join(
            [_b64(header or {"alg": "RS256", "typ": "JWT"}), _b64(payload), "sig"]
        )

    return _make


@pytest.fixture
def make_response() -> Callable[..., MagicMock]:
    """MagicMock standing in for an httpx.Response."""

    def _make(
        status_code: int = 200,
        json_data: Any = None,
        text: str | None = None,
    ) -> MagicMock:
        response = MagicMock()
        response.status_code = status_code
        if json_data is None:
            response.json.side_effect = ValueError("Expecting value")
            response.text = text or ""
        else:
            response.json.return_value = json_data
            response.text = text if text is not None else json.dumps(json_data)
        return response

    return _make
