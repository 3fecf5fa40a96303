"""Tests for token exchange.

High-impact tests covering the token endpoint interaction:
- Authorization code exchange with PKCE and a DPoP proof
- Refresh token grant bound to the existing key pair
- OAuth error bodies versus other failures
- ID Token validation of the response
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from authlib.jose import jwt

from oidcflow.models.errors import (
    ErrorKind,
    IDTokenRule,
    IDTokenStructuralError,
    IDTokenValidationError,
    OAuthTokenError,
    ServerError,
    TokenError,
)
from oidcflow.models.flow import AuthorizationRequest, AuthorizationResponse
from oidcflow.models.tokens import GrantType, TokenRequest, TokenResponse
from oidcflow.primitives.dpop import DPoPProofFactory
from oidcflow.services.id_token import IDTokenValidator
from oidcflow.services.tokens import FORM_CONTENT_TYPE, TokenExchanger

CODE_VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"


@pytest.fixture
def authorization_response(configuration) -> AuthorizationResponse:
    request = AuthorizationRequest(
        configuration=configuration,
        client_id="client-123",
        redirect_url="app-scheme:/callback",
        scope="openid offline_access",
        state="S1",
        nonce="n-1",
        code_verifier=CODE_VERIFIER,
        code_challenge="E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM",
    )
    return AuthorizationResponse(
        authorization_code="auth-code-123", state="S1", request=request
    )


class TestTokenRequest:
    def test_authorization_code_form(self, authorization_response):
        # Act
        request = TokenRequest.for_authorization_code(authorization_response)

        # Assert
        assert request.grant_type is GrantType.AUTHORIZATION_CODE
        assert request.nonce == "n-1"
        assert request.to_form_data() == {
            "grant_type": "authorization_code",
            "code": "auth-code-123",
            "redirect_uri": "app-scheme:/callback",
            "code_verifier": CODE_VERIFIER,
            "client_id": "client-123",
        }

    def test_refresh_form_with_secret(self, configuration):
        # Act
        request = TokenRequest.for_refresh(
            configuration, "refresh-abc", "client-123", client_secret="secret"
        )

        # Assert
        assert request.to_form_data() == {
            "grant_type": "refresh_token",
            "refresh_token": "refresh-abc",
            "client_id": "client-123",
            "client_secret": "secret",
        }

    def test_missing_grant_fields(self, configuration):
        with pytest.raises(ValueError):
            TokenRequest(
                configuration=configuration,
                grant_type=GrantType.AUTHORIZATION_CODE,
                client_id="client-123",
                code="abc",
            )
        with pytest.raises(ValueError):
            TokenRequest(
                configuration=configuration,
                grant_type=GrantType.REFRESH_TOKEN,
                client_id="client-123",
            )


class TestTokenExchange:
    """Test authorization code to access token exchange."""

    def setup_method(self):
        # Arrange
        self.exchanger = TokenExchanger(
            id_token_validator=IDTokenValidator(clock=lambda: 1_700_000_000.0)
        )
        self.exchanger._http_client = AsyncMock()

    async def test_access_token_without_id_token(
        self, authorization_response, key_pair, make_response
    ):
        # Arrange
        self.exchanger._http_client.request.return_value = make_response(
            200, {"access_token": "AT", "token_type": "DPoP", "expires_in": 3600}
        )
        self.exchanger.id_token_validator = MagicMock()
        request = TokenRequest.for_authorization_code(
            authorization_response, dpop_key=key_pair
        )

        # Act
        tokens = await self.exchanger.exchange(request)

        # Assert
        assert isinstance(tokens, TokenResponse)
        assert tokens.access_token == "AT"
        assert tokens.token_type == "DPoP"
        assert tokens.is_dpop_bound
        assert tokens.expires_at is not None
        assert tokens.id_token is None
        assert tokens.dpop_key is key_pair
        self.exchanger.id_token_validator.validate.assert_not_called()

    async def test_request_carries_form_and_dpop_proof(
        self, authorization_response, key_pair, make_response
    ):
        # Arrange
        self.exchanger._http_client.request.return_value = make_response(
            200, {"access_token": "AT", "token_type": "DPoP"}
        )
        request = TokenRequest.for_authorization_code(
            authorization_response, dpop_key=key_pair
        )

        # Act
        await self.exchanger.exchange(request)

        # Assert
        call_args = self.exchanger._http_client.request.call_args
        assert call_args[0] == ("POST", "https://op.example.com/token")
        assert call_args[1]["data"] == request.to_form_data()

        headers = call_args[1]["headers"]
        assert headers["Content-Type"] == FORM_CONTENT_TYPE
        assert headers["Accept"] == "application/json"

        claims = jwt.decode(headers["DPoP"], key_pair.private_key)
        assert claims["htm"] == "POST"
        assert claims["htu"] == "https://op.example.com/token"
        assert claims.header["typ"] == "dpop+jwt"

    async def test_key_pair_is_generated_when_absent(
        self, authorization_response, key_pair, make_response
    ):
        # Arrange
        factory = DPoPProofFactory()
        factory.generate_key_pair = lambda: key_pair
        self.exchanger.dpop_factory = factory
        self.exchanger._http_client.request.return_value = make_response(
            200, {"access_token": "AT", "token_type": "DPoP"}
        )

        # Act
        tokens = await self.exchanger.exchange(
            TokenRequest.for_authorization_code(authorization_response)
        )

        # Assert
        assert tokens.dpop_key is key_pair

    async def test_valid_id_token(
        self, authorization_response, key_pair, make_response, make_id_token
    ):
        # Arrange
        id_token = make_id_token(nonce="n-1")
        self.exchanger._http_client.request.return_value = make_response(
            200,
            {
                "access_token": "AT",
                "token_type": "DPoP",
                "id_token": id_token,
                "refresh_token": "RT",
                "scope": "openid offline_access",
                "custom": "value",
            },
        )

        # Act
        tokens = await self.exchanger.exchange(
            TokenRequest.for_authorization_code(
                authorization_response, dpop_key=key_pair
            )
        )

        # Assert
        assert tokens.id_token == id_token
        assert tokens.refresh_token == "RT"
        assert tokens.can_refresh()
        assert tokens.additional_parameters == {"custom": "value"}

    async def test_id_token_with_wrong_nonce(
        self, authorization_response, key_pair, make_response, make_id_token
    ):
        # Arrange
        self.exchanger._http_client.request.return_value = make_response(
            200,
            {
                "access_token": "AT",
                "token_type": "DPoP",
                "id_token": make_id_token(nonce="replayed"),
            },
        )

        # Act & Assert
        with pytest.raises(IDTokenValidationError) as exc_info:
            await self.exchanger.exchange(
                TokenRequest.for_authorization_code(
                    authorization_response, dpop_key=key_pair
                )
            )

        assert exc_info.value.rule is IDTokenRule.NONCE

    async def test_unparseable_id_token(
        self, authorization_response, key_pair, make_response
    ):
        # Arrange
        self.exchanger._http_client.request.return_value = make_response(
            200, {"access_token": "AT", "token_type": "DPoP", "id_token": "garbage"}
        )

        # Act & Assert
        with pytest.raises(IDTokenStructuralError):
            await self.exchanger.exchange(
                TokenRequest.for_authorization_code(
                    authorization_response, dpop_key=key_pair
                )
            )


class TestTokenErrors:
    def setup_method(self):
        self.exchanger = TokenExchanger()
        self.exchanger._http_client = AsyncMock()

    async def test_oauth_error_response(
        self, authorization_response, key_pair, make_response
    ):
        # Arrange
        self.exchanger._http_client.request.return_value = make_response(
            400,
            {
                "error": "invalid_grant",
                "error_description": "Authorization code expired",
                "error_uri": "https://op.example.com/errors/invalid_grant",
            },
        )

        # Act & Assert
        with pytest.raises(OAuthTokenError) as exc_info:
            await self.exchanger.exchange(
                TokenRequest.for_authorization_code(
                    authorization_response, dpop_key=key_pair
                )
            )

        error = exc_info.value
        assert error.kind is ErrorKind.OAUTH
        assert error.status_code == 400
        assert error.error == "invalid_grant"
        assert error.error_description == "Authorization code expired"
        assert error.error_uri == "https://op.example.com/errors/invalid_grant"

    @pytest.mark.parametrize("status_code", [302, 500, 502])
    async def test_non_oauth_error_is_server_error(
        self, authorization_response, key_pair, make_response, status_code
    ):
        # Arrange
        self.exchanger._http_client.request.return_value = make_response(
            status_code, text="Bad Gateway"
        )

        # Act & Assert
        with pytest.raises(ServerError) as exc_info:
            await self.exchanger.exchange(
                TokenRequest.for_authorization_code(
                    authorization_response, dpop_key=key_pair
                )
            )

        assert exc_info.value.kind is ErrorKind.HTTP_STATUS
        assert exc_info.value.status_code == status_code
        assert exc_info.value.body == "Bad Gateway"

    @pytest.mark.parametrize(
        "payload",
        [
            {"token_type": "DPoP"},
            {"access_token": "AT"},
            {"access_token": "AT", "token_type": "DPoP", "expires_in": "soon"},
        ],
    )
    async def test_malformed_success_body(
        self, authorization_response, key_pair, make_response, payload
    ):
        # Arrange
        self.exchanger._http_client.request.return_value = make_response(
            200, payload
        )

        # Act & Assert
        with pytest.raises(TokenError) as exc_info:
            await self.exchanger.exchange(
                TokenRequest.for_authorization_code(
                    authorization_response, dpop_key=key_pair
                )
            )

        assert exc_info.value.kind is ErrorKind.JSON

    @pytest.mark.parametrize(
        "exception,kind",
        [
            (httpx.ReadTimeout("timed out"), ErrorKind.TIMEOUT),
            (httpx.ConnectError("refused"), ErrorKind.NETWORK),
        ],
    )
    async def test_transport_failure(
        self, authorization_response, key_pair, exception, kind
    ):
        # Arrange
        self.exchanger._http_client.request.side_effect = exception

        # Act & Assert
        with pytest.raises(TokenError) as exc_info:
            await self.exchanger.exchange(
                TokenRequest.for_authorization_code(
                    authorization_response, dpop_key=key_pair
                )
            )

        assert exc_info.value.kind is kind
        assert exc_info.value.url == "https://op.example.com/token"
        assert exc_info.value.__cause__ is exception


class TestTokenResponse:
    def test_expiry_from_expires_in(self):
        tokens = TokenResponse.from_response(
            {"access_token": "AT", "token_type": "DPoP", "expires_in": 60},
            now=1000.0,
        )

        assert tokens.expires_at == 1060.0
        assert not tokens.is_expired(now=1059.0)
        assert tokens.is_expired(now=1060.0)
        assert tokens.is_expired(now=1030.0, leeway=30)

    def test_no_expiry_never_expires(self):
        tokens = TokenResponse.from_response({"access_token": "AT", "token_type": "x"})

        assert tokens.expires_at is None
        assert not tokens.is_expired()

    def test_secrets_are_not_in_repr(self):
        tokens = TokenResponse.from_response(
            {"access_token": "secret-at", "token_type": "DPoP", "refresh_token": "rt"}
        )

        assert "secret-at" not in repr(tokens)
