"""Token exchange service.

Implements RFC 6749 token endpoint interactions for the authorization code
and refresh token grants, with PKCE (RFC 7636) and DPoP sender-constrained
tokens (RFC 9449).
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

import httpx
from pydantic import ValidationError

from oidcflow.models.errors import (
    ErrorKind,
    OAuthTokenError,
    ServerError,
    TokenError,
)
from oidcflow.models.id_token import IDTokenClaims
from oidcflow.models.tokens import GrantType, TokenRequest, TokenResponse
from oidcflow.primitives.dpop import DPoPProofFactory
from oidcflow.primitives.http import parse_json_object, parse_oauth_error, send_request
from oidcflow.services.id_token import IDTokenValidator
from oidcflow.services.security import redact

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded; charset=UTF-8"


class TokenExchanger:
    """Exchanges grants for DPoP-bound tokens at the token endpoint.

    Handles:
    - Authorization code exchange (RFC 6749 Section 4.1.3)
    - Access token refresh (RFC 6749 Section 6)
    - DPoP proof for every request (RFC 9449 Section 5)
    - ID Token validation of every token response that carries one
    """

    def __init__(
        self,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
        dpop_factory: DPoPProofFactory | None = None,
        id_token_validator: IDTokenValidator | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the token exchanger.

        Args:
            timeout: HTTP request timeout in seconds
            http_client: Optional shared HTTP client
            dpop_factory: Mints DPoP proofs; a default factory when omitted
            id_token_validator: Validates returned ID Tokens
            clock: Source of the current Unix time for token expiry
        """
        self.timeout = timeout
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=timeout, follow_redirects=False
        )
        self.dpop_factory = dpop_factory or DPoPProofFactory()
        self.id_token_validator = id_token_validator or IDTokenValidator()
        self._clock = clock

    async def exchange(self, token_request: TokenRequest) -> TokenResponse:
        """Send ``token_request`` to the token endpoint.

        The request's ``dpop_key`` signs the proof when set, otherwise a new
        key pair is generated; either way the returned TokenResponse carries
        the key its access token is bound to.

        Args:
            token_request: Token endpoint request parameters

        Returns:
            TokenResponse: The parsed and validated token response

        Raises:
            OAuthTokenError: The endpoint answered with an RFC 6749 error
            ServerError: Any other non-200 response
            TokenError: Network, timeout or malformed JSON
            IDTokenStructuralError: The ID Token could not be parsed
            IDTokenValidationError: The ID Token failed a validation rule
        """
        endpoint = token_request.token_endpoint
        proof, key_pair = await asyncio.to_thread(
            self.dpop_factory.mint, "POST", endpoint, token_request.dpop_key
        )

        headers = {
            "DPoP": proof,
            "Content-Type": FORM_CONTENT_TYPE,
            "Accept": "application/json",
        }
        form_data = token_request.to_form_data()

        logger.debug(
            f"Token request: grant_type={form_data['grant_type']}, "
            f"client_id={form_data['client_id']}, endpoint={endpoint}"
        )

        response = await send_request(
            self._http_client,
            "POST",
            endpoint,
            TokenError,
            data=form_data,
            headers=headers,
            timeout=self.timeout,
        )

        if response.status_code != 200:
            self._raise_token_error(response, endpoint)

        data = parse_json_object(response, endpoint, TokenError)
        try:
            tokens = TokenResponse.from_response(
                data, dpop_key=key_pair, now=self._clock()
            )
        except (ValueError, TypeError, ValidationError) as e:
            raise TokenError(
                f"Invalid token response format: {e}",
                kind=ErrorKind.JSON,
                url=endpoint,
                status_code=response.status_code,
            ) from e

        if tokens.id_token is not None:
            self.validate_id_token(tokens.id_token, token_request)

        logger.info(
            f"Token exchange successful ({token_request.grant_type.value}): "
            f"access_token={redact(tokens.access_token)}, "
            f"token_type={tokens.token_type}"
        )
        return tokens

    def validate_id_token(
        self, id_token: str, token_request: TokenRequest
    ) -> IDTokenClaims:
        return self.id_token_validator.validate(
            id_token,
            issuer=token_request.configuration.issuer,
            client_id=token_request.client_id,
            grant_type=token_request.grant_type,
            nonce=(
                token_request.nonce
                if token_request.grant_type is GrantType.AUTHORIZATION_CODE
                else None
            ),
        )

    def _raise_token_error(self, response: httpx.Response, endpoint: str):
        """Raise for a non-200 token response (RFC 6749 Section 5.2)."""
        error_data = parse_oauth_error(response)
        if error_data is None:
            logger.error(f"Token endpoint returned HTTP {response.status_code}")
            raise ServerError(
                f"Token endpoint returned HTTP {response.status_code}",
                url=endpoint,
                status_code=response.status_code,
                body=response.text,
            )

        error_code = error_data["error"]
        error_description = error_data.get("error_description")
        logger.warning(
            f"Token exchange failed with {response.status_code}: "
            f"{error_code} - {error_description}"
        )
        raise OAuthTokenError(
            f"Token request failed ({response.status_code}): {error_code} - "
            f"{error_description or 'No description provided'}",
            error=error_code,
            error_description=error_description,
            error_uri=error_data.get("error_uri"),
            parameters=error_data,
            url=endpoint,
            status_code=response.status_code,
            body=response.text,
        )

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._http_client.aclose()
