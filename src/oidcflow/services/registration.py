"""Dynamic client registration service.

Implements RFC 7591 / OpenID Connect Dynamic Client Registration 1.0 to
register this application as a public native client.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import httpx
from pydantic import ValidationError

from oidcflow.models.discovery import ProviderConfiguration
from oidcflow.models.errors import (
    ErrorKind,
    OAuthRegistrationError,
    RegistrationError,
    RegistrationInvariantError,
)
from oidcflow.models.registration import (
    REGISTRATION_INVARIANT_ERROR,
    ClientMetadata,
    RegistrationResult,
)
from oidcflow.primitives.http import parse_json_object, parse_oauth_error, send_request
from oidcflow.services.security import redact

logger = logging.getLogger(__name__)


class RegistrationClient:
    """Registers this client instance with the provider.

    The client registers as ``application_type=native`` with
    ``token_endpoint_auth_method=none``; any client secret the provider
    issues anyway is kept and sent with ``client_secret_post``.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize registration.

        Args:
            timeout: HTTP request timeout in seconds
            http_client: Optional shared HTTP client
        """
        self.timeout = timeout
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=timeout, follow_redirects=False
        )

    async def register(
        self,
        configuration: ProviderConfiguration,
        redirect_uris: Sequence[str],
        client_name: str,
        *,
        scope: str | None = None,
        initial_access_token: str | None = None,
    ) -> RegistrationResult:
        """Register a new client with the provider.

        Args:
            configuration: Discovered provider configuration
            redirect_uris: Redirect URIs for the authorization callback
            client_name: Human readable client name
            scope: Optional scopes the client will request
            initial_access_token: Optional token for protected registration
                endpoints (RFC 7591 Section 3.1)

        Returns:
            The registration result

        Raises:
            RegistrationError: If registration fails
            RegistrationInvariantError: If the response violates the
                both-or-neither rule for the client configuration endpoint
        """
        endpoint = configuration.registration_endpoint
        if not endpoint:
            raise RegistrationError(
                f"Provider {configuration.issuer} does not support dynamic "
                "client registration",
                kind=ErrorKind.INVALID_STATE,
            )

        try:
            body = ClientMetadata(
                client_name=client_name,
                redirect_uris=list(redirect_uris),
                scope=scope,
            ).to_request_body()
        except ValidationError as e:
            raise RegistrationError(
                f"Could not build registration request: {e}",
                kind=ErrorKind.SERIALIZATION,
                url=endpoint,
            ) from e

        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if initial_access_token:
            headers["Authorization"] = f"Bearer {initial_access_token}"

        logger.debug(f"Registering client {client_name!r} at {endpoint}")
        response = await send_request(
            self._http_client,
            "POST",
            endpoint,
            RegistrationError,
            json=body,
            headers=headers,
            timeout=self.timeout,
        )

        if not 200 <= response.status_code < 300:
            self._raise_registration_error(response, endpoint)

        data = parse_json_object(response, endpoint, RegistrationError)
        result = self._parse_registration(data, endpoint)

        logger.info(
            f"Registered client {result.client_id} at {endpoint} "
            f"(secret: {redact(result.client_secret)})"
        )
        return result

    def _parse_registration(self, data: dict, endpoint: str) -> RegistrationResult:
        if not isinstance(data.get("client_id"), str):
            raise RegistrationError(
                "Registration response missing required client_id",
                kind=ErrorKind.JSON,
                url=endpoint,
            )

        try:
            return RegistrationResult.model_validate(data)
        except ValidationError as e:
            if any(err["type"] == REGISTRATION_INVARIANT_ERROR for err in e.errors()):
                raise RegistrationInvariantError(
                    "Registration response must contain both "
                    "registration_client_uri and registration_access_token "
                    "or neither of them",
                    url=endpoint,
                ) from e
            raise RegistrationError(
                f"Invalid registration response format: {e}",
                kind=ErrorKind.JSON,
                url=endpoint,
            ) from e

    def _raise_registration_error(self, response: httpx.Response, endpoint: str):
        """Raise for a non-2xx registration response."""
        error_data = parse_oauth_error(response)
        if error_data is None:
            logger.error(f"Client registration failed with HTTP {response.status_code}")
            raise RegistrationError(
                f"Registration failed with HTTP {response.status_code}",
                kind=ErrorKind.HTTP_STATUS,
                url=endpoint,
                status_code=response.status_code,
                body=response.text,
            )

        error_code = error_data["error"]
        error_description = error_data.get("error_description")
        logger.error(
            f"Client registration failed with {response.status_code}: "
            f"{error_code} - {error_description}"
        )
        raise OAuthRegistrationError(
            f"Registration failed ({response.status_code}): {error_code} - "
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
