"""OpenID Provider discovery primitive.

Implements OpenID Connect Discovery 1.0 to find the provider's endpoints and
capabilities from nothing but its issuer URL.
"""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from oidcflow.models.discovery import WELL_KNOWN_PATH, ProviderConfiguration
from oidcflow.models.errors import DiscoveryError, ErrorKind, InvalidDocumentError
from oidcflow.primitives.http import parse_json_object, send_request

logger = logging.getLogger(__name__)


class DiscoveryClient:
    """Fetches and validates an OpenID Provider's discovery document.

    The document is accepted as a whole or rejected as a whole; a partially
    valid document never becomes a ProviderConfiguration.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize discovery.

        Args:
            timeout: HTTP request timeout in seconds
            http_client: Optional shared client; redirects must not be followed
        """
        self.timeout = timeout
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=timeout, follow_redirects=False
        )

    @staticmethod
    def build_discovery_url(issuer_url: str) -> str:
        """Append the well-known path to ``issuer_url`` without doubling slashes.

        Any path on the issuer is kept (OpenID Connect Discovery 1.0 Section 4).
        """
        return issuer_url.rstrip("/") + WELL_KNOWN_PATH

    async def discover(self, issuer_url: str) -> ProviderConfiguration:
        """Discover the provider configuration for ``issuer_url``.

        Returns:
            The validated provider configuration

        Raises:
            DiscoveryError: network, timeout, non-200 status or malformed JSON
            InvalidDocumentError: required fields missing or invalid
        """
        discovery_url = self.build_discovery_url(issuer_url)
        logger.debug(f"Fetching discovery document from {discovery_url}")

        response = await send_request(
            self._http_client,
            "GET",
            discovery_url,
            DiscoveryError,
            headers={"Accept": "application/json"},
            timeout=self.timeout,
        )

        if response.status_code != 200:
            logger.error(
                f"Discovery at {discovery_url} returned HTTP {response.status_code}"
            )
            raise DiscoveryError(
                f"Non-200 HTTP response {response.status_code} fetching "
                f"discovery document {discovery_url}",
                kind=ErrorKind.HTTP_STATUS,
                url=discovery_url,
                status_code=response.status_code,
                body=response.text,
            )

        document = parse_json_object(response, discovery_url, DiscoveryError)
        configuration = self._validate_document(document, discovery_url)

        if configuration.issuer.rstrip("/") != issuer_url.rstrip("/"):
            logger.warning(
                f"Discovery document issuer {configuration.issuer} differs from "
                f"requested issuer {issuer_url}"
            )

        logger.info(f"Discovered provider configuration for {configuration.issuer}")
        return configuration

    def _validate_document(
        self, document: dict, discovery_url: str
    ) -> ProviderConfiguration:
        missing = ProviderConfiguration.missing_fields(document)
        if missing:
            raise InvalidDocumentError(
                f"Discovery document at {discovery_url} is missing required "
                f"fields: {', '.join(missing)}",
                fields=missing,
                url=discovery_url,
            )

        try:
            return ProviderConfiguration.model_validate(document)
        except ValidationError as e:
            fields = sorted(
                {str(err["loc"][0]) for err in e.errors() if err.get("loc")}
            )
            raise InvalidDocumentError(
                f"Invalid discovery document at {discovery_url}: {e}",
                fields=fields,
                url=discovery_url,
            ) from e

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._http_client.aclose()
