"""Protected resource access with DPoP-bound access tokens.

Calls the provider's ``userinfo`` endpoint, refreshing the access token
first when it has expired or the caller asked for a refresh.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from oidcflow.models.discovery import ProviderConfiguration
from oidcflow.models.errors import ErrorKind, ResourceError
from oidcflow.models.registration import RegistrationResult
from oidcflow.models.tokens import TokenRequest, TokenResponse
from oidcflow.primitives.http import parse_json_object, send_request
from oidcflow.services.tokens import TokenExchanger

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_LEEWAY = 30.0  # seconds


@dataclass(frozen=True)
class UserInfoResult:
    """Userinfo claims and the tokens that were used to fetch them.

    ``refreshed`` is True when the tokens were renewed on the way; callers
    holding the old TokenResponse must replace it with ``tokens``.
    """

    claims: dict[str, Any]
    tokens: TokenResponse = field(repr=False)
    refreshed: bool = False


class ProtectedResourceClient:
    """Fetches the userinfo resource with a sender-constrained token."""

    def __init__(
        self,
        token_exchanger: TokenExchanger,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
        refresh_leeway: float = DEFAULT_REFRESH_LEEWAY,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the resource client.

        Args:
            token_exchanger: Used for refreshes; its DPoP factory signs proofs
            timeout: HTTP request timeout in seconds
            http_client: Optional shared HTTP client
            refresh_leeway: Seconds before expiry a token counts as expired
            clock: Source of the current Unix time
        """
        self.token_exchanger = token_exchanger
        self.timeout = timeout
        self.refresh_leeway = refresh_leeway
        self._clock = clock
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=timeout, follow_redirects=False
        )

    def should_refresh(
        self, tokens: TokenResponse, needs_refresh: bool = False
    ) -> bool:
        return needs_refresh or tokens.is_expired(self._clock(), self.refresh_leeway)

    async def refresh(
        self,
        configuration: ProviderConfiguration,
        tokens: TokenResponse,
        registration: RegistrationResult,
    ) -> TokenResponse:
        """Renew ``tokens`` with the refresh token grant.

        The refresh is proven with the key pair the current access token is
        bound to. A refresh token missing from the response means the old one
        stays valid (RFC 6749 Section 6).

        Raises:
            ResourceError: There is no refresh token
            TokenError: The refresh failed
        """
        if not tokens.can_refresh():
            raise ResourceError(
                "Access token expired and no refresh token is available",
                kind=ErrorKind.TOKEN_EXPIRED,
                url=configuration.token_endpoint,
            )

        request = TokenRequest.for_refresh(
            configuration,
            refresh_token=tokens.refresh_token,
            client_id=registration.client_id,
            client_secret=registration.client_secret,
            dpop_key=tokens.dpop_key,
        )
        logger.debug(f"Refreshing access token at {configuration.token_endpoint}")
        refreshed = await self.token_exchanger.exchange(request)

        if refreshed.refresh_token is None:
            refreshed = refreshed.model_copy(
                update={"refresh_token": tokens.refresh_token}
            )
        logger.info("Successfully refreshed access token")
        return refreshed

    async def fetch_user_info(
        self,
        configuration: ProviderConfiguration,
        tokens: TokenResponse,
        registration: RegistrationResult,
        *,
        needs_refresh: bool = False,
    ) -> UserInfoResult:
        """Fetch the userinfo claims, refreshing the access token if needed.

        Args:
            configuration: Discovered provider configuration
            tokens: Current tokens and their DPoP key pair
            registration: Registered client, used for refreshes
            needs_refresh: Force a refresh before the call

        Returns:
            UserInfoResult: Claims and the tokens now in effect

        Raises:
            ResourceError: Missing endpoint, expired token without refresh
                token, token without a DPoP key, transport failure, non-200
                status or malformed JSON
            TokenError: The refresh failed
        """
        endpoint = configuration.userinfo_endpoint
        if not endpoint:
            raise ResourceError(
                f"Provider {configuration.issuer} has no userinfo endpoint",
                kind=ErrorKind.INVALID_STATE,
            )

        was_refreshed = False
        if self.should_refresh(tokens, needs_refresh):
            tokens = await self.refresh(configuration, tokens, registration)
            was_refreshed = True

        if tokens.dpop_key is None:
            raise ResourceError(
                "Access token is not bound to a DPoP key pair; "
                "a new token exchange is required",
                kind=ErrorKind.INVALID_STATE,
                url=endpoint,
            )

        proof, _ = await asyncio.to_thread(
            self.token_exchanger.dpop_factory.mint, "GET", endpoint, tokens.dpop_key
        )

        headers = {
            "Authorization": f"DPoP {tokens.access_token}",
            "DPoP": proof,
            "Accept": "application/json",
        }
        logger.debug(f"Fetching userinfo from {endpoint}")
        response = await send_request(
            self._http_client,
            "GET",
            endpoint,
            ResourceError,
            headers=headers,
            timeout=self.timeout,
        )

        if response.status_code != 200:
            logger.error(f"Userinfo endpoint returned HTTP {response.status_code}")
            raise ResourceError(
                f"Userinfo endpoint returned HTTP {response.status_code}",
                kind=ErrorKind.HTTP_STATUS,
                url=endpoint,
                status_code=response.status_code,
                body=response.text,
            )

        claims = parse_json_object(response, endpoint, ResourceError)
        logger.info(f"Fetched userinfo for subject {claims.get('sub')}")
        return UserInfoResult(claims=claims, tokens=tokens, refreshed=was_refreshed)

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._http_client.aclose()
