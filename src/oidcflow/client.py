"""OpenID Connect relying-party client.

Coordinates discovery, registration, authorization, token exchange and
userinfo access over a single session state.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from collections.abc import Callable, Mapping
from typing import Any

import httpx

from oidcflow.models.discovery import ProviderConfiguration
from oidcflow.models.errors import ErrorKind, OIDCError, SessionStateError
from oidcflow.models.flow import AuthorizationResponse
from oidcflow.models.registration import RegistrationResult
from oidcflow.models.tokens import TokenRequest, TokenResponse
from oidcflow.primitives.discovery import DiscoveryClient
from oidcflow.primitives.dpop import DPoPProofFactory
from oidcflow.services.flow import CallbackUserAgent, PKCEAuthorizer, UserAgent
from oidcflow.services.id_token import IDTokenValidator
from oidcflow.services.registration import RegistrationClient
from oidcflow.services.resource import ProtectedResourceClient
from oidcflow.services.security import RandomBytes
from oidcflow.services.tokens import TokenExchanger
from oidcflow.settings import ClientSettings
from oidcflow.state import SessionState

logger = logging.getLogger(__name__)


class OIDCClient:
    """Complete OpenID Connect client for one session.

    Every operation runs under one lock, so a refresh never interleaves with
    a code exchange, and replaces the session state wholesale. Errors from
    the stages propagate unchanged.

    Example:
        async with OIDCClient(user_agent=browser) as client:
            await client.authenticate("https://login.example.com")
            claims = await client.fetch_user_info()
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        user_agent: UserAgent | None = None,
        http_client: httpx.AsyncClient | None = None,
        random_bytes: RandomBytes = secrets.token_bytes,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the client.

        Args:
            settings: Client settings; read from the environment when omitted
            user_agent: Presents the authorization URL to the user
            http_client: Optional shared HTTP client for every stage
            random_bytes: Source of random bytes for state, nonce and PKCE
            clock: Source of the current Unix time
        """
        self.settings = settings or ClientSettings()
        self.user_agent = user_agent or CallbackUserAgent()

        timeout = self.settings.timeout
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=timeout, follow_redirects=False
        )

        self.discovery = DiscoveryClient(timeout, self._http_client)
        self.registration = RegistrationClient(timeout, self._http_client)
        self.authorizer = PKCEAuthorizer(random_bytes=random_bytes)
        self.token_exchanger = TokenExchanger(
            timeout,
            self._http_client,
            dpop_factory=DPoPProofFactory(clock=clock, random_bytes=random_bytes),
            id_token_validator=IDTokenValidator(
                max_clock_skew=self.settings.id_token_max_clock_skew, clock=clock
            ),
            clock=clock,
        )
        self.resource = ProtectedResourceClient(
            self.token_exchanger,
            timeout,
            self._http_client,
            refresh_leeway=self.settings.token_refresh_leeway,
            clock=clock,
        )

        self._state = SessionState()
        self._lock = asyncio.Lock()

    @property
    def state(self) -> SessionState:
        return self._state

    async def discover(self, issuer_url: str) -> ProviderConfiguration:
        """Discover the provider; any previous session data is dropped."""
        async with self._lock:
            return await self._discover(issuer_url)

    async def register(
        self, *, initial_access_token: str | None = None
    ) -> RegistrationResult:
        """Register this client with the discovered provider."""
        async with self._lock:
            return await self._register(initial_access_token)

    async def authorize(
        self,
        user_agent: UserAgent | None = None,
        *,
        additional_parameters: Mapping[str, str] | None = None,
    ) -> AuthorizationResponse:
        """Start a new authorization and wait for the user agent's callback."""
        async with self._lock:
            return await self._authorize(user_agent, additional_parameters)

    async def exchange_code(self) -> TokenResponse:
        """Exchange the pending authorization code for tokens.

        The authorization response is consumed even when the exchange fails.
        """
        async with self._lock:
            return await self._exchange_code()

    async def refresh_if_needed(self) -> bool:
        """Refresh the tokens if expired or marked for refresh.

        Returns:
            True if the tokens were refreshed
        """
        async with self._lock:
            state = self._state
            tokens = self._require(state.tokens, "tokens")
            if not self.resource.should_refresh(tokens, state.needs_token_refresh):
                return False
            refreshed = await self._run(
                "token refresh",
                self.resource.refresh(
                    self._require(state.configuration, "provider configuration"),
                    tokens,
                    self._require(state.registration, "client registration"),
                ),
            )
            self._state = state.with_refreshed_tokens(refreshed)
            return True

    async def fetch_user_info(self) -> dict[str, Any]:
        """Fetch the userinfo claims, refreshing the tokens first if needed."""
        async with self._lock:
            state = self._state
            result = await self._run(
                "userinfo",
                self.resource.fetch_user_info(
                    self._require(state.configuration, "provider configuration"),
                    self._require(state.tokens, "tokens"),
                    self._require(state.registration, "client registration"),
                    needs_refresh=state.needs_token_refresh,
                ),
            )
            if result.refreshed or result.tokens is not state.tokens:
                self._state = state.with_refreshed_tokens(result.tokens)
            return result.claims

    async def mark_needs_token_refresh(self) -> None:
        """Force a refresh before the next resource call."""
        async with self._lock:
            self._require(self._state.tokens, "tokens")
            self._state = self._state.with_needs_token_refresh()

    async def authenticate(
        self,
        issuer_url: str,
        user_agent: UserAgent | None = None,
        *,
        initial_access_token: str | None = None,
    ) -> TokenResponse:
        """Run the whole pipeline: discover, register, authorize, exchange.

        Returns:
            TokenResponse: The validated tokens
        """
        async with self._lock:
            await self._discover(issuer_url)
            await self._register(initial_access_token)
            await self._authorize(user_agent, None)
            return await self._exchange_code()

    async def reset(self) -> None:
        """Forget the whole session."""
        async with self._lock:
            self._state = SessionState()

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._http_client.aclose()

    async def __aenter__(self) -> OIDCClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _discover(self, issuer_url: str) -> ProviderConfiguration:
        configuration = await self._run(
            "discovery", self.discovery.discover(issuer_url)
        )
        self._state = self._state.with_configuration(configuration)
        return configuration

    async def _register(self, initial_access_token: str | None) -> RegistrationResult:
        state = self._state
        configuration = self._require(state.configuration, "provider configuration")
        registration = await self._run(
            "registration",
            self.registration.register(
                configuration,
                [self.settings.redirect_uri],
                self.settings.client_name,
                scope=" ".join(self.settings.scopes) or None,
                initial_access_token=initial_access_token,
            ),
        )
        self._state = state.with_registration(registration)
        return registration

    async def _authorize(
        self,
        user_agent: UserAgent | None,
        additional_parameters: Mapping[str, str] | None,
    ) -> AuthorizationResponse:
        state = self._state
        configuration = self._require(state.configuration, "provider configuration")
        registration = self._require(state.registration, "client registration")

        request = self.authorizer.build_request(
            configuration,
            registration.client_id,
            self.settings.scopes,
            self.settings.redirect_uri,
            client_secret=registration.client_secret,
            additional_parameters=additional_parameters,
        )
        self._state = state.with_authorization_request(request)

        response = await self._run(
            "authorization",
            self.authorizer.authorize(request, user_agent or self.user_agent),
        )
        self._state = self._state.with_authorization_response(response)
        return response

    async def _exchange_code(self) -> TokenResponse:
        state = self._state
        response = self._require(
            state.authorization_response, "authorization response"
        )
        self._require(state.registration, "client registration")

        # Authorization codes are single use
        self._state = state.without_authorization_response()

        # New key pair for every authorization
        token_request = TokenRequest.for_authorization_code(response)
        tokens = await self._run(
            "code exchange", self.token_exchanger.exchange(token_request)
        )
        self._state = self._state.with_tokens(tokens)
        return tokens

    @staticmethod
    def _require(value, name: str):
        if value is None:
            raise SessionStateError(f"No {name} in the session; run that stage first")
        return value

    @staticmethod
    async def _run(stage: str, awaitable):
        try:
            return await awaitable
        except OIDCError as e:
            if e.kind is ErrorKind.CANCELLED:
                logger.info(f"{stage.capitalize()} cancelled: {e}")
            else:
                logger.error(f"{stage.capitalize()} failed ({e.kind.value}): {e}")
            raise
