"""Authorization code flow with PKCE.

Builds the authorization request, hands the authorization URL to an external
user agent and turns the redirect it comes back with into an
AuthorizationResponse.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Protocol
from urllib.parse import parse_qsl, urlparse

from oidcflow.models.discovery import ProviderConfiguration
from oidcflow.models.errors import (
    AuthorizationError,
    ErrorKind,
    OAuthAuthorizationError,
    StateMismatchError,
    UserCancelledError,
)
from oidcflow.models.flow import (
    RESPONSE_TYPE_CODE,
    AuthorizationRequest,
    AuthorizationResponse,
    AuthorizationStatus,
)
from oidcflow.primitives.pkce import PKCEManager
from oidcflow.services.security import (
    RandomBytes,
    generate_nonce,
    generate_state,
    scopes_to_string,
    states_match,
)

logger = logging.getLogger(__name__)


class UserAgent(Protocol):
    """External user agent (system browser, web view, ...).

    Presents ``url`` to the user and resolves with the callback URL once the
    provider redirects to ``redirect_url``. Raises ``UserCancelledError`` when
    the user dismisses it; returning no callback URL counts as the same.
    """

    async def present(self, url: str, redirect_url: str) -> str:
        ...


class CallbackUserAgent:
    """User agent that delegates to an async callable.

    Suitable for CLI tools and custom integrations that obtain the callback
    URL by their own means.
    """

    def __init__(self, callback_handler: Callable[[str], Awaitable[str]] | None = None):
        """Initialize the user agent.

        Args:
            callback_handler: Async function called with the authorization
                URL; must return the callback URL.
        """
        self.callback_handler = callback_handler

    async def present(self, url: str, redirect_url: str) -> str:
        if self.callback_handler is None:
            raise NotImplementedError(
                f"Please visit {url} and provide the URL redirected to {redirect_url}"
            )
        return await self.callback_handler(url)


class PKCEAuthorizer:
    """Drives one authorization attempt at a time.

    ``status`` follows ``IDLE -> REQUESTED -> AWAITING_CALLBACK`` and ends in
    ``COMPLETED``, ``FAILED`` or ``CANCELLED``.
    """

    def __init__(self, random_bytes: RandomBytes = secrets.token_bytes):
        self._random_bytes = random_bytes
        self._pkce_manager = PKCEManager(random_bytes=random_bytes)
        self.status = AuthorizationStatus.IDLE

    def build_request(
        self,
        configuration: ProviderConfiguration,
        client_id: str,
        scopes: Iterable[str],
        redirect_url: str,
        *,
        client_secret: str | None = None,
        response_type: str = RESPONSE_TYPE_CODE,
        additional_parameters: Mapping[str, str] | None = None,
    ) -> AuthorizationRequest:
        """Create a fresh authorization request.

        Generates new state, nonce and PKCE parameters for every call.

        Args:
            configuration: Discovered provider configuration
            client_id: Registered client identifier
            scopes: Scope tokens to request
            redirect_url: Redirect URI registered for this client
            client_secret: Secret issued at registration, if any
            response_type: ``code`` or ``code id_token``
            additional_parameters: Extra query parameters (``prompt``, ...)

        Returns:
            AuthorizationRequest: The request for this attempt

        Raises:
            AuthorizationError: If the request cannot be built
        """
        pkce_params = self._pkce_manager.generate_parameters()
        try:
            request = AuthorizationRequest(
                configuration=configuration,
                client_id=client_id,
                client_secret=client_secret,
                redirect_url=redirect_url,
                scope=scopes_to_string(scopes),
                state=generate_state(self._random_bytes),
                nonce=generate_nonce(self._random_bytes),
                code_verifier=pkce_params.code_verifier,
                code_challenge=pkce_params.code_challenge,
                code_challenge_method=pkce_params.code_challenge_method,
                response_type=response_type,
                additional_parameters=dict(additional_parameters or {}),
            )
        except ValueError as e:
            raise AuthorizationError(
                f"Failed to build authorization request: {e}",
                kind=ErrorKind.INVALID_STATE,
            ) from e

        self.status = AuthorizationStatus.REQUESTED
        logger.debug(f"Built authorization request for client {client_id}")
        return request

    def authorization_url(self, request: AuthorizationRequest) -> str:
        return request.build_authorization_url()

    def handle_callback(
        self, request: AuthorizationRequest, callback_url: str
    ) -> AuthorizationResponse:
        """Parse the redirect the provider sent the user agent to.

        Moves ``status`` to ``COMPLETED`` on success and ``FAILED`` otherwise.

        Args:
            request: The request this callback answers
            callback_url: Full callback URL

        Returns:
            AuthorizationResponse: Code and state of a successful authorization

        Raises:
            OAuthAuthorizationError: The callback carries an ``error``
            StateMismatchError: ``state`` is missing or differs from the request
            AuthorizationError: ``code`` is missing
        """
        try:
            response = self._parse_callback(request, callback_url)
        except AuthorizationError:
            self.status = AuthorizationStatus.FAILED
            raise

        self.status = AuthorizationStatus.COMPLETED
        return response

    def _parse_callback(
        self, request: AuthorizationRequest, callback_url: str
    ) -> AuthorizationResponse:
        params = dict(parse_qsl(urlparse(callback_url).query, keep_blank_values=True))

        error = params.get("error")
        if error is not None:
            description = params.get("error_description")
            logger.warning(
                f"Authorization callback contained error: {error} - {description}"
            )
            raise OAuthAuthorizationError(
                f"Authorization failed: {error} - "
                f"{description or 'No description provided'}",
                error=error,
                error_description=description,
                error_uri=params.get("error_uri"),
                parameters=params,
                url=request.configuration.authorization_endpoint,
            )

        actual_state = params.get("state")
        if not states_match(request.state, actual_state):
            raise StateMismatchError(
                "Authorization callback state does not match the request state",
                expected=request.state,
                actual=actual_state,
            )

        code = params.get("code")
        if not code:
            raise AuthorizationError(
                "Authorization callback missing required code parameter",
                kind=ErrorKind.MISSING_PARAMETER,
            )

        extra = {k: v for k, v in params.items() if k not in ("code", "state")}
        logger.info("Authorization callback successful - received authorization code")
        return AuthorizationResponse(
            authorization_code=code,
            state=actual_state,
            request=request,
            additional_parameters=extra,
        )

    async def authorize(
        self, request: AuthorizationRequest, user_agent: UserAgent
    ) -> AuthorizationResponse:
        """Run the user-agent round trip for ``request``.

        Raises:
            UserCancelledError: The user dismissed the user agent, or it
                returned without a callback
            asyncio.CancelledError: The awaiting task was cancelled
            AuthorizationError: The callback was not a valid response
        """
        url = self.authorization_url(request)
        self.status = AuthorizationStatus.AWAITING_CALLBACK
        logger.info(f"Presenting authorization URL for client {request.client_id}")

        try:
            callback_url = await user_agent.present(url, request.redirect_url)
        except UserCancelledError:
            self.status = AuthorizationStatus.CANCELLED
            logger.info("Authorization cancelled by the user")
            raise
        except asyncio.CancelledError:
            self.status = AuthorizationStatus.CANCELLED
            logger.info("Authorization cancelled while awaiting the callback")
            raise
        except Exception:
            self.status = AuthorizationStatus.FAILED
            raise

        if not callback_url:
            self.status = AuthorizationStatus.CANCELLED
            logger.info("User agent returned without a callback")
            raise UserCancelledError("User agent returned without a callback")

        if not request.matches_callback(callback_url):
            self.status = AuthorizationStatus.FAILED
            raise AuthorizationError(
                f"Callback URL does not match redirect URL {request.redirect_url}",
                kind=ErrorKind.INVALID_STATE,
            )
        return self.handle_callback(request, callback_url)
