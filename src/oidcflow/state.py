"""Session state for one relying-party session.

A SessionState is an immutable snapshot of every stage output. Stages move
it forward by returning a new snapshot; replacing an upstream output clears
everything derived from it, so tokens never outlive the registration and
configuration they were issued under.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from oidcflow.models.discovery import ProviderConfiguration
from oidcflow.models.flow import AuthorizationRequest, AuthorizationResponse
from oidcflow.models.registration import RegistrationResult
from oidcflow.models.tokens import TokenResponse


class SessionStage(str, Enum):
    EMPTY = "empty"
    DISCOVERED = "discovered"
    REGISTERED = "registered"
    AUTHORIZATION_PENDING = "authorization_pending"
    AUTHORIZED = "authorized"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class SessionState:
    configuration: ProviderConfiguration | None = None
    registration: RegistrationResult | None = None
    authorization_request: AuthorizationRequest | None = None
    authorization_response: AuthorizationResponse | None = None
    tokens: TokenResponse | None = None
    needs_token_refresh: bool = False

    @property
    def stage(self) -> SessionStage:
        if self.tokens is not None:
            return SessionStage.AUTHENTICATED
        if self.authorization_response is not None:
            return SessionStage.AUTHORIZED
        if self.authorization_request is not None:
            return SessionStage.AUTHORIZATION_PENDING
        if self.registration is not None:
            return SessionStage.REGISTERED
        if self.configuration is not None:
            return SessionStage.DISCOVERED
        return SessionStage.EMPTY

    @property
    def is_authenticated(self) -> bool:
        return self.tokens is not None

    def with_configuration(self, configuration: ProviderConfiguration) -> SessionState:
        """New discovery result; drops registration and everything after it."""
        return SessionState(configuration=configuration)

    def with_registration(self, registration: RegistrationResult) -> SessionState:
        """New client registration; drops any authorization and tokens."""
        return SessionState(configuration=self.configuration, registration=registration)

    def with_authorization_request(
        self, request: AuthorizationRequest
    ) -> SessionState:
        """New authorization attempt; drops the previous response and tokens.

        The DPoP key pair goes with the tokens: a new authorization gets a new
        key pair at code exchange.
        """
        return replace(
            self,
            authorization_request=request,
            authorization_response=None,
            tokens=None,
            needs_token_refresh=False,
        )

    def with_authorization_response(
        self, response: AuthorizationResponse
    ) -> SessionState:
        return replace(self, authorization_response=response, tokens=None)

    def with_tokens(self, tokens: TokenResponse) -> SessionState:
        """Tokens from a code exchange; the authorization response is consumed."""
        return replace(
            self,
            authorization_response=None,
            tokens=tokens,
            needs_token_refresh=False,
        )

    def without_authorization_response(self) -> SessionState:
        return replace(self, authorization_response=None)

    def with_refreshed_tokens(self, tokens: TokenResponse) -> SessionState:
        return replace(self, tokens=tokens, needs_token_refresh=False)

    def with_needs_token_refresh(self, needs_refresh: bool = True) -> SessionState:
        return replace(self, needs_token_refresh=needs_refresh)
