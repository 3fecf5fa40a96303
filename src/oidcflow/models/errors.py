"""Exception hierarchy for the OpenID Connect relying-party pipeline.

Every stage raises its own error type (``DiscoveryError``,
``RegistrationError``, ``AuthorizationError``, ``TokenError``,
``ResourceError``). Each error carries a ``kind`` that discriminates the
failure mode (network, timeout, HTTP status, malformed JSON, ...) together
with enough context to render a diagnostic.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Failure modes shared by all pipeline stages."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"
    OAUTH = "oauth"
    JSON = "json"
    INVALID_DOCUMENT = "invalid_document"
    SERIALIZATION = "serialization"
    INVARIANT = "invariant"
    STATE_MISMATCH = "state_mismatch"
    MISSING_PARAMETER = "missing_parameter"
    CANCELLED = "cancelled"
    ID_TOKEN_STRUCTURE = "id_token_structure"
    ID_TOKEN_VALIDATION = "id_token_validation"
    TOKEN_EXPIRED = "token_expired"
    INVALID_STATE = "invalid_state"


class IDTokenRule(str, Enum):
    """OpenID Connect Core 3.1.3.7 rules enforced on ID Tokens."""

    ISSUER = "issuer"
    AUDIENCE = "audience"
    EXPIRED = "expired"
    ISSUED_AT = "issued_at"
    NONCE = "nonce"


class OIDCError(Exception):
    """Base exception for all relying-party errors."""

    default_kind: ErrorKind = ErrorKind.INVALID_STATE

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind | None = None,
        url: str | None = None,
        status_code: int | None = None,
        body: str | None = None,
    ):
        super().__init__(message)
        self.kind = kind or self.default_kind
        self.url = url
        self.status_code = status_code
        self.body = body


class OAuthProtocolError(OIDCError):
    """Structured RFC 6749 error (``error`` / ``error_description``)."""

    default_kind = ErrorKind.OAUTH

    def __init__(
        self,
        message: str,
        *,
        error: str,
        error_description: str | None = None,
        error_uri: str | None = None,
        parameters: dict[str, Any] | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.error = error
        self.error_description = error_description
        self.error_uri = error_uri
        self.parameters = dict(parameters or {})


class DiscoveryError(OIDCError):
    """Raised when the provider metadata document cannot be obtained."""


class InvalidDocumentError(DiscoveryError):
    """Raised when the discovery document is missing or has invalid fields."""

    default_kind = ErrorKind.INVALID_DOCUMENT

    def __init__(self, message: str, *, fields: list[str] | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.fields = list(fields or [])


class RegistrationError(OIDCError):
    """Raised when dynamic client registration fails."""


class OAuthRegistrationError(OAuthProtocolError, RegistrationError):
    """Registration endpoint answered with an RFC 6749 error object."""

    default_kind = ErrorKind.HTTP_STATUS


class RegistrationInvariantError(RegistrationError):
    """``registration_client_uri`` and ``registration_access_token`` must
    appear together or not at all."""

    default_kind = ErrorKind.INVARIANT


class AuthorizationError(OIDCError):
    """Raised when the authorization step fails."""


class OAuthAuthorizationError(OAuthProtocolError, AuthorizationError):
    """The authorization server redirected back with an ``error`` parameter."""


class StateMismatchError(AuthorizationError):
    """The callback ``state`` does not match the request ``state``."""

    default_kind = ErrorKind.STATE_MISMATCH

    def __init__(self, message: str, *, expected: str, actual: str | None, **kwargs):
        super().__init__(message, **kwargs)
        self.expected = expected
        self.actual = actual


class UserCancelledError(AuthorizationError):
    """The user dismissed the external user agent.

    A normal terminal outcome rather than a failure.
    """

    default_kind = ErrorKind.CANCELLED


class TokenError(OIDCError):
    """Raised when a token endpoint exchange fails."""


class OAuthTokenError(OAuthProtocolError, TokenError):
    """Token endpoint answered with an RFC 6749 Section 5.2 error object."""


class ServerError(TokenError):
    """Token endpoint answered with a non-200 status and no OAuth error body."""

    default_kind = ErrorKind.HTTP_STATUS


class IDTokenStructuralError(TokenError):
    """The ID Token is not a parseable JWT with the required claims."""

    default_kind = ErrorKind.ID_TOKEN_STRUCTURE


class IDTokenValidationError(TokenError):
    """The ID Token parsed but failed one of the validation rules."""

    default_kind = ErrorKind.ID_TOKEN_VALIDATION

    def __init__(
        self,
        message: str,
        *,
        rule: IDTokenRule,
        expected: Any = None,
        actual: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.rule = rule
        self.expected = expected
        self.actual = actual


class ResourceError(OIDCError):
    """Raised when the protected resource call fails."""


class SessionStateError(OIDCError):
    """A stage was invoked without its prerequisites in the session."""
