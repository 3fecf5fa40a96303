"""Security utilities for the relying-party flows.

Provides cryptographically secure parameter generation, state comparison,
scope serialization and redaction of secrets for logging.
"""

from __future__ import annotations

import base64
import secrets
from collections.abc import Callable, Iterable

RandomBytes = Callable[[int], bytes]

STATE_SIZE_BYTES = 32
NONCE_SIZE_BYTES = 32
CODE_VERIFIER_SIZE_BYTES = 32

SCOPE_OPENID = "openid"
SCOPE_PROFILE = "profile"
SCOPE_EMAIL = "email"
SCOPE_ADDRESS = "address"
SCOPE_PHONE = "phone"
SCOPE_OFFLINE_ACCESS = "offline_access"
SCOPE_WEBID = "webid"


def b64url_encode(data: bytes) -> str:
    """Base64url encode without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def random_urlsafe_string(
    size: int, random_bytes: RandomBytes = secrets.token_bytes
) -> str:
    """``size`` random bytes, base64url encoded without padding."""
    return b64url_encode(random_bytes(size))


def generate_state(random_bytes: RandomBytes = secrets.token_bytes) -> str:
    """Generate cryptographically secure state parameter (CSRF protection)."""
    return random_urlsafe_string(STATE_SIZE_BYTES, random_bytes)


def generate_nonce(random_bytes: RandomBytes = secrets.token_bytes) -> str:
    """Generate the nonce binding the ID Token to this authorization attempt."""
    return random_urlsafe_string(NONCE_SIZE_BYTES, random_bytes)


def states_match(expected: str, actual: str | None) -> bool:
    """Byte-for-byte comparison of the request and callback state."""
    if actual is None:
        return False
    return secrets.compare_digest(expected.encode("utf-8"), actual.encode("utf-8"))


def _is_scope_character(char: str) -> bool:
    # RFC 6749 Section 3.3: %x21 / %x23-5B / %x5D-7E
    code = ord(char)
    return code == 0x21 or 0x23 <= code <= 0x5B or 0x5D <= code <= 0x7E


def scopes_to_string(scopes: Iterable[str]) -> str:
    """Join scope tokens with spaces.

    An empty token or one containing spaces, quotes, backslashes or control
    characters is a programming error.
    """
    scopes = list(scopes)
    for scope in scopes:
        assert scope, "Found illegal empty scope string."
        assert all(
            _is_scope_character(c) for c in scope
        ), f"Found illegal character in scope string: {scope!r}"
    return " ".join(scopes)


def scopes_from_string(scope: str | None) -> list[str]:
    if not scope:
        return []
    return scope.split(" ")


def redact(value: str | None) -> str | None:
    """Shorten a secret for logging: first six characters then ``...[redacted]``."""
    if value is None:
        return None
    if len(value) == 0:
        return ""
    if len(value) <= 8:
        return "[redacted]"
    return value[:6] + "...[redacted]"
