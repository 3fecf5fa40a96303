"""PKCE (Proof Key for Code Exchange) manager.

Implements RFC 7636 parameter generation with the S256 method to prevent
authorization code interception.
"""

from __future__ import annotations

import secrets

from authlib.oauth2.rfc7636 import create_s256_code_challenge

from oidcflow.models.errors import AuthorizationError, ErrorKind
from oidcflow.models.security import PKCEParameters
from oidcflow.services.security import (
    CODE_VERIFIER_SIZE_BYTES,
    RandomBytes,
    random_urlsafe_string,
)


class PKCEManager:
    """Generates PKCE parameters for authorization attempts.

    - Uses S256 code challenge method (SHA256 + base64url)
    - Generates code verifiers from a cryptographically secure source
    - Accepts an injectable random source so tests can be deterministic
    """

    def __init__(
        self,
        random_bytes: RandomBytes = secrets.token_bytes,
        verifier_size: int = CODE_VERIFIER_SIZE_BYTES,
    ):
        if verifier_size < CODE_VERIFIER_SIZE_BYTES:
            raise ValueError(
                f"code verifier needs at least {CODE_VERIFIER_SIZE_BYTES} bytes"
            )
        self._random_bytes = random_bytes
        self._verifier_size = verifier_size

    def generate_parameters(self) -> PKCEParameters:
        """Generate new PKCE parameters for an authorization flow.

        Returns:
            PKCEParameters: Immutable parameters for the authorization flow

        Raises:
            AuthorizationError: If parameter generation fails
        """
        try:
            code_verifier = random_urlsafe_string(
                self._verifier_size, self._random_bytes
            )
            return PKCEParameters(
                code_verifier=code_verifier,
                code_challenge=self.generate_code_challenge(code_verifier),
                code_challenge_method="S256",
            )
        except ValueError as e:
            raise AuthorizationError(
                f"Failed to generate PKCE parameters: {e}",
                kind=ErrorKind.INVALID_STATE,
            ) from e

    @staticmethod
    def generate_code_challenge(code_verifier: str) -> str:
        """BASE64URL-ENCODE(SHA256(ASCII(code_verifier))), RFC 7636 Section 4.2."""
        return create_s256_code_challenge(code_verifier)
