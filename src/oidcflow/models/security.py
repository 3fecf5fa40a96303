"""Security-related models for the relying party.

Contains PKCE parameters and the DPoP key pair held for sender-constrained
tokens.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from authlib.jose import RSAKey


@dataclass(frozen=True)
class PKCEParameters:
    """PKCE (Proof Key for Code Exchange) parameters (RFC 7636).

    Immutable parameters generated for each authorization attempt. The
    verifier stays in memory and is only ever sent to the token endpoint.
    """

    code_verifier: str = field(repr=False)
    code_challenge: str = field()
    code_challenge_method: str = field(default="S256")

    def __post_init__(self) -> None:
        """Validate PKCE parameters meet RFC 7636 requirements."""
        if not (43 <= len(self.code_verifier) <= 128):
            raise ValueError("code_verifier must be 43-128 characters")
        if not (43 <= len(self.code_challenge) <= 128):
            raise ValueError("code_challenge must be 43-128 characters")
        if self.code_challenge_method != "S256":
            raise ValueError("Only S256 code challenge method is supported")


@dataclass(frozen=True)
class KeyPair:
    """Asymmetric key pair used to sign DPoP proofs.

    An access token and the key pair it was bound to form a single
    sender-constrained unit.
    """

    private_key: RSAKey = field(repr=False)
    algorithm: str = "RS256"

    @property
    def public_jwk(self) -> dict[str, Any]:
        """Public half of the key as a JWK dictionary."""
        return dict(self.private_key.as_dict(is_private=False))

    @property
    def thumbprint(self) -> str:
        """RFC 7638 JWK thumbprint, base64url encoded."""
        return self.private_key.thumbprint()
