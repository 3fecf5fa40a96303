"""DPoP proof factory (RFC 9449).

Holds an asymmetric key pair and mints short-lived proof-of-possession JWTs
bound to an HTTP method and URL.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Callable
from urllib.parse import urlsplit, urlunsplit

from authlib.jose import JsonWebKey, jwt

from oidcflow.models.security import KeyPair
from oidcflow.services.security import RandomBytes, random_urlsafe_string

logger = logging.getLogger(__name__)

DPOP_JWT_TYPE = "dpop+jwt"
JTI_SIZE_BYTES = 12  # 96 bits
RSA_KEY_SIZE = 2048


def normalize_htu(url: str) -> str:
    """The ``htu`` claim: the target URI without query and fragment."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


class DPoPProofFactory:
    """Mints DPoP proofs signed with an RS256 key pair.

    The same key pair must be reused for every request carrying the access
    token it is bound to; a new key pair means a new token exchange.
    """

    def __init__(
        self,
        key_size: int = RSA_KEY_SIZE,
        clock: Callable[[], float] = time.time,
        random_bytes: RandomBytes = secrets.token_bytes,
    ):
        self._key_size = key_size
        self._clock = clock
        self._random_bytes = random_bytes

    def generate_key_pair(self) -> KeyPair:
        """Generate a fresh RSA signing key pair."""
        private_key = JsonWebKey.generate_key("RSA", self._key_size, is_private=True)
        key_pair = KeyPair(private_key=private_key)
        logger.debug(f"Generated DPoP key pair {key_pair.thumbprint}")
        return key_pair

    def mint(
        self, method: str, url: str, key_pair: KeyPair | None = None
    ) -> tuple[str, KeyPair]:
        """Create a DPoP proof for ``method`` and ``url``.

        Args:
            method: HTTP method of the request the proof accompanies
            url: Target URL; query and fragment are stripped
            key_pair: Key pair to sign with; generated when omitted

        Returns:
            Tuple of (compact JWS proof, key pair used)
        """
        if key_pair is None:
            key_pair = self.generate_key_pair()

        header = {
            "typ": DPOP_JWT_TYPE,
            "alg": key_pair.algorithm,
            "jwk": key_pair.public_jwk,
        }
        payload = {
            "htu": normalize_htu(url),
            "htm": method.upper(),
            "jti": random_urlsafe_string(JTI_SIZE_BYTES, self._random_bytes),
            "iat": int(self._clock()),
        }
        proof = jwt.encode(header, payload, key_pair.private_key).decode("ascii")
        logger.debug(f"Minted DPoP proof for {payload['htm']} {payload['htu']}")
        return proof, key_pair
