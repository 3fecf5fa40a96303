"""ID Token validation (OpenID Connect Core 1.0 Section 3.1.3.7).

The signature is deliberately not verified: the token was received directly
from the token endpoint over TLS, which rule 6 of Section 3.1.3.7 permits.
Encryption, ``acr`` and ``max_age`` are not checked either.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from oidcflow.models.errors import (
    IDTokenRule,
    IDTokenStructuralError,
    IDTokenValidationError,
)
from oidcflow.models.id_token import IDTokenClaims
from oidcflow.models.tokens import GrantType

logger = logging.getLogger(__name__)

DEFAULT_MAX_CLOCK_SKEW = 600  # seconds


class IDTokenValidator:
    """Applies the supported ID Token rules in order; the first failure wins."""

    def __init__(
        self,
        max_clock_skew: float = DEFAULT_MAX_CLOCK_SKEW,
        clock: Callable[[], float] = time.time,
    ):
        self.max_clock_skew = max_clock_skew
        self._clock = clock

    def validate(
        self,
        id_token: str,
        *,
        issuer: str | None,
        client_id: str,
        grant_type: GrantType,
        nonce: str | None = None,
    ) -> IDTokenClaims:
        """Validate ``id_token`` and return its claims.

        Args:
            id_token: Compact JWT from the token response
            issuer: Issuer of the provider configuration; skipped when None
            client_id: This client's identifier
            grant_type: Grant the token was issued for
            nonce: Nonce sent in the authorization request, if any

        Raises:
            IDTokenStructuralError: Not a JWT with the required claims
            IDTokenValidationError: A rule failed; ``rule`` names which
        """
        claims = IDTokenClaims.from_jwt(id_token)
        if claims is None:
            raise IDTokenStructuralError(
                "ID Token is not a JWT with iss, sub, aud, exp and iat claims"
            )

        if issuer is not None and claims.issuer != issuer:
            self._fail(IDTokenRule.ISSUER, "Issuer mismatch", issuer, claims.issuer)

        if client_id not in claims.audience:
            self._fail(
                IDTokenRule.AUDIENCE,
                "Audience does not contain the client id",
                client_id,
                list(claims.audience),
            )

        now = self._clock()
        if not now < claims.expires_at:
            self._fail(
                IDTokenRule.EXPIRED, "ID Token has expired", now, claims.expires_at
            )

        if abs(now - claims.issued_at) > self.max_clock_skew:
            self._fail(
                IDTokenRule.ISSUED_AT,
                f"ID Token issued more than {self.max_clock_skew}s away from now",
                now,
                claims.issued_at,
            )

        if grant_type is GrantType.AUTHORIZATION_CODE and nonce is not None:
            if claims.nonce != nonce:
                self._fail(IDTokenRule.NONCE, "Nonce mismatch", nonce, claims.nonce)

        logger.debug(f"Validated ID Token for subject {claims.subject}")
        return claims

    @staticmethod
    def _fail(rule: IDTokenRule, message: str, expected, actual):
        logger.warning(f"ID Token rejected ({rule.value}): {message}")
        raise IDTokenValidationError(
            f"{message}: expected {expected!r}, got {actual!r}",
            rule=rule,
            expected=expected,
            actual=actual,
        )
