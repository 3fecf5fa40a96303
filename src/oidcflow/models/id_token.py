"""ID Token claims model.

Claims are parsed, not verified: the ID Token arrives over a direct TLS
channel from the token endpoint, so its signature is not checked (OpenID
Connect Core 3.1.3.7 rule 6).
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Any


def _decode_segment(segment: str) -> dict[str, Any] | None:
    padded = segment + "=" * (-len(segment) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        value = json.loads(raw)
    except (binascii.Error, UnicodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass(frozen=True)
class IDTokenClaims:
    """Claims of an ID Token compact JWT."""

    issuer: str
    subject: str
    audience: tuple[str, ...]
    expires_at: float
    issued_at: float
    nonce: str | None = None
    header: dict[str, Any] = field(default_factory=dict, compare=False)
    claims: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_jwt(cls, token: str) -> IDTokenClaims | None:
        """Parse the header and payload segments of ``token``.

        Returns None when the token is not a three-segment JWT or any of
        ``iss``, ``sub``, ``aud``, ``exp`` or ``iat`` is absent or malformed.
        """
        if not isinstance(token, str):
            return None
        segments = token.split(".")
        if len(segments) != 3:
            return None

        header = _decode_segment(segments[0])
        claims = _decode_segment(segments[1])
        if header is None or claims is None:
            return None

        issuer = claims.get("iss")
        subject = claims.get("sub")
        audience = claims.get("aud")
        expires_at = claims.get("exp")
        issued_at = claims.get("iat")
        nonce = claims.get("nonce")

        if not isinstance(issuer, str) or not issuer:
            return None
        if not isinstance(subject, str) or not subject:
            return None
        if isinstance(audience, str):
            audience = [audience]
        if (
            not isinstance(audience, list)
            or not audience
            or not all(isinstance(a, str) for a in audience)
        ):
            return None
        if not _is_number(expires_at) or not _is_number(issued_at):
            return None
        if nonce is not None and not isinstance(nonce, str):
            return None

        return cls(
            issuer=issuer,
            subject=subject,
            audience=tuple(audience),
            expires_at=float(expires_at),
            issued_at=float(issued_at),
            nonce=nonce,
            header=header,
            claims=claims,
        )
