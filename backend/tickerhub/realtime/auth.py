"""Bearer token verification shared by the WebSocket handshake and the REST routes."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

import jwt

from ..errors import InvalidToken

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    exp: int
    iss: str
    aud: str | list[str]
    role: str = "user"


class TokenVerifier:
    """Verify HS256 access tokens: signature, expiry, issuer and audience."""

    def __init__(
        self,
        secret: str,
        issuer: str,
        audience: str,
        algorithms: Sequence[str] = ("HS256",),
        leeway: float = 0.0,
    ) -> None:
        if not secret:
            raise ValueError("JWT secret must be configured")
        self._secret = secret
        self._issuer = issuer
        self._audience = audience
        self._algorithms = list(algorithms)
        self._leeway = leeway

    def verify(self, token: str | None) -> TokenClaims:
        if not token:
            raise InvalidToken("missing token")
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=self._algorithms,
                issuer=self._issuer,
                audience=self._audience,
                leeway=self._leeway,
                options={"require": ["exp", "iss", "aud"]},
            )
        except jwt.PyJWTError as e:
            raise InvalidToken(str(e)) from None

        user_id = claims.get("userId") or claims.get("sub")
        if not user_id:
            raise InvalidToken("token has no user identity")
        return TokenClaims(
            user_id=str(user_id),
            exp=int(claims["exp"]),
            iss=claims["iss"],
            aud=claims["aud"],
            role=str(claims.get("role", "user")),
        )


def extract_bearer(header: str | None) -> str | None:
    """Token from an ``Authorization: Bearer <token>`` header, or None."""
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
