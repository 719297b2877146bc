"""
Bearer token verification for websocket clients.

Tokens are HS256 JWTs issued by the account service with the user id in
the ``userId`` claim.
"""

from dataclasses import dataclass
from typing import Protocol

import jwt


class InvalidTokenError(Exception):
    """Token is malformed, badly signed, expired or carries no identity."""


@dataclass(frozen=True)
class Identity:
    user_id: str


class TokenVerifier(Protocol):
    async def verify(self, token: str) -> Identity: ...


class JWTTokenVerifier:
    """Verifies signature and expiry of HMAC-signed JWTs."""

    def __init__(self, secret: str, algorithm: str = "HS256", user_id_claim: str = "userId"):
        if not secret:
            raise ValueError("JWT secret is required")
        self.secret = secret
        self.algorithm = algorithm
        self.user_id_claim = user_id_claim

    async def verify(self, token: str) -> Identity:
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.PyJWTError as e:
            raise InvalidTokenError(str(e)) from e

        user_id = payload.get(self.user_id_claim)
        if user_id is None or user_id == "":
            raise InvalidTokenError(f"missing {self.user_id_claim} claim")
        return Identity(user_id=str(user_id))
