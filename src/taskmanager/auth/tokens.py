"""Access-token issuing and validation.

Access tokens are short-lived HMAC-signed JWTs (python-jose).  They carry the
user's identity and role so the transport layer can build an
:class:`~taskmanager.core.types.Actor` without a repository round-trip.

Example payload::

    {
        "sub": "42",
        "username": "alice",
        "email": "alice@example.com",
        "role": "Manager",
        "first_name": "Alice",
        "last_name": "Smith",
        "iss": "taskmanager",
        "aud": "taskmanager-clients",
        "iat": 1700000000,
        "exp": 1700003600,
        "jti": "9f1c..."
    }
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from jose import JWTError, jwt

from taskmanager.core.exceptions import UnauthorizedError
from taskmanager.core.types import Actor, Role, utcnow
from taskmanager.utils.security import generate_token_id

if TYPE_CHECKING:
    from taskmanager.core.config import TaskManagerConfig
    from taskmanager.core.types import User

logger = logging.getLogger(__name__)


class TokenService:
    """Sign and verify access tokens.

    Attributes:
        secret: HMAC signing key
        algorithm: JWT signing algorithm
        issuer: ``iss`` claim written and required
        audience: ``aud`` claim written and required
        ttl: Access token lifetime
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        issuer: str = "taskmanager",
        audience: str = "taskmanager-clients",
        ttl: timedelta = timedelta(minutes=60),
    ) -> None:
        if not secret:
            raise ValueError("TokenService requires a non-empty secret key.")
        self.secret = secret
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience
        self.ttl = ttl

    @classmethod
    def from_config(cls, config: TaskManagerConfig) -> TokenService:
        return cls(
            secret=config.jwt_secret,
            algorithm=config.jwt_algorithm,
            issuer=config.jwt_issuer,
            audience=config.jwt_audience,
            ttl=config.access_token_ttl,
        )

    def create_access_token(self, user: User, now: datetime | None = None) -> tuple[str, datetime]:
        """Issue a signed access token for *user*.

        Returns:
            The encoded token and its expiry instant
        """
        issued_at = now or utcnow()
        expires_at = issued_at + self.ttl
        claims: dict[str, Any] = {
            "sub": str(user.id),
            "username": user.username,
            "email": user.email,
            "role": user.role.value,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": generate_token_id(),
        }
        token = jwt.encode(claims, self.secret, algorithm=self.algorithm)
        return token, expires_at

    def decode_access_token(self, token: str) -> dict[str, Any]:
        """Verify signature, issuer, audience and expiry and return the claims.

        Raises:
            UnauthorizedError: On any validation failure.  The internal
                reason is logged, never returned to the caller.
        """
        try:
            return jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
            )
        except JWTError as e:
            logger.warning("Access token validation failed: %s", e)
            raise UnauthorizedError("Invalid or expired access token") from e

    def actor_from_token(self, token: str) -> Actor:
        """Decode *token* and build the :class:`Actor` it identifies."""
        claims = self.decode_access_token(token)
        try:
            return Actor(
                id=int(claims["sub"]),
                role=Role(claims["role"]),
                username=str(claims.get("username", "")),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Access token carries malformed identity claims")
            raise UnauthorizedError("Invalid or expired access token") from e


__all__ = ["TokenService"]
