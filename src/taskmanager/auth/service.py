"""Authentication: login, refresh-token rotation, logout and revocation."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from taskmanager.core.exceptions import (
    InvalidCredentialsError,
    InvalidTokenError,
    NotFoundError,
    UnauthorizedError,
)
from taskmanager.core.types import RefreshToken, TokenPair, utcnow
from taskmanager.utils.security import generate_refresh_token, verify_password
from taskmanager.utils.validation import validate_refresh_token_format

if TYPE_CHECKING:
    from datetime import datetime

    from taskmanager.auth.tokens import TokenService
    from taskmanager.core.types import Actor, User, UserProfile
    from taskmanager.storage.repository import Repository

logger = logging.getLogger(__name__)


class AuthService:
    """Issue, rotate and revoke credentials.

    Refresh tokens are opaque, persisted and single-use: every successful
    :meth:`refresh` revokes the presented token and issues a new one in the
    same repository transaction.
    """

    def __init__(
        self,
        repository: Repository,
        tokens: TokenService,
        refresh_ttl: timedelta = timedelta(days=7),
    ) -> None:
        self.repository = repository
        self.tokens = tokens
        self.refresh_ttl = refresh_ttl

    async def login(self, username: str, password: str) -> TokenPair:
        """Authenticate by username and password.

        Unknown, inactive and wrong-password attempts all raise the same
        :class:`InvalidCredentialsError`, and no refresh token is persisted.
        """
        user = await self.repository.find_user_by_username(username)
        if user is not None and not user.is_active:
            user = None

        # Always verify so unknown users cost the same as wrong passwords
        password_ok = verify_password(password, user.password_hash if user else None)
        if user is None or not password_ok:
            logger.warning("Failed login attempt for username=%r", username)
            raise InvalidCredentialsError()

        now = utcnow()
        refresh = await self.repository.add_refresh_token(self._new_refresh_token(user, now))
        logger.info("User %s logged in", user.id)
        return self._token_pair(user, refresh.token, now)

    async def refresh(self, token: str) -> TokenPair:
        """Exchange a refresh token for a new token pair.

        Raises:
            InvalidTokenError: If the token is unknown, revoked, expired, its
                user is gone or inactive, or a concurrent refresh already
                consumed it.
        """
        if not validate_refresh_token_format(token):
            raise InvalidTokenError()

        now = utcnow()
        stored = await self.repository.find_refresh_token(token)
        if stored is None or not stored.is_active(now):
            logger.warning("Rejected refresh with unknown or inactive token")
            raise InvalidTokenError()

        try:
            user = await self.repository.get_user(stored.user_id)
        except NotFoundError:
            raise InvalidTokenError() from None
        if not user.is_active:
            logger.warning("Rejected refresh for inactive user %s", user.id)
            raise InvalidTokenError()

        rotated = await self.repository.rotate_refresh_token(
            token, self._new_refresh_token(user, now), revoked_at=now
        )
        if rotated is None:
            logger.warning("Refresh token for user %s was consumed concurrently", user.id)
            raise InvalidTokenError()

        logger.info("Rotated refresh token for user %s", user.id)
        return self._token_pair(user, rotated.token, now)

    async def logout(self, user_id: int) -> int:
        """Revoke every active refresh token of *user_id*.  Idempotent."""
        count = await self.repository.revoke_user_refresh_tokens(user_id, revoked_at=utcnow())
        logger.info("User %s logged out (%d tokens revoked)", user_id, count)
        return count

    async def revoke_token(self, token: str) -> bool:
        """Revoke one refresh token.  Returns False if it does not exist."""
        if not validate_refresh_token_format(token):
            return False
        revoked = await self.repository.revoke_refresh_token(token, revoked_at=utcnow())
        if revoked:
            logger.info("Refresh token revoked")
        return revoked

    async def get_profile(self, actor: Actor) -> UserProfile:
        """Return the profile of the authenticated caller."""
        try:
            user = await self.repository.get_user(actor.id)
        except NotFoundError:
            raise UnauthorizedError() from None
        if not user.is_active:
            raise UnauthorizedError()
        return user.to_profile()

    def _new_refresh_token(self, user: User, now: datetime) -> RefreshToken:
        return RefreshToken(
            user_id=user.id,  # type: ignore[arg-type]
            token=generate_refresh_token(),
            expires_at=now + self.refresh_ttl,
            created_at=now,
        )

    def _token_pair(self, user: User, refresh_token: str, now: datetime) -> TokenPair:
        access_token, expires_at = self.tokens.create_access_token(user, now)
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            user=user.to_profile(),
        )


__all__ = ["AuthService"]
