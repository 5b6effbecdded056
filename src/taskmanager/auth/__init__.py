"""Authentication: access tokens and the refresh-token lifecycle."""

from taskmanager.auth.service import AuthService
from taskmanager.auth.tokens import TokenService

__all__ = ["AuthService", "TokenService"]
