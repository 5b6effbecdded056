"""Configuration management for taskmanager.

Settings are read from ``TASKMANAGER_``-prefixed environment variables (or a
``.env`` file) and validated with Pydantic Settings.
"""

from __future__ import annotations

import re
from datetime import timedelta

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TaskManagerConfig(BaseSettings):
    """Main configuration for taskmanager.

    Example:
        ```python
        # TASKMANAGER_DATABASE_URL=postgresql+asyncpg://...
        # TASKMANAGER_JWT_SECRET=...

        config = TaskManagerConfig()

        # Or programmatically
        config = TaskManagerConfig(
            database_url="sqlite+aiosqlite:///./taskmanager.db",
            jwt_secret="x" * 32,
        )
        ```

    Attributes:
        database_url: Primary database connection URL
        jwt_secret: HMAC key used to sign access tokens
        access_token_expire_minutes: Access token lifetime
        refresh_token_expire_days: Refresh token lifetime
        seed_admin: Create the initial Admin when the store has no users
    """

    model_config = SettingsConfigDict(
        env_prefix="TASKMANAGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def __str__(self) -> str:
        """String representation with masked secrets."""
        result = super().__repr__()
        # Mask passwords in URLs
        result = re.sub(r"://([^:]+):([^@]+)@", r"://\1:***@", result)
        # Mask secret values
        result = re.sub(
            r"(jwt_secret|admin_password|secret|password)=(?:'[^']*'|[^\s,)]+)",
            r"\1='***'",
            result,
            flags=re.IGNORECASE,
        )
        return result

    ##########################
    # Database Configuration #
    ##########################

    database_url: str = Field(
        default="sqlite+aiosqlite:///./taskmanager.db",
        description="Primary database connection URL",
    )

    database_pool_size: int = Field(
        default=20,
        ge=1,
        le=100,
        description="Database connection pool size",
    )

    database_max_overflow: int = Field(
        default=40,
        ge=0,
        le=200,
        description="Max overflow connections beyond pool size",
    )

    database_pool_timeout: int = Field(
        default=30,
        ge=1,
        description="Pool checkout timeout in seconds",
    )

    database_pool_recycle: int = Field(
        default=3600,
        ge=60,
        description="Connection recycle time in seconds",
    )

    database_echo: bool = Field(
        default=False,
        description="Enable SQL query logging (use only in development)",
    )

    ##################
    # Token Settings #
    ##################

    jwt_secret: str = Field(
        ...,
        description="Secret key used to sign access tokens (required, >= 32 chars)",
    )

    jwt_algorithm: str = Field(
        default="HS256",
        description="JWT signing algorithm",
    )

    jwt_issuer: str = Field(
        default="taskmanager",
        description="Value of the iss claim",
    )

    jwt_audience: str = Field(
        default="taskmanager-clients",
        description="Value of the aud claim",
    )

    access_token_expire_minutes: int = Field(
        default=60,
        ge=1,
        le=24 * 60,
        description="Access token lifetime in minutes",
    )

    refresh_token_expire_days: int = Field(
        default=7,
        ge=1,
        le=365,
        description="Refresh token lifetime in days",
    )

    #################
    # Initial Admin #
    #################

    seed_admin: bool = Field(
        default=True,
        description="Create the initial Admin account when no users exist",
    )

    admin_username: str = Field(default="admin")
    admin_email: str = Field(default="admin@taskmanager.com")
    admin_password: str = Field(default="Admin@123", min_length=6)
    admin_first_name: str = Field(default="System")
    admin_last_name: str = Field(default="Administrator")

    ##############
    # Validators #
    ##############

    @field_validator("database_url", mode="before")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate the database URL and warn about sync drivers."""
        import warnings

        from taskmanager.utils.db_compat import DbDialect, detect_dialect

        url_str = str(v).rstrip("/")
        if detect_dialect(url_str) == DbDialect.UNKNOWN:
            raise ValueError(f"Unsupported database URL scheme: {url_str.split(':', 1)[0]!r}")

        _SYNC_ONLY_SCHEMES = ("postgresql://", "sqlite://", "mysql://")
        if any(url_str.startswith(s) for s in _SYNC_ONLY_SCHEMES):
            warnings.warn(
                "Database URL uses a synchronous driver scheme. "
                "Use an async driver instead (e.g. postgresql+asyncpg, "
                "sqlite+aiosqlite, mysql+aiomysql).",
                stacklevel=4,
            )
        return url_str

    @field_validator("jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        if len(v) < 32:
            raise ValueError("jwt_secret must be at least 32 characters long")
        return v

    @field_validator("jwt_algorithm")
    @classmethod
    def validate_jwt_algorithm(cls, v: str) -> str:
        """Only HMAC algorithms are supported since the key is a shared secret."""
        v = v.upper()
        if v not in {"HS256", "HS384", "HS512"}:
            raise ValueError("jwt_algorithm must be one of HS256, HS384, HS512")
        return v

    ##################
    # Helper Methods #
    ##################

    @property
    def access_token_ttl(self) -> timedelta:
        return timedelta(minutes=self.access_token_expire_minutes)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return timedelta(days=self.refresh_token_expire_days)


__all__ = ["TaskManagerConfig"]
