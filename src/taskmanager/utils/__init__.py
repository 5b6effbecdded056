"""Utility functions and helpers."""

from taskmanager.utils.security import (
    generate_refresh_token,
    hash_password,
    verify_password,
)
from taskmanager.utils.validation import (
    validate_email,
    validate_username,
)

__all__ = [
    "generate_refresh_token",
    "hash_password",
    "validate_email",
    "validate_username",
    "verify_password",
]
