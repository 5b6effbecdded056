"""Validation utilities for user-supplied identifiers.

Explicit length caps run before every regex so pathologically large inputs
are rejected without touching the pattern.
"""
from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Compiled patterns
# ---------------------------------------------------------------------------
_USERNAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._\-]{0,99}$")
_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}$")
_TOKEN_RE = re.compile(r"^[A-Za-z0-9_\-]+$")

_MAX_USERNAME_INPUT = 100
_MAX_EMAIL_INPUT = 255
_MAX_TOKEN_INPUT = 500


def validate_username(username: str) -> bool:
    """Return True if *username* is 1-100 chars of letters, digits, ``.``, ``_`` or ``-``."""
    if not username or not isinstance(username, str):
        return False
    if len(username) > _MAX_USERNAME_INPUT:
        return False
    return bool(_USERNAME_RE.match(username))


def validate_email(email: str) -> bool:
    """Return True if email has a valid format."""
    if not email or not isinstance(email, str):
        return False
    if len(email) > _MAX_EMAIL_INPUT:
        return False
    return bool(_EMAIL_RE.match(email))


def validate_refresh_token_format(token: str) -> bool:
    """Return True if *token* looks like a URL-safe opaque refresh token.

    Used to reject garbage before a repository lookup.
    """
    if not token or not isinstance(token, str):
        return False
    if len(token) > _MAX_TOKEN_INPUT:
        return False
    return bool(_TOKEN_RE.match(token))


__all__ = [
    "validate_email",
    "validate_refresh_token_format",
    "validate_username",
]
