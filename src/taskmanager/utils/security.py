"""Security utilities - password hashing and opaque token generation.

Password hashes are produced by pwdlib's recommended hasher (Argon2).  The
hasher is created once and reused.
"""

import secrets

from pwdlib import PasswordHash
from pwdlib.exceptions import UnknownHashError

_DUMMY_PASSWORD = "taskmanager-dummy-password"


def _get_password_hasher() -> PasswordHash:
    """Get or create the password hasher instance."""
    if not hasattr(_get_password_hasher, "cached_instance"):
        _get_password_hasher.cached_instance = PasswordHash.recommended()  # type: ignore[attr-defined]
    return _get_password_hasher.cached_instance  # type: ignore[attr-defined]


def _get_dummy_hash() -> str:
    if not hasattr(_get_dummy_hash, "cached_hash"):
        _get_dummy_hash.cached_hash = hash_password(_DUMMY_PASSWORD)  # type: ignore[attr-defined]
    return _get_dummy_hash.cached_hash  # type: ignore[attr-defined]


def hash_password(password: str) -> str:
    """Hash a password with a fresh random salt.

    Args:
        password: Plain text password

    Returns:
        Encoded hash string safe to persist

    Example:
        ```python
        user = user.model_copy(update={"password_hash": hash_password("s3cret!")})
        ```
    """
    return _get_password_hasher().hash(password)


def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    """Verify a password against its stored hash.

    When *hashed_password* is ``None`` (unknown user) a verification against
    a dummy hash still runs, so a missing account costs the same as a wrong
    password.  Unrecognised hash formats verify as ``False``.

    Args:
        plain_password: Password supplied by the caller
        hashed_password: Stored hash, or ``None`` when there is no account

    Returns:
        True only if the password matches a real stored hash
    """
    hasher = _get_password_hasher()
    if hashed_password is None:
        hasher.verify(plain_password, _get_dummy_hash())
        return False
    try:
        return hasher.verify(plain_password, hashed_password)
    except UnknownHashError:
        return False


def generate_refresh_token(length: int = 64) -> str:
    """Generate an opaque URL-safe refresh token.

    Args:
        length: Number of random bytes (default: 64)

    Returns:
        URL-safe token string
    """
    return secrets.token_urlsafe(length)


def generate_token_id() -> str:
    """Generate a unique id for the ``jti`` claim of an access token."""
    return secrets.token_hex(16)


__all__ = [
    "generate_refresh_token",
    "generate_token_id",
    "hash_password",
    "verify_password",
]
