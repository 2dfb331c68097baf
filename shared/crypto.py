"""
Cryptographic helpers - password hashing and one-time-code hashing.

Uses argon2 for passwords (via argon2-cffi) and SHA-256 for OTP codes.
"""

from __future__ import annotations

import hashlib
import hmac

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

_password_hasher = PasswordHasher()


def hash_password(plain_password: str) -> str:
    """Hash *plain_password* with argon2id.

    Returns:
        Argon2 hash string (includes algorithm parameters and salt).
    """
    return _password_hasher.hash(plain_password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify *plain_password* against an argon2 *password_hash*.

    Returns:
        ``True`` if the password matches, ``False`` for a wrong password or
        an unparseable hash.
    """
    try:
        return _password_hasher.verify(password_hash, plain_password)
    except (VerificationError, InvalidHashError):
        return False


def hash_code(code: str) -> str:
    """Return the hex-encoded SHA-256 digest of *code*.

    OTP codes are hashed before they are stored so the plaintext is never
    persisted.
    """
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def code_matches(code: str, code_hash: str) -> bool:
    """Constant-time comparison of *code* against a stored :func:`hash_code` digest."""
    return hmac.compare_digest(hash_code(code), code_hash)
