"""
Input normalisers and validators - framework-agnostic, pure functions.

All validators are stateless; anything that needs the database (handle
availability, email uniqueness) lives in the service layer.
"""

from __future__ import annotations

import re

from email_validator import EmailNotValidError, validate_email

_HANDLE_STRIP_RE = re.compile(r"[^a-z0-9]")
_HANDLE_RE = re.compile(r"^[A-Za-z0-9_.]{3,30}$")

MIN_PASSWORD_LENGTH = 6


def normalize_email(email: str | None) -> str:
    """Lowercase and trim *email*. ``None`` becomes ``""``."""
    return (email or "").strip().lower()


def is_usable_email(email: str | None) -> bool:
    """Return True if *email* is syntactically a mailbox we can key an account on.

    Deliverability (DNS) is not checked; the address has already been
    verified either by an identity provider or by an OTP round-trip.
    """
    normalized = normalize_email(email)
    if not normalized:
        return False
    try:
        validate_email(normalized, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def normalize_handle_seed(seed: str | None, max_length: int = 20, fallback: str = "user") -> str:
    """Reduce an arbitrary human string to a handle base.

    Lowercases, drops every character outside ``[a-z0-9]`` and truncates to
    *max_length*. An empty result becomes *fallback*.

    Examples:
        >>> normalize_handle_seed("Jane Doe")
        'janedoe'
        >>> normalize_handle_seed("!!!")
        'user'
    """
    base = _HANDLE_STRIP_RE.sub("", (seed or "").lower())[:max_length]
    return base or fallback


def validate_handle(handle: str) -> bool:
    """Return True if a user-chosen *handle* is 3–30 letters, digits, ``_`` or ``.``."""
    return bool(_HANDLE_RE.match(handle))


def validate_password(password: str) -> bool:
    """Return True if *password* meets the minimum length."""
    return len(password) >= MIN_PASSWORD_LENGTH


def is_well_formed_code(code: str, length: int = 6) -> bool:
    """Return True if *code* is exactly *length* ASCII digits."""
    return len(code) == length and code.isascii() and code.isdigit()
