"""
Request DTOs for authentication endpoints.

RegisterRequest        - POST /auth/register
LoginRequest           - POST /auth/login
EmailRequest           - POST /auth/send-otp, /auth/resend-otp, /auth/forgot-password
VerifyOtpRequest       - POST /auth/verify-otp
ResetPasswordRequest   - POST /auth/reset-password

Fields are plain strings; format checks happen in AuthService so every
failure comes back through the same typed-error path.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""

    model_config = ConfigDict(populate_by_name=True)

    email: str
    password: str
    user_name: str | None = None


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""

    model_config = ConfigDict(populate_by_name=True)

    email: str
    password: str


class EmailRequest(BaseModel):
    """Request body carrying only the target email address."""

    model_config = ConfigDict(populate_by_name=True)

    email: str


class VerifyOtpRequest(BaseModel):
    """Request body for POST /auth/verify-otp.

    ``code`` is the 6-digit one-time code sent to ``email``.
    """

    model_config = ConfigDict(populate_by_name=True)

    email: str
    code: str


class ResetPasswordRequest(BaseModel):
    """Request body for POST /auth/reset-password."""

    model_config = ConfigDict(populate_by_name=True)

    email: str
    code: str
    password: str
