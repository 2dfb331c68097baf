"""
Response DTOs for authentication endpoints.

UserProfileResponse  - account shape cached by clients (login/register/me)
AuthResponse         - register (201), login, verify-otp
MeResponse           - GET /auth/me
OtpSentResponse      - send-otp, resend-otp, forgot-password
GoogleStatusResponse - GET /auth/google/status
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict

from schemas.models.account import AccountDoc


class UserProfileResponse(BaseModel):
    """Public account profile; never carries credentials."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    email: str
    user_name: str
    is_verified: bool
    avatar_url: str = ""
    role: str = "user"

    @classmethod
    def from_account(cls, account: AccountDoc) -> "UserProfileResponse":
        return cls(**account.public_profile())


class AuthResponse(BaseModel):
    """Token plus profile returned whenever a session is opened."""

    model_config = ConfigDict(populate_by_name=True)

    token: str
    user: UserProfileResponse
    requires_verification: bool = False
    verification_sent: Optional[bool] = None
    message: Optional[str] = None


class MeResponse(BaseModel):
    """Response body for GET /auth/me."""

    model_config = ConfigDict(populate_by_name=True)

    user: UserProfileResponse


class OtpSentResponse(BaseModel):
    """Response body after a code was (or, for password reset, may have been) sent."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    email: str
    expires_in: Optional[int] = None
    delivered: Optional[bool] = None


class GoogleStatusResponse(BaseModel):
    """Response body for GET /auth/google/status."""

    model_config = ConfigDict(populate_by_name=True)

    enabled: bool
    message: str
