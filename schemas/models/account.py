"""
Account document model.

Maps to the `users` MongoDB collection.

Two creation paths produce slightly different shapes:
- Password registration: password_hash set, is_verified False until the
  email OTP is confirmed, google_id None
- Google sign-in: google_id set, is_verified True, password_hash None

Unique indexes: email, user_name, google_id (sparse).
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from schemas.models.base import MongoBaseModel

ROLE_USER = "user"
ROLE_ADMIN = "admin"


class AccountDoc(MongoBaseModel):
    """Document model for the `users` collection."""

    email: str
    user_name: str
    google_id: Optional[str] = None
    is_verified: bool = False
    avatar_url: str = ""
    role: str = ROLE_USER
    is_online: bool = False
    password_hash: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_seen: Optional[datetime] = None

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)

    def public_profile(self) -> dict:
        """Fields a client may cache; never includes credentials."""
        return {
            "id": self.id_str,
            "email": self.email,
            "user_name": self.user_name,
            "is_verified": self.is_verified,
            "avatar_url": self.avatar_url,
            "role": self.role,
        }
