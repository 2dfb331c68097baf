"""
OTP challenge document model.

Maps to the `otp-challenges` MongoDB collection.

One document per issued code. code_hash stores SHA-256(code); the plain
code is never stored. At most one document per (email, purpose) is
``active`` at a time: storing a new challenge supersedes the previous one.
``attempts_remaining`` only ever goes down, and every status other than
``active`` is terminal.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import ConfigDict, Field

from schemas.models.base import MongoBaseModel, PyObjectId


class ChallengePurpose(str, Enum):
    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


class ChallengeStatus(str, Enum):
    ACTIVE = "active"
    CONSUMED = "consumed"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"
    SUPERSEDED = "superseded"


TERMINAL_STATUSES = frozenset(
    {
        ChallengeStatus.CONSUMED,
        ChallengeStatus.EXPIRED,
        ChallengeStatus.EXHAUSTED,
        ChallengeStatus.SUPERSEDED,
    }
)


class ChallengeDoc(MongoBaseModel):
    """Document model for the `otp-challenges` collection."""

    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    email: str
    purpose: ChallengePurpose
    account_id: Optional[PyObjectId] = None
    code_hash: str
    created_at: datetime
    expires_at: datetime
    attempts_remaining: int = Field(ge=0)
    status: ChallengeStatus = ChallengeStatus.ACTIVE
    terminated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == ChallengeStatus.ACTIVE.value
