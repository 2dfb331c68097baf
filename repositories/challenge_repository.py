"""
OTP challenge repository - data access for the `otp-challenges` collection.

A partial unique index on (email, purpose) restricted to ``status ==
"active"`` makes "at most one active challenge per pair" a database
guarantee rather than a read-then-write hope. ``store`` supersedes the
current active challenge and retries its insert once if a concurrent issue
slipped in between.

Attempt accounting is a single pipeline ``find_one_and_update`` guarded by
``attempts_remaining > 0``, so two parallel wrong submissions can never both
observe the same remaining count. The write that spends the last attempt also
marks the challenge ``exhausted``, and consumption requires attempts to remain,
so a correct code can never land on a spent challenge.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import DuplicateKeyError

from errors import WriteConflictError
from schemas.models.challenge import ChallengeDoc, ChallengePurpose, ChallengeStatus
from shared.datetime_utils import utcnow
from shared.logging import get_logger

log = get_logger(__name__)

# Expired documents linger this long for auditing before Mongo drops them
_TTL_GRACE_SECONDS = 86400


def _value(member: Any) -> Any:
    return getattr(member, "value", member)


class ChallengeRepository:
    """Async MongoDB access for OTP challenge documents."""

    COLLECTION = "otp-challenges"

    def __init__(self, db: AsyncDatabase) -> None:
        self._col = db[self.COLLECTION]

    async def ensure_indexes(self) -> None:
        await self._col.create_index(
            [("email", ASCENDING), ("purpose", ASCENDING)],
            unique=True,
            partialFilterExpression={"status": ChallengeStatus.ACTIVE.value},
            name="one_active_challenge_per_subject",
        )
        await self._col.create_index(
            [("email", ASCENDING), ("purpose", ASCENDING), ("created_at", DESCENDING)]
        )
        await self._col.create_index(
            [("expires_at", ASCENDING)], expireAfterSeconds=_TTL_GRACE_SECONDS
        )

    async def _supersede_active(self, email: str, purpose: ChallengePurpose) -> int:
        result = await self._col.update_many(
            {
                "email": email,
                "purpose": _value(purpose),
                "status": ChallengeStatus.ACTIVE.value,
            },
            {
                "$set": {
                    "status": ChallengeStatus.SUPERSEDED.value,
                    "terminated_at": utcnow(),
                }
            },
        )
        return result.modified_count

    async def store(self, challenge: ChallengeDoc) -> ChallengeDoc:
        """Insert *challenge* as the only active one for its (email, purpose).

        Raises:
            WriteConflictError: a concurrent issue won twice in a row.
        """
        doc = challenge.to_mongo()
        for attempt in range(2):
            superseded = await self._supersede_active(challenge.email, challenge.purpose)
            if superseded:
                log.debug(
                    "otp_challenge_superseded",
                    email=challenge.email,
                    purpose=_value(challenge.purpose),
                    count=superseded,
                )
            try:
                result = await self._col.insert_one(dict(doc))
            except DuplicateKeyError:
                log.warning(
                    "otp_challenge_store_race",
                    email=challenge.email,
                    purpose=_value(challenge.purpose),
                    attempt=attempt,
                )
                continue
            return challenge.model_copy(update={"id": result.inserted_id})
        raise WriteConflictError("A concurrent challenge was issued", field="email")

    async def load_active(
        self, email: str, purpose: ChallengePurpose
    ) -> Optional[ChallengeDoc]:
        raw = await self._col.find_one(
            {
                "email": email,
                "purpose": _value(purpose),
                "status": ChallengeStatus.ACTIVE.value,
            }
        )
        return ChallengeDoc.from_mongo(raw)

    async def decrement_attempt(self, challenge_id: Any) -> Optional[ChallengeDoc]:
        """Atomically burn one attempt and return the post-decrement document.

        The decrement that reaches zero also moves the challenge to
        ``exhausted`` in the same write. Returns None when the challenge is no
        longer active or already has zero attempts left.
        """
        reached_zero = {"$lte": ["$attempts_remaining", 0]}
        raw = await self._col.find_one_and_update(
            {
                "_id": challenge_id,
                "status": ChallengeStatus.ACTIVE.value,
                "attempts_remaining": {"$gt": 0},
            },
            [
                {"$set": {"attempts_remaining": {"$subtract": ["$attempts_remaining", 1]}}},
                {
                    "$set": {
                        "status": {
                            "$cond": [reached_zero, ChallengeStatus.EXHAUSTED.value, "$status"]
                        },
                        "terminated_at": {"$cond": [reached_zero, utcnow(), "$terminated_at"]},
                    }
                },
            ],
            return_document=ReturnDocument.AFTER,
        )
        return ChallengeDoc.from_mongo(raw)

    async def mark_terminal(self, challenge_id: Any, status: ChallengeStatus) -> bool:
        """Move an active challenge to *status*. False if it was not active.

        Consumption additionally requires attempts to remain.
        """
        query: dict[str, Any] = {"_id": challenge_id, "status": ChallengeStatus.ACTIVE.value}
        if _value(status) == ChallengeStatus.CONSUMED.value:
            query["attempts_remaining"] = {"$gt": 0}
        result = await self._col.update_one(
            query,
            {"$set": {"status": _value(status), "terminated_at": utcnow()}},
        )
        return result.modified_count == 1

    async def count_since(
        self, email: str, purpose: ChallengePurpose, since: datetime
    ) -> int:
        return await self._col.count_documents(
            {"email": email, "purpose": _value(purpose), "created_at": {"$gte": since}}
        )

    async def latest(
        self, email: str, purpose: ChallengePurpose
    ) -> Optional[ChallengeDoc]:
        raw = await self._col.find_one(
            {"email": email, "purpose": _value(purpose)},
            sort=[("created_at", DESCENDING)],
        )
        return ChallengeDoc.from_mongo(raw)
