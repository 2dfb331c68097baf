"""
Account repository - data access for the `users` collection.

The unique indexes created by ``ensure_indexes`` are the authoritative
guard for email, handle and provider-id uniqueness. Any write they reject
surfaces as ``WriteConflictError`` naming the colliding field; callers decide
whether to retry.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from bson import ObjectId
from pymongo import ASCENDING, ReturnDocument
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import DuplicateKeyError

from errors import WriteConflictError
from schemas.models.account import AccountDoc
from shared.datetime_utils import utcnow
from shared.logging import get_logger

log = get_logger(__name__)


def _conflicting_field(exc: DuplicateKeyError) -> Optional[str]:
    details = exc.details or {}
    key_pattern = details.get("keyPattern") or details.get("keyValue") or {}
    return next(iter(key_pattern), None)


def _as_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


class AccountRepository:
    """Async MongoDB access for account documents."""

    COLLECTION = "users"

    def __init__(self, db: AsyncDatabase) -> None:
        self._col = db[self.COLLECTION]

    async def ensure_indexes(self) -> None:
        await self._col.create_index([("email", ASCENDING)], unique=True)
        await self._col.create_index([("user_name", ASCENDING)], unique=True)
        await self._col.create_index(
            [("google_id", ASCENDING)], unique=True, sparse=True
        )

    async def find_by_id(self, account_id: Any) -> Optional[AccountDoc]:
        oid = _as_object_id(account_id)
        if oid is None:
            return None
        return AccountDoc.from_mongo(await self._col.find_one({"_id": oid}))

    async def find_by_provider_id(self, provider_id: str) -> Optional[AccountDoc]:
        return AccountDoc.from_mongo(await self._col.find_one({"google_id": provider_id}))

    async def find_by_email(self, email: str) -> Optional[AccountDoc]:
        return AccountDoc.from_mongo(await self._col.find_one({"email": email}))

    async def find_by_handle(self, handle: str) -> Optional[AccountDoc]:
        return AccountDoc.from_mongo(await self._col.find_one({"user_name": handle}))

    async def insert(self, account: AccountDoc) -> AccountDoc:
        """Insert *account* and return it with its generated id.

        Raises:
            WriteConflictError: a unique index rejected the document.
        """
        now = utcnow()
        doc = account.to_mongo()
        if doc.get("created_at") is None:
            doc["created_at"] = now
        doc["updated_at"] = now
        if doc.get("google_id") is None:
            # sparse index: an absent key does not collide, an explicit null does
            doc.pop("google_id", None)
        try:
            result = await self._col.insert_one(doc)
        except DuplicateKeyError as e:
            field = _conflicting_field(e)
            log.warning("account_insert_conflict", field=field, email=account.email)
            raise WriteConflictError(
                "An account with these details already exists", field=field
            ) from e
        doc["_id"] = result.inserted_id
        return AccountDoc.from_mongo(doc)

    async def update(
        self, account_id: Any, fields: Mapping[str, Any]
    ) -> Optional[AccountDoc]:
        """``$set`` *fields* on the account and return the updated document.

        Returns None when no account has *account_id*.

        Raises:
            WriteConflictError: a unique index rejected the update.
        """
        oid = _as_object_id(account_id)
        if oid is None:
            return None
        update = {"$set": {**fields, "updated_at": utcnow()}}
        try:
            raw = await self._col.find_one_and_update(
                {"_id": oid}, update, return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError as e:
            field = _conflicting_field(e)
            log.warning("account_update_conflict", field=field, account_id=str(oid))
            raise WriteConflictError(
                "Another account already holds this value", field=field
            ) from e
        return AccountDoc.from_mongo(raw)
