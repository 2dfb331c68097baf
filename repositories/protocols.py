"""Persistence protocols - services depend on these, not on the Mongo classes.

Implementations must enforce unique-index semantics on account email,
user_name and google_id (raising ``WriteConflictError``), and must perform
``decrement_attempt`` and ``mark_terminal`` as single atomic conditional
updates.
"""

from datetime import datetime
from typing import Any, Mapping, Optional, Protocol

from schemas.models.account import AccountDoc
from schemas.models.challenge import ChallengeDoc, ChallengePurpose, ChallengeStatus


class AccountStore(Protocol):
    async def find_by_id(self, account_id: Any) -> Optional[AccountDoc]: ...

    async def find_by_provider_id(self, provider_id: str) -> Optional[AccountDoc]: ...

    async def find_by_email(self, email: str) -> Optional[AccountDoc]: ...

    async def find_by_handle(self, handle: str) -> Optional[AccountDoc]: ...

    async def insert(self, account: AccountDoc) -> AccountDoc: ...

    async def update(
        self, account_id: Any, fields: Mapping[str, Any]
    ) -> Optional[AccountDoc]: ...


class ChallengeStore(Protocol):
    async def store(self, challenge: ChallengeDoc) -> ChallengeDoc: ...

    async def load_active(
        self, email: str, purpose: ChallengePurpose
    ) -> Optional[ChallengeDoc]: ...

    async def decrement_attempt(self, challenge_id: Any) -> Optional[ChallengeDoc]: ...

    async def mark_terminal(self, challenge_id: Any, status: ChallengeStatus) -> bool: ...

    async def count_since(
        self, email: str, purpose: ChallengePurpose, since: datetime
    ) -> int: ...

    async def latest(
        self, email: str, purpose: ChallengePurpose
    ) -> Optional[ChallengeDoc]: ...
