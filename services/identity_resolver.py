"""
Identity resolution for external (Google) sign-in.

Maps a verified provider assertion onto exactly one local account, in a
fixed order where each step short-circuits:

1. An account already linked to the provider id is returned untouched
   (no writes; repeat sign-ins are idempotent).
2. An account with the same email is linked: provider id set, email
   marked verified, avatar filled only if empty. One update.
3. Otherwise a new verified account is created with an allocated handle.
   One insert.

Step 2 trusts the provider's email verification and takes over the
matching password account without further confirmation. Deployments that
do not accept that can turn it off with ``ALLOW_EMAIL_LINKING=false``, in
which case step 2 reports a conflict instead.

Uniqueness races (handle, email, provider id) surface from the store as
WriteConflictError. The resolution is retried once from step 1, which then
lands on the record the competing writer created; a second conflict is
returned to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from errors import AppError, ConflictError, IdentityAmbiguousError, WriteConflictError
from repositories.protocols import AccountStore
from schemas.dto.identity import IdentityAssertion
from schemas.models.account import AccountDoc
from services.handle_allocator import HandleAllocator
from shared.datetime_utils import utcnow
from shared.logging import get_logger
from shared.result import Err, Ok, Result
from shared.validators import is_usable_email, normalize_email

log = get_logger(__name__)

MATCHED = "matched"
LINKED = "linked"
CREATED = "created"


@dataclass(frozen=True)
class ResolvedIdentity:
    account: AccountDoc
    action: str  # MATCHED | LINKED | CREATED


class IdentityResolver:
    def __init__(
        self,
        accounts: AccountStore,
        allocator: HandleAllocator,
        *,
        allow_email_linking: bool = True,
    ) -> None:
        self._accounts = accounts
        self._allocator = allocator
        self._allow_email_linking = allow_email_linking

    async def resolve(self, assertion: IdentityAssertion) -> Result[ResolvedIdentity]:
        """Find, link or create the account for *assertion*.

        Returns:
            Ok(ResolvedIdentity) or Err carrying IdentityAmbiguousError,
            WriteConflictError or (linking disabled) ConflictError.
        """
        email = normalize_email(assertion.email)
        if not assertion.provider_id or not is_usable_email(email):
            log.warning(
                "identity_ambiguous",
                provider=assertion.provider,
                has_provider_id=bool(assertion.provider_id),
                has_email=bool(email),
            )
            return Err(
                IdentityAmbiguousError(
                    "The identity provider did not supply a usable email address",
                    field="email",
                )
            )

        for attempt in range(2):
            try:
                return Ok(await self._resolve_once(assertion, email))
            except WriteConflictError as e:
                log.warning(
                    "identity_write_conflict",
                    provider=assertion.provider,
                    email=email,
                    field=e.field,
                    attempt=attempt,
                )
                conflict = e
            except AppError as e:
                return Err(e)
        return Err(conflict)

    async def _resolve_once(
        self, assertion: IdentityAssertion, email: str
    ) -> ResolvedIdentity:
        existing = await self._accounts.find_by_provider_id(assertion.provider_id)
        if existing is not None:
            log.info(
                "identity_matched",
                provider=assertion.provider,
                account_id=existing.id_str,
            )
            return ResolvedIdentity(existing, MATCHED)

        by_email = await self._accounts.find_by_email(email)
        if by_email is not None:
            return ResolvedIdentity(await self._link(by_email, assertion), LINKED)

        return ResolvedIdentity(await self._create(assertion, email), CREATED)

    async def _link(self, account: AccountDoc, assertion: IdentityAssertion) -> AccountDoc:
        if not self._allow_email_linking:
            log.warning(
                "identity_link_refused",
                provider=assertion.provider,
                account_id=account.id_str,
            )
            raise ConflictError(
                "An account with this email already exists; sign in with your "
                "password to link Google",
                field="email",
                details={"reason": "account_link_required"},
            )
        if account.google_id and account.google_id != assertion.provider_id:
            # the provider id on an account is never reassigned
            raise ConflictError(
                "This email is already linked to a different Google account",
                field="google_id",
            )

        fields: dict = {"google_id": assertion.provider_id, "is_verified": True}
        if not account.avatar_url and assertion.avatar_url:
            fields["avatar_url"] = assertion.avatar_url

        updated = await self._accounts.update(account.id, fields)
        if updated is None:
            # the row vanished between read and write; let the retry re-read
            raise WriteConflictError("Account changed during sign-in", field="_id")

        log.info(
            "identity_linked",
            provider=assertion.provider,
            account_id=updated.id_str,
            avatar_filled="avatar_url" in fields,
        )
        return updated

    async def _create(self, assertion: IdentityAssertion, email: str) -> AccountDoc:
        seed: Optional[str] = assertion.display_name or email.split("@", 1)[0]
        handle = await self._allocator.allocate(seed)
        now = utcnow()
        account = AccountDoc(
            email=email,
            user_name=handle,
            google_id=assertion.provider_id,
            is_verified=True,
            avatar_url=assertion.avatar_url or "",
            is_online=True,
            created_at=now,
            last_seen=now,
        )
        created = await self._accounts.insert(account)
        log.info(
            "identity_created",
            provider=assertion.provider,
            account_id=created.id_str,
            user_name=handle,
        )
        return created
