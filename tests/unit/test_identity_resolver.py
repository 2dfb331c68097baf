"""Unit tests for IdentityResolver."""

from unittest.mock import AsyncMock

import pytest

from errors import ConflictError, IdentityAmbiguousError, WriteConflictError
from schemas.dto.identity import IdentityAssertion
from services.handle_allocator import HandleAllocator
from services.identity_resolver import CREATED, LINKED, MATCHED, IdentityResolver
from shared.result import Err, Ok
from fakes import InMemoryAccountStore


def _assertion(**overrides) -> IdentityAssertion:
    base = dict(
        provider_id="google-123",
        email="Jane@Example.com",
        display_name="Jane Doe",
        avatar_url="https://img.example/jane.png",
    )
    base.update(overrides)
    return IdentityAssertion(**base)


@pytest.fixture
def store():
    return InMemoryAccountStore()


@pytest.fixture
def resolver(store):
    return IdentityResolver(store, HandleAllocator(store))


class TestCreate:
    async def test_creates_verified_online_account(self, resolver, store):
        result = await resolver.resolve(_assertion())
        assert isinstance(result, Ok)
        account = result.value.account
        assert result.value.action == CREATED
        assert account.email == "jane@example.com"
        assert account.user_name == "janedoe"
        assert account.google_id == "google-123"
        assert account.is_verified is True
        assert account.is_online is True
        assert account.avatar_url == "https://img.example/jane.png"
        assert store.writes == 1

    async def test_handle_from_email_local_part_without_display_name(self, resolver):
        result = await resolver.resolve(_assertion(display_name=None))
        assert result.value.account.user_name == "jane"

    async def test_missing_avatar_stored_empty(self, resolver):
        result = await resolver.resolve(_assertion(avatar_url=None))
        assert result.value.account.avatar_url == ""

    async def test_taken_handle_gets_suffix(self, resolver, store):
        store.seed(email="other@example.com", user_name="janedoe")
        result = await resolver.resolve(_assertion())
        assert result.value.account.user_name == "janedoe1"


class TestMatch:
    async def test_repeat_sign_in_same_account_no_writes(self, resolver, store):
        first = await resolver.resolve(_assertion())
        writes_after_first = store.writes

        second = await resolver.resolve(_assertion())

        assert second.value.action == MATCHED
        assert second.value.account.id == first.value.account.id
        assert store.writes == writes_after_first

    async def test_match_by_provider_ignores_changed_email(self, resolver, store):
        existing = store.seed(
            email="old@example.com", user_name="jane", google_id="google-123"
        )
        result = await resolver.resolve(_assertion(email="new@example.com"))
        assert result.value.account.id == existing.id
        assert result.value.account.email == "old@example.com"
        assert store.writes == 0


class TestLink:
    async def test_links_password_account_and_keeps_handle(self, resolver, store):
        existing = store.seed(
            email="jane@example.com",
            user_name="jane_original",
            password_hash="argon2-hash",
            is_verified=False,
        )

        result = await resolver.resolve(_assertion())

        account = result.value.account
        assert result.value.action == LINKED
        assert account.id == existing.id
        assert account.google_id == "google-123"
        assert account.is_verified is True
        assert account.user_name == "jane_original"
        assert account.password_hash == "argon2-hash"
        assert store.writes == 1

    async def test_avatar_filled_only_when_unset(self, resolver, store):
        store.seed(email="jane@example.com", user_name="jane", avatar_url="mine.png")
        result = await resolver.resolve(_assertion())
        assert result.value.account.avatar_url == "mine.png"

    async def test_avatar_filled_when_empty(self, resolver, store):
        store.seed(email="jane@example.com", user_name="jane")
        result = await resolver.resolve(_assertion())
        assert result.value.account.avatar_url == "https://img.example/jane.png"

    async def test_refuses_account_linked_to_other_provider_id(self, resolver, store):
        store.seed(email="jane@example.com", user_name="jane", google_id="google-999")
        result = await resolver.resolve(_assertion())
        assert isinstance(result, Err)
        assert isinstance(result.error, ConflictError)
        assert result.error.field == "google_id"
        assert store.writes == 0

    async def test_linking_disabled_returns_conflict(self, store):
        store.seed(email="jane@example.com", user_name="jane")
        resolver = IdentityResolver(
            store, HandleAllocator(store), allow_email_linking=False
        )
        result = await resolver.resolve(_assertion())
        assert isinstance(result.error, ConflictError)
        assert result.error.details == {"reason": "account_link_required"}
        assert store.writes == 0


class TestAmbiguous:
    @pytest.mark.parametrize(
        "email",
        [None, "", "   ", "not-an-email"],
        ids=["none", "empty", "blank", "no_at"],
    )
    async def test_unusable_email(self, resolver, store, email):
        result = await resolver.resolve(_assertion(email=email))
        assert isinstance(result, Err)
        assert isinstance(result.error, IdentityAmbiguousError)
        assert store.writes == 0

    async def test_missing_provider_id(self, resolver):
        result = await resolver.resolve(_assertion(provider_id=""))
        assert isinstance(result.error, IdentityAmbiguousError)


class TestWriteConflict:
    async def test_retries_once_and_lands_on_competing_record(self, store):
        """A competing sign-in inserts the same account between our lookup and insert."""
        allocator = HandleAllocator(store)
        resolver = IdentityResolver(store, allocator)
        real_insert = store.insert

        async def racing_insert(account):
            store.seed(
                email="jane@example.com", user_name="janedoe", google_id="google-123"
            )
            store.insert = real_insert
            return await real_insert(account)

        store.insert = racing_insert

        result = await resolver.resolve(_assertion())

        assert isinstance(result, Ok)
        assert result.value.action == MATCHED
        assert result.value.account.google_id == "google-123"

    async def test_second_conflict_is_surfaced(self):
        accounts = AsyncMock()
        accounts.find_by_provider_id.return_value = None
        accounts.find_by_email.return_value = None
        accounts.find_by_handle.return_value = None
        accounts.insert.side_effect = WriteConflictError("dup", field="user_name")
        resolver = IdentityResolver(accounts, HandleAllocator(accounts))

        result = await resolver.resolve(_assertion())

        assert isinstance(result.error, WriteConflictError)
        assert accounts.insert.await_count == 2
