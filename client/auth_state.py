"""
Client session state shared by every open tab.

Storage layout (one browser profile):

    token                      bearer token issued by /auth/login, /auth/verify-otp, ...
    user                       JSON profile (id, email, user_name, is_verified, avatar_url)
    pendingVerificationEmail   email waiting for its verification code

Storage is the only source of truth. Each tab owns one
AuthStateSynchronizer; storage notifications from other tabs and the
in-process update event from its own writes are both treated as wake-up
signals, and subscribers always receive a snapshot freshly read from
storage, never the event payload.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from client.storage import LocalStorage, StorageEvent
from errors import StorageCorruptError
from shared.logging import get_logger
from shared.validators import normalize_email

log = get_logger(__name__)

TOKEN_KEY = "token"
PROFILE_KEY = "user"
PENDING_VERIFICATION_KEY = "pendingVerificationEmail"

_SESSION_KEYS = frozenset({TOKEN_KEY, PROFILE_KEY})


class CachedProfile(BaseModel):
    """Profile fields a tab keeps next to the token."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    email: str
    user_name: str
    is_verified: bool = False
    avatar_url: str = ""


@dataclass(frozen=True)
class SessionSnapshot:
    token: str
    # None only in the window between storing a token and fetching its profile
    profile: Optional[CachedProfile]

    @property
    def is_verified(self) -> bool:
        return self.profile is not None and self.profile.is_verified


SessionListener = Callable[[Optional[SessionSnapshot]], None]
ProfileInput = Union[CachedProfile, Mapping[str, Any]]


def _parse_profile(raw: str) -> CachedProfile:
    try:
        return CachedProfile.model_validate_json(raw)
    except PydanticValidationError as e:
        raise StorageCorruptError(
            "Stored profile is not a valid JSON object", field=PROFILE_KEY
        ) from e


class AuthStateSynchronizer:
    def __init__(self, storage: LocalStorage) -> None:
        self._storage = storage
        self._listeners: list[SessionListener] = []
        self._dispatching = False
        self._detach = storage.subscribe(self._on_storage_event, origin=self)

    # ── writes ────────────────────────────────────────────────────────────────

    def commit_session(self, token: str, profile: ProfileInput) -> SessionSnapshot:
        """Store token and profile, token first, then wake this tab's observers."""
        cached = (
            profile if isinstance(profile, CachedProfile) else CachedProfile.model_validate(profile)
        )
        self._storage.set_item(TOKEN_KEY, token, origin=self)
        self._storage.set_item(PROFILE_KEY, cached.model_dump_json(), origin=self)
        self._storage.remove_item(PENDING_VERIFICATION_KEY, origin=self)
        log.info("session_committed", user_id=cached.id, is_verified=cached.is_verified)
        self._dispatch()
        return SessionSnapshot(token=token, profile=cached)

    def store_token(self, token: str) -> None:
        """Store a token whose profile has not been fetched yet (provider callback)."""
        self._storage.set_item(TOKEN_KEY, token, origin=self)
        self._dispatch()

    def update_profile(self, profile: ProfileInput) -> None:
        cached = (
            profile if isinstance(profile, CachedProfile) else CachedProfile.model_validate(profile)
        )
        self._storage.set_item(PROFILE_KEY, cached.model_dump_json(), origin=self)
        self._dispatch()

    def clear_session(self) -> None:
        """Forget token and profile (logout, or the server rejected the token)."""
        self._storage.remove_item(TOKEN_KEY, origin=self)
        self._storage.remove_item(PROFILE_KEY, origin=self)
        log.info("session_cleared")
        self._dispatch()

    def mark_pending_verification(self, email: str) -> None:
        self._storage.set_item(PENDING_VERIFICATION_KEY, normalize_email(email), origin=self)

    def pending_verification_email(self) -> Optional[str]:
        return self._storage.get_item(PENDING_VERIFICATION_KEY) or None

    # ── reads ─────────────────────────────────────────────────────────────────

    def current_token(self) -> Optional[str]:
        return self._storage.get_item(TOKEN_KEY) or None

    def read_session(self) -> Optional[SessionSnapshot]:
        """Return the stored session, or None if there is none.

        A profile that does not parse means the record cannot be trusted:
        both keys are cleared, this tab's subscribers are told the session is
        gone, and the session is reported absent.
        """
        token = self.current_token()
        raw_profile = self._storage.get_item(PROFILE_KEY)
        if token is None:
            return None
        if raw_profile is None:
            return SessionSnapshot(token=token, profile=None)
        try:
            profile = _parse_profile(raw_profile)
        except StorageCorruptError as e:
            log.warning("session_storage_corrupt", error=e.message)
            self._storage.remove_item(TOKEN_KEY, origin=self)
            self._storage.remove_item(PROFILE_KEY, origin=self)
            if not self._dispatching:
                self._dispatch()
            return None
        return SessionSnapshot(token=token, profile=profile)

    def is_authenticated(self) -> bool:
        """True when a token and a verified profile are both stored."""
        snapshot = self.read_session()
        return snapshot is not None and snapshot.is_verified

    # ── notifications ─────────────────────────────────────────────────────────

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Call *listener* with a freshly read snapshot after every session change.

        Returns the matching unsubscribe callable.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def close(self) -> None:
        """Stop listening to storage (the tab is going away)."""
        self._detach()
        self._listeners.clear()

    def _on_storage_event(self, event: StorageEvent) -> None:
        if event.key is None or event.key in _SESSION_KEYS:
            self._dispatch()

    def _dispatch(self) -> None:
        # a corrupt read inside this loop clears storage; the loop itself
        # hands the cleared state to the remaining listeners
        outer = self._dispatching
        self._dispatching = True
        try:
            for listener in list(self._listeners):
                snapshot = self.read_session()
                try:
                    listener(snapshot)
                except Exception as e:
                    log.error(
                        "session_listener_failed",
                        error=str(e),
                        error_type=type(e).__name__,
                    )
        finally:
            self._dispatching = outer
