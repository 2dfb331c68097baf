"""Badge counters that only run while the tab holds a session."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import httpx

from client.api import ApiError
from client.auth_state import AuthStateSynchronizer, SessionSnapshot
from shared.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class NotificationCounts:
    friend_requests: int = 0
    unread_messages: int = 0

    @property
    def total(self) -> int:
        return self.friend_requests + self.unread_messages


CountsFetcher = Callable[[], Awaitable[NotificationCounts]]


class NotificationCounter:
    def __init__(self, auth: AuthStateSynchronizer, fetch_counts: CountsFetcher) -> None:
        self._auth = auth
        self._fetch_counts = fetch_counts
        self._counts = NotificationCounts()
        self._unsubscribe = auth.subscribe(self._on_session_change)

    @property
    def counts(self) -> NotificationCounts:
        return self._counts

    async def refresh(self) -> NotificationCounts:
        """Re-fetch counts. Without a token nothing is fetched and counts stay zero."""
        if self._auth.current_token() is None:
            self._counts = NotificationCounts()
            return self._counts
        try:
            self._counts = await self._fetch_counts()
        except (ApiError, httpx.HTTPError) as e:
            # keep the last known counts; the next refresh tries again
            log.warning("notification_refresh_failed", error=str(e))
        return self._counts

    def friend_request_received(self) -> None:
        self._counts = NotificationCounts(
            friend_requests=self._counts.friend_requests + 1,
            unread_messages=self._counts.unread_messages,
        )

    def clear_friend_requests(self) -> None:
        self._counts = NotificationCounts(unread_messages=self._counts.unread_messages)

    def close(self) -> None:
        self._unsubscribe()

    def _on_session_change(self, snapshot: Optional[SessionSnapshot]) -> None:
        if snapshot is None:
            self._counts = NotificationCounts()
