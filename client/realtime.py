"""
Real-time connection gate.

Keeps exactly one persistent connection open per tab while a token is
stored, and none otherwise:

- on mount, connects only if a token is present;
- a dropped or failed connection is retried forever with exponential
  backoff from ``initial_delay`` capped at ``max_delay``;
- a token change tears the connection down and opens a new one with the new
  token (the credential of a live connection is never swapped in place);
- token removal tears the connection down and nothing is retried.

Must be used from a running asyncio event loop.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, Protocol

from client.auth_state import AuthStateSynchronizer, SessionSnapshot
from shared.logging import get_logger

log = get_logger(__name__)


class RealtimeTransport(Protocol):
    async def connect(self, token: str) -> None:
        """Complete the handshake with *token*; raise on failure."""
        ...

    async def wait_closed(self) -> None:
        """Return when the connection drops."""
        ...

    async def disconnect(self) -> None: ...


class RealtimeGate:
    def __init__(
        self,
        auth: AuthStateSynchronizer,
        transport_factory: Callable[[], RealtimeTransport],
        *,
        initial_delay: float = 1.0,
        max_delay: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._auth = auth
        self._transport_factory = transport_factory
        self._initial_delay = initial_delay
        self._max_delay = max_delay
        self._sleep = sleep

        self._desired_token: Optional[str] = None
        self._active_token: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._pending: set[asyncio.Task] = set()
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def active_token(self) -> Optional[str]:
        return self._active_token

    async def mount(self) -> None:
        self._unsubscribe = self._auth.subscribe(self._on_session_change)
        self._desired_token = self._auth.current_token()
        if self._desired_token is None:
            log.info("realtime_skipped", reason="no_token")
        await self._reconcile()

    async def unmount(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._desired_token = None
        await self._reconcile()
        for task in list(self._pending):
            await task

    def _on_session_change(self, snapshot: Optional[SessionSnapshot]) -> None:
        token = snapshot.token if snapshot is not None else None
        if token == self._desired_token:
            return
        self._desired_token = token
        task = asyncio.get_running_loop().create_task(self._reconcile())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _reconcile(self) -> None:
        async with self._lock:
            desired = self._desired_token
            if desired == self._active_token and (desired is None or self._task is not None):
                return
            await self._teardown()
            if desired is not None:
                self._active_token = desired
                self._task = asyncio.get_running_loop().create_task(self._run(desired))

    async def _teardown(self) -> None:
        task, self._task = self._task, None
        self._active_token = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log.info("realtime_torn_down")

    async def _run(self, token: str) -> None:
        delay = self._initial_delay
        attempt = 0
        while True:
            attempt += 1
            transport = self._transport_factory()
            try:
                await transport.connect(token)
                self._connected = True
                log.info("realtime_connected", attempt=attempt)
                attempt = 0
                delay = self._initial_delay
                await transport.wait_closed()
                log.info("realtime_disconnected")
            except Exception as e:
                log.warning(
                    "realtime_connect_failed",
                    attempt=attempt,
                    retry_in=delay,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            finally:
                self._connected = False
                await transport.disconnect()
            await self._sleep(delay)
            delay = min(delay * 2, self._max_delay)
