"""
Shared key/value storage for all tabs of one browser profile.

Mirrors ``window.localStorage`` plus the ``storage`` event: values are
strings, writes are synchronous, and every change is announced to the
subscribers of *other* tabs. The writing tab is never notified of its own
writes; it is expected to signal its own observers in-process.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from shared.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class StorageEvent:
    # key is None when the whole store was cleared
    key: Optional[str]
    old_value: Optional[str]
    new_value: Optional[str]


StorageListener = Callable[[StorageEvent], None]


class LocalStorage:
    def __init__(self) -> None:
        self._items: dict[str, str] = {}
        self._listeners: list[tuple[object, StorageListener]] = []

    def __len__(self) -> int:
        return len(self._items)

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str, *, origin: object = None) -> None:
        if not isinstance(value, str):
            raise TypeError(f"storage values must be str, got {type(value).__name__}")
        old = self._items.get(key)
        if old == value:
            return
        self._items[key] = value
        self._notify(StorageEvent(key, old, value), origin)

    def remove_item(self, key: str, *, origin: object = None) -> None:
        old = self._items.pop(key, None)
        if old is not None:
            self._notify(StorageEvent(key, old, None), origin)

    def clear(self, *, origin: object = None) -> None:
        if not self._items:
            return
        self._items.clear()
        self._notify(StorageEvent(None, None, None), origin)

    def subscribe(self, listener: StorageListener, origin: object) -> Callable[[], None]:
        """Register *listener* for changes made by any origin other than *origin*.

        Returns a callable that removes the registration.
        """
        entry = (origin, listener)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def _notify(self, event: StorageEvent, origin: object) -> None:
        for listener_origin, listener in list(self._listeners):
            if origin is not None and listener_origin is origin:
                continue
            try:
                listener(event)
            except Exception as e:
                # one broken tab must not stop delivery to the others
                log.error(
                    "storage_listener_failed",
                    key=event.key,
                    error=str(e),
                    error_type=type(e).__name__,
                )
