"""
Unique handle allocation.

Derives a display handle from a human-readable seed (display name or email
local-part) and probes the account store for the first free variant:
``base``, ``base1``, ``base2``, ... After ``max_probes`` misses it gives up
probing and appends a nanosecond timestamp.

The probe is a cheap pre-check only. Two allocations racing for the same
base can both see a name as free; the unique index on ``user_name`` decides,
and IdentityResolver retries on the resulting WriteConflictError.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

from config import HandleSettings
from repositories.protocols import AccountStore
from shared.logging import get_logger
from shared.validators import normalize_handle_seed

log = get_logger(__name__)


class HandleAllocator:
    def __init__(
        self,
        accounts: AccountStore,
        settings: Optional[HandleSettings] = None,
        clock_ns: Callable[[], int] = time.time_ns,
    ) -> None:
        self._accounts = accounts
        self._settings = settings or HandleSettings()
        self._clock_ns = clock_ns

    def base_for(self, seed: Optional[str]) -> str:
        return normalize_handle_seed(
            seed,
            max_length=self._settings.handle_max_length,
            fallback=self._settings.handle_fallback,
        )

    async def _is_taken(self, handle: str) -> bool:
        return await self._accounts.find_by_handle(handle) is not None

    async def allocate(self, seed: Optional[str]) -> str:
        """Return a handle not held by any account at the time of the check.

        Never raises: a store failure while probing falls through to the
        timestamp suffix.
        """
        base = self.base_for(seed)
        candidate = base
        try:
            for counter in range(1, self._settings.handle_max_probes + 1):
                if not await self._is_taken(candidate):
                    return candidate
                candidate = f"{base}{counter}"
        except Exception as e:
            log.error(
                "handle_probe_failed",
                base=base,
                candidate=candidate,
                error=str(e),
                error_type=type(e).__name__,
            )
        else:
            log.warning(
                "handle_probe_limit_reached",
                base=base,
                probes=self._settings.handle_max_probes,
            )

        return f"{base}{self._clock_ns()}"
