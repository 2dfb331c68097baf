"""
Date/time helpers - framework-agnostic.

MongoDB hands back naive datetimes unless the client is created with
``tz_aware=True``; every comparison in the service layer goes through
``ensure_utc`` so both shapes compare correctly.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return *value* as an aware UTC datetime. Naive values are assumed UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def seconds_until(moment: datetime, now: Optional[datetime] = None) -> int:
    """Whole seconds from *now* until *moment*, rounded up, never negative."""
    now = now or utcnow()
    delta = (ensure_utc(moment) - now).total_seconds()
    return max(0, math.ceil(delta))
