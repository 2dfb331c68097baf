"""Redis-backed resend cooldown for OTP challenges.

One key per (purpose, email) with an expiry equal to the cooldown window;
the key's remaining TTL is the retry-after value. ``SET NX EX`` makes the
check-and-start of a resend window a single atomic step.

Every method returns None when Redis is not configured or errors out, and
the caller falls back to deriving the window from the newest stored
challenge.
"""

from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from shared.logging import get_logger

log = get_logger(__name__)


class ResendCooldown:
    def __init__(
        self, redis_client: Optional[aioredis.Redis], cooldown_seconds: int = 60
    ) -> None:
        self._redis = redis_client
        self.cooldown_seconds = cooldown_seconds

    @property
    def available(self) -> bool:
        return self._redis is not None

    def _key(self, email: str, purpose: str) -> str:
        return f"otp_cooldown:{purpose}:{email}"

    async def start(self, email: str, purpose: str) -> Optional[bool]:
        """(Re)start the window unconditionally. Used by a first issue."""
        if self._redis is None or self.cooldown_seconds <= 0:
            return None
        try:
            await self._redis.set(self._key(email, purpose), "1", ex=self.cooldown_seconds)
            return True
        except RedisError as e:
            log.warning("otp_cooldown_start_error", email=email, error=str(e))
            return None

    async def acquire(self, email: str, purpose: str) -> Optional[int]:
        """Start a window only if none is running.

        Returns:
            0 when the window was started (caller may proceed), the seconds
            left in the running window otherwise, or None when Redis is
            unavailable.
        """
        if self._redis is None:
            return None
        if self.cooldown_seconds <= 0:
            return 0
        key = self._key(email, purpose)
        try:
            acquired = await self._redis.set(key, "1", nx=True, ex=self.cooldown_seconds)
            if acquired:
                return 0
            ttl = await self._redis.ttl(key)
        except RedisError as e:
            log.warning("otp_cooldown_acquire_error", email=email, error=str(e))
            return None
        # -2: key vanished between SET and TTL; -1: no expiry (should not happen)
        if ttl == -2:
            return 0
        return ttl if ttl > 0 else self.cooldown_seconds

    async def release(self, email: str, purpose: str) -> None:
        """Drop a window started by ``acquire`` when the issue it guarded failed."""
        if self._redis is None:
            return
        try:
            await self._redis.delete(self._key(email, purpose))
        except RedisError as e:
            log.warning("otp_cooldown_release_error", email=email, error=str(e))
