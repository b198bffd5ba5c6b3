"""Per-(operator, athlete) unlock locks.

Two layers: an in-process asyncio.Lock serialises sagas inside one worker,
a Redis `SET NX PX` key serialises them across workers. Redis being down
degrades to the in-process lock only (logged); a pair held elsewhere past
the wait window raises UnlockInProgressError.
"""

import asyncio
import logging
import time
import uuid
from collections import defaultdict
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from redis.exceptions import RedisError

from config.settings import settings
from src.cu_common.errors import UnlockInProgressError
from src.cu_common.redis_client import get_redis

logger = logging.getLogger(__name__)

# Delete the key only if we still own it (token match).
_RELEASE_LUA = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

_RETRY_INTERVAL_SECONDS = 0.05


class PairLockRegistry:
    def __init__(
        self,
        redis_factory: Callable[[], Awaitable[Any]] | None = get_redis,
        ttl_ms: int | None = None,
        wait_seconds: float | None = None,
    ) -> None:
        self._redis_factory = redis_factory
        self._ttl_ms = ttl_ms if ttl_ms is not None else settings.UNLOCK_LOCK_TTL_MS
        self._wait_seconds = (
            wait_seconds if wait_seconds is not None else settings.UNLOCK_LOCK_WAIT_SECONDS
        )
        self._local_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @staticmethod
    def key_for(operator_id: str, athlete_id: str) -> str:
        return f"cu:unlock-lock:{operator_id}:{athlete_id}"

    @asynccontextmanager
    async def hold(self, operator_id: str, athlete_id: str) -> AsyncIterator[None]:
        key = self.key_for(operator_id, athlete_id)
        local = self._local_locks[key]
        try:
            await asyncio.wait_for(local.acquire(), timeout=self._wait_seconds)
        except asyncio.TimeoutError:
            raise UnlockInProgressError() from None
        try:
            token = await self._acquire_remote(key)
            try:
                yield
            finally:
                if token is not None:
                    await self._release_remote(key, token)
        finally:
            local.release()

    async def _acquire_remote(self, key: str) -> str | None:
        """Returns the owner token, or None when Redis is unavailable."""
        if self._redis_factory is None:
            return None
        token = uuid.uuid4().hex
        deadline = time.monotonic() + self._wait_seconds
        try:
            redis = await self._redis_factory()
            while True:
                if await redis.set(key, token, nx=True, px=self._ttl_ms):
                    return token
                if time.monotonic() >= deadline:
                    raise UnlockInProgressError()
                await asyncio.sleep(_RETRY_INTERVAL_SECONDS)
        except (RedisError, OSError) as exc:
            logger.warning(
                "Redis pair lock unavailable, using in-process lock only: key=%s error=%s",
                key,
                exc,
            )
            return None

    async def _release_remote(self, key: str, token: str) -> None:
        if self._redis_factory is None:
            return
        try:
            redis = await self._redis_factory()
            await redis.eval(_RELEASE_LUA, 1, key, token)
        except (RedisError, OSError) as exc:
            # Key expires on its own after ttl_ms.
            logger.warning("Redis pair lock release failed: key=%s error=%s", key, exc)


_registry = PairLockRegistry()


def get_pair_locks() -> PairLockRegistry:
    """Process-wide registry; the in-process locks must be shared by all requests."""
    return _registry
