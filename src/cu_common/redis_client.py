"""Redis connection for the cross-worker unlock pair locks.

Balances and grants never live here. Losing Redis only narrows locking to a
single worker (see src.cu_common.locks).
"""

import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from config.settings import settings

logger = logging.getLogger(__name__)

_client: aioredis.Redis | None = None


async def get_redis() -> aioredis.Redis:
    """Shared client; short socket timeouts so a dead Redis fails a lock fast."""
    global _client  # noqa: PLW0603
    if _client is None:
        _client = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        )
    return _client


async def redis_available() -> bool:
    try:
        client = await get_redis()
        return bool(await client.ping())
    except (RedisError, OSError) as exc:
        logger.warning("Redis unavailable, unlock locks are per-worker only: %s", exc)
        return False


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client is None:
        return
    client, _client = _client, None
    await client.aclose()
