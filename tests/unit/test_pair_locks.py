"""Tests for the per-(operator, athlete) unlock locks."""

import asyncio
import logging
from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from src.cu_common.errors import UnlockInProgressError
from src.cu_common.locks import PairLockRegistry
from src.cu_common.redis_client import redis_available


def _redis(set_results: list[bool] | None = None) -> AsyncMock:
    redis = AsyncMock()
    redis.set.side_effect = set_results or [True]
    return redis


class TestLocalLock:
    async def test_same_pair_is_serialised(self) -> None:
        locks = PairLockRegistry(redis_factory=None, wait_seconds=1.0)
        order: list[str] = []

        async def run(name: str) -> None:
            async with locks.hold("op-1", "a-1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(run("first"), run("second"))

        assert order == ["first-in", "first-out", "second-in", "second-out"]

    async def test_other_pairs_do_not_wait(self) -> None:
        locks = PairLockRegistry(redis_factory=None, wait_seconds=0.05)
        async with locks.hold("op-1", "a-1"):
            async with locks.hold("op-1", "a-2"):
                pass

    async def test_wait_timeout_raises_in_progress(self) -> None:
        locks = PairLockRegistry(redis_factory=None, wait_seconds=0.05)
        async with locks.hold("op-1", "a-1"):
            with pytest.raises(UnlockInProgressError):
                async with locks.hold("op-1", "a-1"):
                    pass

    async def test_released_after_error(self) -> None:
        locks = PairLockRegistry(redis_factory=None, wait_seconds=0.05)
        with pytest.raises(RuntimeError):
            async with locks.hold("op-1", "a-1"):
                raise RuntimeError("boom")
        async with locks.hold("op-1", "a-1"):
            pass


class TestRedisLock:
    async def test_acquire_and_release_with_token(self) -> None:
        redis = _redis()
        locks = PairLockRegistry(
            redis_factory=AsyncMock(return_value=redis), ttl_ms=5000, wait_seconds=0.5
        )

        async with locks.hold("op-1", "a-1"):
            pass

        key = PairLockRegistry.key_for("op-1", "a-1")
        assert key == "cu:unlock-lock:op-1:a-1"
        set_call = redis.set.await_args
        assert set_call.args[0] == key
        assert set_call.kwargs == {"nx": True, "px": 5000}
        token = set_call.args[1]
        eval_args = redis.eval.await_args.args
        assert eval_args[1:] == (1, key, token)

    async def test_retries_until_free(self) -> None:
        redis = _redis([False, False, True])
        locks = PairLockRegistry(redis_factory=AsyncMock(return_value=redis), wait_seconds=1.0)
        async with locks.hold("op-1", "a-1"):
            pass
        assert redis.set.await_count == 3

    async def test_held_elsewhere_raises_in_progress(self) -> None:
        redis = AsyncMock()
        redis.set.return_value = False
        locks = PairLockRegistry(redis_factory=AsyncMock(return_value=redis), wait_seconds=0.1)
        with pytest.raises(UnlockInProgressError):
            async with locks.hold("op-1", "a-1"):
                pass
        redis.eval.assert_not_awaited()

    async def test_redis_down_degrades_to_local(self, caplog: pytest.LogCaptureFixture) -> None:
        factory = AsyncMock(side_effect=RedisConnectionError("connection refused"))
        locks = PairLockRegistry(redis_factory=factory, wait_seconds=0.1)
        entered = False

        with caplog.at_level(logging.WARNING, logger="src.cu_common.locks"):
            async with locks.hold("op-1", "a-1"):
                entered = True

        assert entered
        assert "using in-process lock only" in caplog.text

    async def test_release_failure_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        redis = _redis()
        redis.eval.side_effect = RedisConnectionError("gone")
        locks = PairLockRegistry(redis_factory=AsyncMock(return_value=redis), wait_seconds=0.1)

        with caplog.at_level(logging.WARNING, logger="src.cu_common.locks"):
            async with locks.hold("op-1", "a-1"):
                pass

        assert "release failed" in caplog.text


class TestRedisAvailable:
    async def test_ping_ok(self) -> None:
        client = AsyncMock()
        client.ping.return_value = True
        with patch("src.cu_common.redis_client.get_redis", AsyncMock(return_value=client)):
            assert await redis_available() is True

    async def test_unreachable(self, caplog: pytest.LogCaptureFixture) -> None:
        failing = AsyncMock(side_effect=RedisConnectionError("connection refused"))
        with (
            patch("src.cu_common.redis_client.get_redis", failing),
            caplog.at_level(logging.WARNING, logger="src.cu_common.redis_client"),
        ):
            assert await redis_available() is False
        assert "per-worker only" in caplog.text
