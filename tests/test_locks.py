# tests/test_locks.py
"""Distributed lock over the Redis SET NX PX primitive"""

import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from imagestore.errors import LockUnavailable
from imagestore.services.locks import RedisLockClient, lock_key


@pytest.fixture
def locks(fake_redis):
    return RedisLockClient(fake_redis, ttl_ms=60000, retry_interval_ms=5)


async def test_acquire_and_release(locks, fake_redis):
    token = await locks.acquire("abc", "delete-image", max_wait_ms=0)
    assert token is not None
    assert token.key == lock_key("abc", "delete-image") == "lock:delete-image:abc"
    assert await fake_redis.get(token.key) == token.value

    assert await locks.release(token)
    assert await fake_redis.get(token.key) is None
    assert await locks.acquire("abc", "delete-image", max_wait_ms=0) is not None


async def test_acquire_times_out(locks):
    assert await locks.acquire("abc", "delete-image", max_wait_ms=0)
    assert await locks.acquire("abc", "delete-image", max_wait_ms=30) is None


async def test_acquire_waits_for_release(locks):
    first = await locks.acquire("abc", "delete-image", max_wait_ms=0)

    async def release_later():
        await asyncio.sleep(0.02)
        await locks.release(first)

    waiter = asyncio.create_task(locks.acquire("abc", "delete-image", max_wait_ms=1000))
    await release_later()
    assert await waiter is not None


async def test_operations_do_not_share_locks(locks):
    assert await locks.acquire("abc", "delete-image", max_wait_ms=0)
    assert await locks.acquire("abc", "save-image", max_wait_ms=0)


async def test_stale_token_does_not_release(fake_redis):
    locks = RedisLockClient(fake_redis, ttl_ms=10, retry_interval_ms=5)
    stale = await locks.acquire("abc", "delete-image", max_wait_ms=0)
    await asyncio.sleep(0.03)
    current = await locks.acquire("abc", "delete-image", max_wait_ms=0)
    assert current is not None

    assert not await locks.release(stale)
    assert await fake_redis.get(current.key) == current.value


async def test_hold_releases_on_exit(locks, fake_redis):
    async with locks.hold("abc", "delete-image", 0) as token:
        assert await fake_redis.get(token.key) == token.value
    assert await fake_redis.get(token.key) is None


async def test_hold_raises_when_taken(locks):
    await locks.acquire("abc", "delete-image", max_wait_ms=0)
    with pytest.raises(LockUnavailable) as exc:
        async with locks.hold("abc", "delete-image", 20):
            pass
    assert exc.value.retryable


async def test_redis_failure_means_not_acquired():
    class DownRedis:
        async def set(self, *args, **kwargs):
            raise RedisConnectionError("connection refused")

        async def eval(self, *args):
            raise RedisConnectionError("connection refused")

    locks = RedisLockClient(DownRedis())
    assert await locks.acquire("abc", "delete-image", max_wait_ms=1000) is None
