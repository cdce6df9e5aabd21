"""
Distributed lock implementation using Redis.

Prevents concurrent operations on the same resource across processes. A lock
is a key ``lock:{operation}:{resource}`` set with NX and a TTL, holding a value
unique to the acquisition so that only the holder can release it.
"""

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from imagestore.errors import LockUnavailable

logger = logging.getLogger("imagestore.locks")

# Atomically check the value and delete, so a lock that expired and was taken
# by another process is never released by us
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockToken:
    def __init__(self, key: str, value: str):
        self.key = key
        self.value = value

    def __repr__(self):
        return f"LockToken({self.key!r})"


def lock_key(resource: str, operation: str) -> str:
    return f"lock:{operation}:{resource}"


class RedisLockClient:
    def __init__(self, redis, ttl_ms: int = 60000, retry_interval_ms: int = 100):
        self.redis = redis
        self.ttl_ms = ttl_ms
        self.retry_interval_ms = retry_interval_ms

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisLockClient":
        return cls(aioredis.from_url(url), **kwargs)

    async def acquire(self, resource: str, operation: str, max_wait_ms: int) -> Optional[LockToken]:
        """
        Attempt to acquire the lock, polling until ``max_wait_ms`` has elapsed.

        Returns:
            A token to pass to ``release``, or None on timeout or when Redis
            could not be reached. Both mean "try again later".
        """
        token = LockToken(lock_key(resource, operation), uuid.uuid4().hex)
        deadline = time.monotonic() + max_wait_ms / 1000
        while True:
            try:
                acquired = await self.redis.set(token.key, token.value, nx=True, px=self.ttl_ms)
            except RedisError as e:
                logger.error("Error acquiring distributed lock %s: %s", token.key, e)
                return None
            if acquired:
                logger.debug("Lock acquired: %s", token.key)
                return token
            if time.monotonic() >= deadline:
                break
            await asyncio.sleep(self.retry_interval_ms / 1000)
        logger.warning("Lock acquisition timeout after %sms: %s", max_wait_ms, token.key)
        return None

    async def release(self, token: LockToken) -> bool:
        """Release the lock, only if this token still holds it."""
        try:
            result = await self.redis.eval(_RELEASE_SCRIPT, 1, token.key, token.value)
        except RedisError as e:
            logger.error("Error releasing distributed lock %s: %s", token.key, e)
            return False
        if result == 1:
            logger.debug("Lock released: %s", token.key)
            return True
        logger.warning("Lock not released (already expired or held by another process): %s", token.key)
        return False

    @asynccontextmanager
    async def hold(self, resource: str, operation: str, max_wait_ms: int):
        """Hold the lock for the duration of the block; raises LockUnavailable on timeout."""
        token = await self.acquire(resource, operation, max_wait_ms)
        if token is None:
            raise LockUnavailable(
                f"Another {operation} is in progress for {resource}",
                resource=resource,
                operation=operation,
            )
        try:
            yield token
        finally:
            await self.release(token)

    async def close(self) -> None:
        await self.redis.aclose()
