"""
Distributed lock backed by Redis.

Keeps two worker processes from advancing the same lead at once.

Usage:
    async with DistributedLock(f"lead:{lead_id}"):
        await advance_lead()
"""
import asyncio
import uuid
import logging
from typing import Optional

from outreach.core.exceptions import LockNotAcquiredError
from outreach.services.redis import get_redis_client

logger = logging.getLogger(__name__)

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

_EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("expire", KEYS[1], ARGV[2])
else
    return 0
end
"""


class DistributedLock:
    """
    Single-instance Redis lock.

    - SET NX EX to acquire
    - Lua compare-and-delete to release

    Attributes:
        key: Redis key of the locked resource
        timeout: lock TTL in seconds, bounds orphaned locks
        token: unique value identifying this holder
    """

    def __init__(
        self,
        key: str,
        timeout: int = 300,
        blocking: bool = False,
        blocking_timeout: float = 30,
        client=None,
    ):
        self.key = f"lock:{key}"
        self.timeout = timeout
        self.blocking = blocking
        self.blocking_timeout = blocking_timeout
        self.token = str(uuid.uuid4())
        self._client = client
        self._acquired = False

    @property
    def acquired(self) -> bool:
        return self._acquired

    @property
    def client(self):
        if self._client is None:
            self._client = get_redis_client()
        return self._client

    async def acquire(self) -> bool:
        """
        Try to take the lock.

        Returns:
            True when acquired
        """
        if not self.blocking:
            return await self._try_acquire()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.blocking_timeout
        while loop.time() < deadline:
            if await self._try_acquire():
                return True
            await asyncio.sleep(0.1)
        return False

    async def _try_acquire(self) -> bool:
        try:
            result = await self.client.set(self.key, self.token, nx=True, ex=self.timeout)
        except Exception as e:
            logger.error(f"[DistributedLock] Failed to acquire {self.key}: {e}")
            return False

        self._acquired = bool(result)
        if self._acquired:
            logger.debug(f"[DistributedLock] Acquired {self.key}")
        return self._acquired

    async def release(self) -> bool:
        """
        Release the lock if this holder still owns it.

        Returns:
            False when the lock had already expired or changed owner
        """
        if not self._acquired:
            return True

        try:
            result = await self.client.eval(_RELEASE_SCRIPT, 1, self.key, self.token)
        except Exception as e:
            logger.error(f"[DistributedLock] Failed to release {self.key}: {e}")
            return False
        finally:
            self._acquired = False

        released = result == 1
        if released:
            logger.debug(f"[DistributedLock] Released {self.key}")
        else:
            logger.warning(f"[DistributedLock] Lock expired before release: {self.key}")
        return released

    async def extend(self, additional_time: Optional[int] = None) -> bool:
        """Push the TTL forward while still the owner."""
        if not self._acquired:
            return False

        ttl = additional_time or self.timeout
        try:
            result = await self.client.eval(_EXTEND_SCRIPT, 1, self.key, self.token, ttl)
        except Exception as e:
            logger.error(f"[DistributedLock] Failed to extend {self.key}: {e}")
            return False
        return result == 1

    async def __aenter__(self):
        if not await self.acquire():
            raise LockNotAcquiredError(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.release()
        return False
