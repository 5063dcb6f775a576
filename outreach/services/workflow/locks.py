"""
Per-lead locks.

One pass at a time per lead. The local backend serializes within a
process; the redis backend (LEAD_LOCK_BACKEND=redis) across workers.
Acquisition never waits: a held lock means another pass owns the lead.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from outreach.core.config import settings
from outreach.core.distributed_lock import DistributedLock

logger = logging.getLogger(__name__)


class LocalLeadLocks:
    """In-process locks keyed by lead id."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def hold(self, lead_id: str) -> AsyncIterator[bool]:
        lock = self._locks.setdefault(lead_id, asyncio.Lock())
        if lock.locked():
            yield False
            return
        await lock.acquire()
        try:
            yield True
        finally:
            lock.release()
            if not lock.locked() and self._locks.get(lead_id) is lock:
                self._locks.pop(lead_id, None)


class RedisLeadLocks:
    """Cross-process locks through DistributedLock."""

    def __init__(self, timeout: int = None, client=None):
        self.timeout = timeout or settings.LEAD_LOCK_TIMEOUT_SECONDS
        self._client = client

    @asynccontextmanager
    async def hold(self, lead_id: str) -> AsyncIterator[bool]:
        lock = DistributedLock(f"lead:{lead_id}", timeout=self.timeout, client=self._client)
        acquired = await lock.acquire()
        try:
            yield acquired
        finally:
            if acquired:
                await lock.release()


def build_lead_locks(backend: str = None):
    """Lock backend from settings (local or redis)."""
    backend = (backend or settings.LEAD_LOCK_BACKEND or "local").lower()
    if backend == "redis":
        return RedisLeadLocks()
    if backend != "local":
        logger.warning(f"[LeadLocks] Unknown backend {backend!r}, using local locks")
    return LocalLeadLocks()
