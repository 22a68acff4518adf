"""
Per-vendor serialization for payout batching.

Batching for different vendors runs in parallel; batching for the same
vendor must not, otherwise two builds can read the same unsettled entries
before either commits. This registry gives one asyncio.Lock per vendor id
inside a process. Across processes the batcher's `payout_id IS NULL` guard
turns a lost race into a rolled-back ConcurrencyConflict.
"""
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Dict

logger = logging.getLogger(__name__)


class VendorLockRegistry:
    """Lazily created asyncio.Lock per vendor id."""

    def __init__(self):
        self._locks: Dict[uuid.UUID, asyncio.Lock] = {}
        self._guard = asyncio.Lock()

    async def get(self, vendor_id: uuid.UUID) -> asyncio.Lock:
        async with self._guard:
            lock = self._locks.get(vendor_id)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[vendor_id] = lock
            return lock

    @asynccontextmanager
    async def hold(self, vendor_id: uuid.UUID):
        lock = await self.get(vendor_id)
        if lock.locked():
            logger.debug(f"Waiting for batch lock of vendor {vendor_id}")
        async with lock:
            yield


# Process-wide registry shared by the scheduler and the API
vendor_locks = VendorLockRegistry()
