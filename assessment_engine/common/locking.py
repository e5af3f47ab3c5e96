"""
Keyed Locks

Per-key asyncio locks spread over a fixed number of shards. Locks are created
on first use and pruned once no task holds or waits for them, so the registry
only ever tracks keys that are in use or explicitly retained.
"""

import asyncio
import zlib
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0
    retained: bool = False


class KeyedLockRegistry:
    """
    Registry of per-key locks.

    Operations on one key are serialised; operations on different keys never
    share a lock.
    """

    def __init__(self, shards: int = 64):
        if shards < 1:
            raise ValueError("shards must be at least 1")
        self._shards: List[Dict[str, _LockEntry]] = [{} for _ in range(shards)]

    def _shard(self, key: str) -> Dict[str, _LockEntry]:
        return self._shards[zlib.crc32(key.encode("utf-8")) % len(self._shards)]

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """
        Acquire the lock for a key for the duration of the block.

        Args:
            key: Lock key
        """
        shard = self._shard(key)
        entry = shard.get(key)
        if entry is None:
            entry = shard[key] = _LockEntry()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and not entry.retained:
                shard.pop(key, None)

    def retain(self, key: str) -> None:
        """Keep the lock for a key alive between uses"""
        shard = self._shard(key)
        entry = shard.get(key)
        if entry is None:
            entry = shard[key] = _LockEntry()
        entry.retained = True

    def release(self, key: str) -> None:
        """Stop retaining a key's lock; it is pruned once idle"""
        shard = self._shard(key)
        entry = shard.get(key)
        if entry is None:
            return
        entry.retained = False
        if entry.users == 0:
            shard.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._shard(key)

    def __len__(self) -> int:
        return sum(len(shard) for shard in self._shards)
