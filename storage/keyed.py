from __future__ import annotations

import asyncio
import time
import zlib
from typing import Any, Callable, Dict, Hashable, Iterator, List, Optional, Tuple


class KeyedStore:
    """Sharded key/value map with one asyncio lock per shard and a sliding TTL.

    Callers hold ``locked(key)`` around a read-modify-write of a single key;
    unrelated keys in other shards proceed independently.
    """

    def __init__(
        self,
        ttl_seconds: float = 0,
        shards: int = 16,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = max(0.0, float(ttl_seconds or 0))
        self._clock = clock
        self._shards: List[Dict[Hashable, Tuple[Any, Optional[float]]]] = [{} for _ in range(max(1, shards))]
        # created on first use so they bind to the running loop
        self._locks: List[Optional[asyncio.Lock]] = [None] * len(self._shards)

    def _index(self, key: Hashable) -> int:
        # crc32 of repr keeps shard choice stable across processes
        return zlib.crc32(repr(key).encode('utf-8')) % len(self._shards)

    def locked(self, key: Hashable) -> asyncio.Lock:
        i = self._index(key)
        lock = self._locks[i]
        if lock is None:
            lock = self._locks[i] = asyncio.Lock()
        return lock

    def peek(self, key: Hashable, default: Any = None) -> Any:
        shard = self._shards[self._index(key)]
        entry = shard.get(key)
        if entry is None:
            return default
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            shard.pop(key, None)
            return default
        return value

    def put(self, key: Hashable, value: Any) -> None:
        expires_at = self._clock() + self.ttl_seconds if self.ttl_seconds else None
        self._shards[self._index(key)][key] = (value, expires_at)

    def discard(self, key: Hashable) -> Any:
        entry = self._shards[self._index(key)].pop(key, None)
        return entry[0] if entry is not None else None

    def items(self) -> Iterator[Tuple[Hashable, Any]]:
        now = self._clock()
        for shard in self._shards:
            for key, (value, expires_at) in list(shard.items()):
                if expires_at is not None and expires_at <= now:
                    shard.pop(key, None)
                    continue
                yield key, value

    def clear(self) -> None:
        for shard in self._shards:
            shard.clear()

    def __len__(self) -> int:
        return sum(1 for _ in self.items())
