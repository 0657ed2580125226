from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from core.models import StrikeType
from storage.keyed import KeyedStore
from storage.strikes import load_strikes, make_strike_key, save_strikes, split_strike_key


class ProgressBaselineCache:
    """Last observed progress value per ``(strike kind, torrent hash)``.

    Persisted beside the strike file so that progress deltas survive
    between separate polling runs.
    """

    def __init__(self, ttl_seconds: float = 0, store: Optional[KeyedStore] = None) -> None:
        self.store = store if store is not None else KeyedStore(ttl_seconds=ttl_seconds)

    @staticmethod
    def _key(info_hash: str, kind: StrikeType):
        return StrikeType(kind), str(info_hash).lower()

    async def get(self, info_hash: str, kind: StrikeType) -> Optional[Any]:
        key = self._key(info_hash, kind)
        async with self.store.locked(key):
            return self.store.peek(key)

    async def set(self, info_hash: str, kind: StrikeType, value: Any) -> None:
        key = self._key(info_hash, kind)
        async with self.store.locked(key):
            self.store.put(key, value)

    async def exchange(self, info_hash: str, kind: StrikeType, value: Any) -> Optional[Any]:
        """Store ``value`` and return the previous baseline, or None on first sight."""
        key = self._key(info_hash, kind)
        async with self.store.locked(key):
            previous = self.store.peek(key)
            self.store.put(key, value)
        return previous

    async def forget(self, info_hash: str) -> None:
        for kind in StrikeType:
            key = self._key(info_hash, kind)
            async with self.store.locked(key):
                self.store.discard(key)

    def to_dict(self) -> Dict[str, Any]:
        return {make_strike_key(kind, info_hash): value for (kind, info_hash), value in self.store.items()}

    def restore(self, data: Dict[str, Any]) -> int:
        loaded = 0
        for raw_key, value in (data or {}).items():
            parsed = split_strike_key(raw_key)
            if parsed is None or isinstance(value, bool) or not isinstance(value, int):
                logging.warning(f"Ignoring unrecognized baseline entry '{raw_key}'")
                continue
            self.store.put(parsed, value)
            loaded += 1
        return loaded

    def save(self, path: str) -> None:
        save_strikes(self.to_dict(), path)

    @classmethod
    def from_file(cls, path: str, ttl_seconds: float = 0, debug_logging: bool = False) -> 'ProgressBaselineCache':
        cache = cls(ttl_seconds=ttl_seconds)
        cache.restore(load_strikes(path, debug_logging=debug_logging))
        return cache
