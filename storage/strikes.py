from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Dict, Optional, Tuple

from core.models import StrikeType
from storage.keyed import KeyedStore


def load_strikes(path: str, debug_logging: bool = False) -> Dict[str, Any]:
    try:
        with open(path, 'r') as file:
            data = json.load(file)
            return data if isinstance(data, dict) else {}
    except (FileNotFoundError, json.JSONDecodeError):
        if debug_logging:
            logging.warning("Strike file not found or is invalid. Starting with an empty strike list.")
        return {}


def save_strikes(data: Dict[str, Any], path: str) -> None:
    tmp_path = path + '.tmp'
    with open(tmp_path, 'w') as file:
        json.dump(data, file, indent=4)
    os.replace(tmp_path, path)


def make_strike_key(kind: StrikeType, info_hash: str) -> str:
    return f"{StrikeType(kind).value}:{str(info_hash).lower()}"


def split_strike_key(key: str) -> Optional[Tuple[StrikeType, str]]:
    kind, sep, info_hash = str(key).partition(':')
    if not sep or not info_hash:
        return None
    try:
        return StrikeType(kind), info_hash.lower()
    except ValueError:
        return None


def normalize_strike_entry(entry: Any) -> Dict[str, Any]:
    base = {
        "count": 0,
        "name": None,
        "last_strike_ts": None,
    }
    if isinstance(entry, int):
        base["count"] = entry
        return base
    if isinstance(entry, dict):
        out = base.copy()
        out.update({
            "count": int(entry.get("count", 0) or 0),
            "name": entry.get("name"),
            "last_strike_ts": entry.get("last_strike_ts"),
        })
        return out
    return base


class StrikeLedger:
    """Strike counters keyed by ``(strike kind, torrent hash)``.

    Each increment or reset runs under the lock of the key's shard, so
    concurrent checks of different torrents never serialize on one lock.
    """

    def __init__(self, ttl_seconds: float = 0, events: Any = None, store: Optional[KeyedStore] = None) -> None:
        self.store = store if store is not None else KeyedStore(ttl_seconds=ttl_seconds)
        self.events = events

    @staticmethod
    def _key(info_hash: str, kind: StrikeType) -> Tuple[StrikeType, str]:
        return StrikeType(kind), str(info_hash).lower()

    async def increment_and_check_limit(
        self,
        info_hash: str,
        name: str,
        max_strikes: int,
        kind: StrikeType,
    ) -> bool:
        if max_strikes <= 0:
            logging.debug(f"skip striking {kind.value} | max strikes is {max_strikes} | {name}")
            return False

        key = self._key(info_hash, kind)
        async with self.store.locked(key):
            entry = normalize_strike_entry(self.store.peek(key))
            entry["count"] += 1
            entry["name"] = name
            entry["last_strike_ts"] = time.time()
            self.store.put(key, entry)
            count = entry["count"]

        if count > max_strikes:
            logging.warning(f"Blocked item keeps coming back | {name}")
            if self.events is not None:
                await self.events.emit('recurring_item', hash=key[1], name=name, reason=kind.value, count=count)

        logging.info(f"Item on strike number {count} | reason {kind.value} | {name}")
        if self.events is not None:
            await self.events.emit('strike', hash=key[1], name=name, reason=kind.value, count=count, max_strikes=max_strikes)
        return count >= max_strikes

    async def reset(self, info_hash: str, name: str, kind: StrikeType) -> None:
        key = self._key(info_hash, kind)
        async with self.store.locked(key):
            old = self.store.discard(key)
        if old is not None:
            logging.debug(f"Reset {kind.value} strikes from {normalize_strike_entry(old)['count']} | {name}")
            if self.events is not None:
                await self.events.emit('strike_reset', hash=key[1], name=name, reason=kind.value)

    async def clear(self, info_hash: str) -> None:
        for kind in StrikeType:
            key = self._key(info_hash, kind)
            async with self.store.locked(key):
                self.store.discard(key)

    def count(self, info_hash: str, kind: StrikeType) -> int:
        return normalize_strike_entry(self.store.peek(self._key(info_hash, kind)))["count"]

    def to_dict(self) -> Dict[str, Any]:
        return {make_strike_key(kind, info_hash): entry for (kind, info_hash), entry in self.store.items()}

    def restore(self, data: Dict[str, Any]) -> int:
        loaded = 0
        for raw_key, raw_entry in (data or {}).items():
            parsed = split_strike_key(raw_key)
            if parsed is None:
                logging.warning(f"Ignoring unrecognized strike key '{raw_key}'")
                continue
            entry = normalize_strike_entry(raw_entry)
            if entry["count"] <= 0:
                continue
            self.store.put(parsed, entry)
            loaded += 1
        return loaded

    def save(self, path: str) -> None:
        save_strikes(self.to_dict(), path)

    @classmethod
    def from_file(cls, path: str, ttl_seconds: float = 0, events: Any = None, debug_logging: bool = False) -> 'StrikeLedger':
        ledger = cls(ttl_seconds=ttl_seconds, events=events)
        ledger.restore(load_strikes(path, debug_logging=debug_logging))
        return ledger
