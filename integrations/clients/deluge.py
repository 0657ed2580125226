from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from core.models import DecisionResult, DeleteReason
from core.utils import tracker_hosts


STATUS_KEYS = [
    'hash', 'name', 'state', 'private', 'total_size', 'total_done', 'download_payload_rate',
    'eta', 'label', 'trackers', 'file_priorities',
]


async def deluge_request(
    session: aiohttp.ClientSession,
    base_url: str,
    method: str,
    params: List[Any],
    password: Optional[str],
) -> Optional[Dict[str, Any]]:
    url = base_url.rstrip('/')
    if not url.endswith('/json'):
        url = url + '/json'
    try:
        body_login = {"method": "auth.login", "params": [password or 'deluge'], "id": 1}
        r1 = await session.post(url, json=body_login, timeout=aiohttp.ClientTimeout(total=5))
        if getattr(r1, 'status', None) not in (200, 204):
            return None
        body = {"method": method, "params": params, "id": 2}
        r2 = await session.post(url, json=body, timeout=aiohttp.ClientTimeout(total=5))
        if getattr(r2, 'status', None) not in (200, 204):
            return None
        return await r2.json()
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        logging.debug(f"Deluge: {method} failed: {e}")
        return None


async def deluge_get_status(
    session: aiohttp.ClientSession,
    base_url: str,
    password: Optional[str],
    info_hash: str,
) -> Optional[Dict[str, Any]]:
    j = await deluge_request(session, base_url, 'core.get_torrent_status', [info_hash, STATUS_KEYS], password)
    result = (j or {}).get('result')
    # unknown hashes come back as an empty status dict
    if isinstance(result, dict) and result:
        return result
    return None


class DelugeItem:
    def __init__(self, status: Dict[str, Any]) -> None:
        self.state = str(status.get('state') or '')
        self.hash = str(status.get('hash') or '')
        self.name = str(status.get('name') or '')
        self.is_private = bool(status.get('private', False))
        self.size = int(status.get('total_size') or 0)
        self.downloaded_bytes = int(status.get('total_done') or 0)
        self.completion_percentage = (self.downloaded_bytes / self.size) * 100.0 if self.size > 0 else 0.0
        self.download_speed = int(status.get('download_payload_rate') or 0)
        self.eta = max(0, int(status.get('eta') or 0))
        self.category = status.get('label') or None
        self.tags = []
        self.trackers = tracker_hosts(t.get('url') for t in (status.get('trackers') or []) if isinstance(t, dict))

    def _state_is(self, name: str) -> bool:
        return self.state.lower() == name

    def is_downloading(self) -> bool:
        return self._state_is('downloading')

    def is_stalled(self) -> bool:
        return self.is_downloading() and self.download_speed <= 0 and self.eta <= 0

    def is_seeding(self) -> bool:
        return self._state_is('seeding')

    def is_completed(self) -> bool:
        return self.completion_percentage >= 100.0

    def is_paused(self) -> bool:
        return self._state_is('paused')

    def is_queued(self) -> bool:
        return self._state_is('queued')

    def is_checking(self) -> bool:
        return self._state_is('checking')

    def is_allocating(self) -> bool:
        return self._state_is('allocating')

    def is_metadata_downloading(self) -> bool:
        return False


def deluge_files_state(status: Dict[str, Any]) -> Optional[DeleteReason]:
    priorities = status.get('file_priorities') or []
    if priorities and all(int(p or 0) == 0 for p in priorities):
        return DeleteReason.ALL_FILES_SKIPPED
    return None


async def deluge_check_item(
    session: aiohttp.ClientSession,
    client_cfg: Dict[str, Any],
    info_hash: str,
    checker,
) -> DecisionResult:
    status = await deluge_get_status(session, client_cfg.get('url'), client_cfg.get('password'), info_hash)
    if status is None:
        return DecisionResult(found=False)
    status.setdefault('hash', info_hash)
    return await checker.check(DelugeItem(status), deluge_files_state(status))
