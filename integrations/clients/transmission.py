from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from core.models import DecisionResult, DeleteReason
from core.utils import tracker_hosts


TORRENT_FIELDS = [
    'hashString', 'name', 'status', 'isPrivate', 'totalSize', 'downloadedEver',
    'rateDownload', 'eta', 'labels', 'trackers', 'fileStats',
]

STATUS_STOPPED = 0
STATUS_CHECK_WAIT = 1
STATUS_CHECKING = 2
STATUS_DOWNLOAD_WAIT = 3
STATUS_DOWNLOADING = 4
STATUS_SEED_WAIT = 5
STATUS_SEEDING = 6


async def transmission_call(
    session: aiohttp.ClientSession,
    base_url: str,
    username: Optional[str],
    password: Optional[str],
    method: str,
    arguments: Dict[str, Any],
) -> Optional[Dict[str, Any]]:
    try:
        url = base_url.rstrip('/')
        headers: Dict[str, str] = {}
        auth = aiohttp.BasicAuth(username or '', password or '') if (username or password) else None
        body = {"method": method, "arguments": arguments}
        resp = await session.post(url, json=body, headers=headers, auth=auth, timeout=aiohttp.ClientTimeout(total=5))
        if getattr(resp, 'status', None) == 409:
            sid = getattr(resp, 'headers', {}).get('X-Transmission-Session-Id')
            if not sid:
                return None
            headers['X-Transmission-Session-Id'] = sid
            resp = await session.post(url, json=body, headers=headers, auth=auth, timeout=aiohttp.ClientTimeout(total=5))
        if getattr(resp, 'status', None) not in (200, 204):
            return None
        return await resp.json()
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        logging.debug(f"Transmission: {method} failed: {e}")
        return None


def transmission_status_to_state(status: Optional[int]) -> str:
    mapping = {0: 'stopped', 1: 'check_wait', 2: 'checking', 3: 'download_wait', 4: 'downloading', 5: 'seed_wait', 6: 'seeding'}
    try:
        return mapping.get(int(status), 'unknown')
    except (TypeError, ValueError):
        return 'unknown'


async def transmission_get_torrent(
    session: aiohttp.ClientSession,
    base_url: str,
    username: Optional[str],
    password: Optional[str],
    info_hash: str,
) -> Optional[Dict[str, Any]]:
    j = await transmission_call(session, base_url, username, password, 'torrent-get', {"ids": [info_hash], "fields": TORRENT_FIELDS})
    arr = ((j or {}).get('arguments') or {}).get('torrents') or []
    for t in arr:
        if str(t.get('hashString') or '').lower() == info_hash.lower():
            return t
    return None


class TransmissionItem:
    def __init__(self, torrent: Dict[str, Any]) -> None:
        self.status = int(torrent.get('status') or 0)
        self.hash = str(torrent.get('hashString') or '')
        self.name = str(torrent.get('name') or '')
        self.is_private = bool(torrent.get('isPrivate', False))
        self.size = int(torrent.get('totalSize') or 0)
        self.downloaded_bytes = int(torrent.get('downloadedEver') or 0)
        self.completion_percentage = (self.downloaded_bytes / self.size) * 100.0 if self.size > 0 else 0.0
        self.download_speed = int(torrent.get('rateDownload') or 0)
        self.raw_eta = int(torrent.get('eta') or 0)
        self.eta = max(0, self.raw_eta)
        labels = [str(x) for x in (torrent.get('labels') or []) if str(x).strip()]
        self.category = labels[0] if labels else None
        self.tags = labels
        self.trackers = tracker_hosts(t.get('announce') for t in (torrent.get('trackers') or []) if isinstance(t, dict))

    @property
    def state(self) -> str:
        return transmission_status_to_state(self.status)

    def is_downloading(self) -> bool:
        return self.status == STATUS_DOWNLOADING

    def is_stalled(self) -> bool:
        return self.status == STATUS_DOWNLOADING and self.download_speed <= 0 and self.raw_eta <= 0

    def is_seeding(self) -> bool:
        return self.status == STATUS_SEEDING

    def is_completed(self) -> bool:
        return self.completion_percentage >= 100.0

    def is_paused(self) -> bool:
        return self.status == STATUS_STOPPED

    def is_queued(self) -> bool:
        return self.status in (STATUS_CHECK_WAIT, STATUS_DOWNLOAD_WAIT, STATUS_SEED_WAIT)

    def is_checking(self) -> bool:
        return self.status == STATUS_CHECKING

    def is_allocating(self) -> bool:
        return False

    def is_metadata_downloading(self) -> bool:
        return False


def transmission_files_state(torrent: Dict[str, Any]) -> Optional[DeleteReason]:
    stats: List[Dict[str, Any]] = torrent.get('fileStats') or []
    if stats and all(not s.get('wanted', True) for s in stats):
        return DeleteReason.ALL_FILES_SKIPPED
    return None


async def transmission_check_item(
    session: aiohttp.ClientSession,
    client_cfg: Dict[str, Any],
    info_hash: str,
    checker,
) -> DecisionResult:
    torrent = await transmission_get_torrent(
        session, client_cfg.get('url'), client_cfg.get('username'), client_cfg.get('password'), info_hash
    )
    if torrent is None:
        return DecisionResult(found=False)
    item = TransmissionItem(torrent)
    logging.debug(f"Transmission: {item.name} is {item.state}")
    return await checker.check(item, transmission_files_state(torrent))
