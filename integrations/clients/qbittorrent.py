from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from core.models import DecisionResult, DeleteReason
from core.utils import tracker_hosts


DOWNLOADING_STATES = ('downloading', 'forcedDL')
SEEDING_STATES = ('uploading', 'forcedUP', 'stalledUP')
PAUSED_STATES = ('pausedDL', 'pausedUP', 'stoppedDL', 'stoppedUP')
QUEUED_STATES = ('queuedDL', 'queuedUP')
CHECKING_STATES = ('checkingDL', 'checkingUP', 'checkingResumeData')
METADATA_STATES = ('metaDL', 'forcedMetaDL')


async def qbittorrent_login(
    session: aiohttp.ClientSession,
    base_url: str,
    username: str,
    password: str,
) -> bool:
    login_url = base_url.rstrip('/') + '/api/v2/auth/login'
    form = aiohttp.FormData()
    form.add_field('username', username)
    form.add_field('password', password)
    resp = await session.post(login_url, data=form, timeout=aiohttp.ClientTimeout(total=5))
    return getattr(resp, 'status', None) == 200


async def _get_json(session: aiohttp.ClientSession, base_url: str, path: str, params: Dict[str, str]) -> Optional[Any]:
    url = base_url.rstrip('/') + path
    r = await session.get(url, params=params, timeout=aiohttp.ClientTimeout(total=5))
    if getattr(r, 'status', None) != 200:
        return None
    return await r.json()


async def qbittorrent_fetch_torrent(
    session: aiohttp.ClientSession,
    base_url: str,
    username: str,
    password: str,
    info_hash: str,
) -> Optional[Dict[str, Any]]:
    """Info, properties, trackers and files for one hash, or None when unknown."""
    try:
        if not await qbittorrent_login(session, base_url, username, password):
            logging.warning(f"qBittorrent: login failed at {base_url}")
            return None
        info = await _get_json(session, base_url, '/api/v2/torrents/info', {'hashes': info_hash})
        if not isinstance(info, list) or not info:
            return None
        props = await _get_json(session, base_url, '/api/v2/torrents/properties', {'hash': info_hash})
        if not isinstance(props, dict):
            logging.warning(f"qBittorrent: failed to find torrent properties for {info[0].get('name') or info_hash}")
            return None
        trackers = await _get_json(session, base_url, '/api/v2/torrents/trackers', {'hash': info_hash})
        files = await _get_json(session, base_url, '/api/v2/torrents/files', {'hash': info_hash})
        return {
            'info': info[0],
            'properties': props,
            'trackers': trackers if isinstance(trackers, list) else [],
            'files': files if isinstance(files, list) else [],
        }
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        logging.debug(f"qBittorrent: torrent request failed for {info_hash}: {e}")
        return None


class QBitItem:
    def __init__(
        self,
        info: Dict[str, Any],
        properties: Optional[Dict[str, Any]] = None,
        trackers: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        props = properties or {}
        self.state = str(info.get('state') or '')
        self.hash = str(info.get('hash') or '')
        self.name = str(info.get('name') or '')
        self.is_private = bool(props.get('is_private', info.get('private', False)))
        self.size = int(info.get('size') or 0)
        self.completion_percentage = float(info.get('progress') or 0) * 100.0
        self.downloaded_bytes = int(info.get('downloaded') or 0)
        self.download_speed = int(info.get('dlspeed') or 0)
        self.eta = max(0, int(info.get('eta') or 0))
        self.category = info.get('category') or None
        self.tags = [t.strip() for t in str(info.get('tags') or '').split(',') if t.strip()]
        self.trackers = tracker_hosts(t.get('url') for t in (trackers or []) if isinstance(t, dict))

    def is_downloading(self) -> bool:
        return self.state in DOWNLOADING_STATES

    def is_stalled(self) -> bool:
        return self.state == 'stalledDL'

    def is_seeding(self) -> bool:
        return self.state in SEEDING_STATES

    def is_completed(self) -> bool:
        return self.completion_percentage >= 100.0

    def is_paused(self) -> bool:
        return self.state in PAUSED_STATES

    def is_queued(self) -> bool:
        return self.state in QUEUED_STATES

    def is_checking(self) -> bool:
        return self.state in CHECKING_STATES

    def is_allocating(self) -> bool:
        return self.state == 'allocating'

    def is_metadata_downloading(self) -> bool:
        return self.state in METADATA_STATES


def qbittorrent_files_state(info: Dict[str, Any], files: List[Dict[str, Any]]) -> Optional[DeleteReason]:
    if not files or any(int(f.get('priority') or 0) != 0 for f in files):
        return None
    completion_on = info.get('completion_on')
    if completion_on is not None and int(completion_on) > 0 and not info.get('downloaded'):
        return DeleteReason.ALL_FILES_SKIPPED_BY_QBIT
    return DeleteReason.ALL_FILES_SKIPPED


async def qbittorrent_check_item(
    session: aiohttp.ClientSession,
    client_cfg: Dict[str, Any],
    info_hash: str,
    checker,
) -> DecisionResult:
    data = await qbittorrent_fetch_torrent(
        session, client_cfg.get('url'), client_cfg.get('username') or '', client_cfg.get('password') or '', info_hash
    )
    if data is None:
        return DecisionResult(found=False)
    item = QBitItem(data['info'], data['properties'], data['trackers'])
    return await checker.check(item, qbittorrent_files_state(data['info'], data['files']))
