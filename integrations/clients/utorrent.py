from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from core.models import DecisionResult, DeleteReason
from core.utils import tracker_hosts


TOKEN_RE = re.compile(r"<div[^>]*id=['\"]token['\"][^>]*>([^<]+)</div>", re.IGNORECASE)

STARTED = 1
CHECKING = 2
START_AFTER_CHECK = 4
CHECKED = 8
ERROR = 16
PAUSED = 32
QUEUED = 64
LOADED = 128

# Column positions in a list=1 torrent row
COL_HASH = 0
COL_STATUS = 1
COL_NAME = 2
COL_SIZE = 3
COL_PROGRESS = 4
COL_DOWNLOADED = 5
COL_DOWNSPEED = 9
COL_ETA = 10
COL_LABEL = 11
COL_DATE_COMPLETED = 24
ROW_LENGTH = 27


async def utorrent_get_token(
    session: aiohttp.ClientSession,
    base_url: str,
    username: Optional[str],
    password: Optional[str],
) -> Optional[Tuple[str, str]]:
    url = base_url.rstrip('/') + '/gui/token.html'
    auth = aiohttp.BasicAuth(username or '', password or '')
    resp = await session.get(url, auth=auth, timeout=aiohttp.ClientTimeout(total=5))
    if getattr(resp, 'status', None) != 200:
        logging.warning(f"uTorrent: token request returned {getattr(resp, 'status', None)}")
        return None
    m = TOKEN_RE.search(await resp.text())
    if not m:
        logging.warning("uTorrent: no token in token.html response")
        return None
    cookie = str(getattr(resp, 'headers', {}).get('Set-Cookie') or '')
    guid = cookie.split(';')[0] if 'GUID=' in cookie else ''
    return m.group(1).strip(), guid


async def utorrent_request(
    session: aiohttp.ClientSession,
    base_url: str,
    username: Optional[str],
    password: Optional[str],
    token: str,
    guid: str,
    params: List[Tuple[str, str]],
) -> Optional[Dict[str, Any]]:
    url = base_url.rstrip('/') + '/gui/'
    auth = aiohttp.BasicAuth(username or '', password or '')
    headers = {'Cookie': guid} if guid else {}
    query = [('token', token), *params]
    resp = await session.get(url, params=query, headers=headers, auth=auth, timeout=aiohttp.ClientTimeout(total=5))
    if getattr(resp, 'status', None) != 200:
        return None
    data = await resp.json(content_type=None)
    return data if isinstance(data, dict) else None


async def utorrent_fetch_torrent(
    session: aiohttp.ClientSession,
    base_url: str,
    username: Optional[str],
    password: Optional[str],
    info_hash: str,
) -> Optional[Dict[str, Any]]:
    try:
        auth = await utorrent_get_token(session, base_url, username, password)
        if auth is None:
            return None
        token, guid = auth
        listing = await utorrent_request(session, base_url, username, password, token, guid, [('list', '1')])
        row = None
        for r in (listing or {}).get('torrents') or []:
            if isinstance(r, list) and len(r) >= ROW_LENGTH and str(r[COL_HASH]).lower() == info_hash.lower():
                row = r
                break
        if row is None:
            return None
        props = await utorrent_request(
            session, base_url, username, password, token, guid, [('action', 'getprops'), ('hash', row[COL_HASH])]
        )
        files = await utorrent_request(
            session, base_url, username, password, token, guid, [('action', 'getfiles'), ('hash', row[COL_HASH])]
        )
        props_list = (props or {}).get('props') or []
        files_raw = (files or {}).get('files') or []
        return {
            'row': row,
            'properties': props_list[0] if props_list and isinstance(props_list[0], dict) else {},
            'files': files_raw[1] if len(files_raw) >= 2 and isinstance(files_raw[1], list) else [],
        }
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        logging.debug(f"uTorrent: torrent request failed for {info_hash}: {e}")
        return None


class UTorrentItem:
    def __init__(self, row: List[Any], properties: Optional[Dict[str, Any]] = None) -> None:
        props = properties or {}
        self.status = int(row[COL_STATUS] or 0)
        self.hash = str(row[COL_HASH])
        self.name = str(row[COL_NAME] or '')
        self.size = int(row[COL_SIZE] or 0)
        # progress is reported in per mille
        self.completion_percentage = int(row[COL_PROGRESS] or 0) / 10.0
        self.downloaded_bytes = int(row[COL_DOWNLOADED] or 0)
        self.download_speed = int(row[COL_DOWNSPEED] or 0)
        self.raw_eta = int(row[COL_ETA] or 0)
        self.eta = max(0, self.raw_eta)
        self.category = str(row[COL_LABEL] or '') or None
        self.tags = []
        self.date_completed = int(row[COL_DATE_COMPLETED] or 0)
        self.is_private = int(props.get('pex', 0) or 0) == -1
        trackers = str(props.get('trackers') or '').replace('\r\n', '\n').split('\n')
        self.trackers = tracker_hosts(t.strip() for t in trackers if t.strip())

    def _has(self, flag: int) -> bool:
        return bool(self.status & flag)

    def is_downloading(self) -> bool:
        return self._has(STARTED) and self._has(CHECKED) and not self._has(ERROR)

    def is_stalled(self) -> bool:
        return self.is_downloading() and self.download_speed == 0 and self.raw_eta == 0

    def is_seeding(self) -> bool:
        return self.is_downloading() and self.date_completed > 0

    def is_completed(self) -> bool:
        return self.completion_percentage >= 100.0

    def is_paused(self) -> bool:
        return self._has(PAUSED)

    def is_queued(self) -> bool:
        return self._has(QUEUED)

    def is_checking(self) -> bool:
        return self._has(CHECKING)

    def is_allocating(self) -> bool:
        return False

    def is_metadata_downloading(self) -> bool:
        return False


def utorrent_files_state(files: List[Any]) -> Optional[DeleteReason]:
    priorities = [int(f[3] or 0) for f in files if isinstance(f, list) and len(f) >= 4]
    if priorities and all(p == 0 for p in priorities):
        return DeleteReason.ALL_FILES_SKIPPED
    return None


async def utorrent_check_item(
    session: aiohttp.ClientSession,
    client_cfg: Dict[str, Any],
    info_hash: str,
    checker,
) -> DecisionResult:
    data = await utorrent_fetch_torrent(
        session, client_cfg.get('url'), client_cfg.get('username'), client_cfg.get('password'), info_hash
    )
    if data is None:
        return DecisionResult(found=False)
    return await checker.check(UTorrentItem(data['row'], data['properties']), utorrent_files_state(data['files']))
