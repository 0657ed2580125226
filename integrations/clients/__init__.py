from __future__ import annotations

import logging
from typing import Any, Dict

import aiohttp

from core.models import DecisionResult

from . import qbittorrent as qb_mod
from . import transmission as tr_mod
from . import deluge as dl_mod
from . import utorrent as ut_mod


CLIENT_CHECKS = (
    ('qbittorrent', qb_mod.qbittorrent_check_item),
    ('transmission', tr_mod.transmission_check_item),
    ('deluge', dl_mod.deluge_check_item),
    ('utorrent', ut_mod.utorrent_check_item),
)


def configured_clients(CONFIG: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    clients = CONFIG.get('clients') if isinstance(CONFIG.get('clients'), dict) else {}
    out: Dict[str, Dict[str, Any]] = {}
    for name, _ in CLIENT_CHECKS:
        ccfg = clients.get(name) if isinstance(clients.get(name), dict) else {}
        if ccfg.get('url'):
            out[name] = ccfg
    return out


async def should_remove_from_queue(
    session: aiohttp.ClientSession,
    info_hash: str,
    CONFIG: Dict[str, Any],
    checker,
) -> DecisionResult:
    """Ask each configured client about ``info_hash``; the first that knows it decides."""
    clients = configured_clients(CONFIG)
    if not clients:
        logging.warning("No download clients configured")
        return DecisionResult(found=False)

    for name, check in CLIENT_CHECKS:
        ccfg = clients.get(name)
        if ccfg is None:
            continue
        result = await check(session, ccfg, info_hash, checker)
        if result.found:
            logging.debug(f"{name}: {info_hash} -> {result.to_dict()}")
            return result
    logging.debug(f"{info_hash} not found in any client")
    return DecisionResult(found=False)
