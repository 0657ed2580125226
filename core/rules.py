from __future__ import annotations

import logging
from typing import List, Optional, Sequence, TypeVar

from core.models import QueueRule, SlowRule, StallRule, TorrentSnapshot


R = TypeVar('R', bound=QueueRule)


def matching_rules(snapshot: TorrentSnapshot, rules: Sequence[R]) -> List[R]:
    return [r for r in rules if r.enabled and r.matches(snapshot)]


def _select_single(snapshot: TorrentSnapshot, rules: Sequence[R], label: str) -> Optional[R]:
    matches = matching_rules(snapshot, rules)
    if not matches:
        logging.debug(f"skip | no {label} rule matched | {snapshot.name}")
        return None
    if len(matches) > 1:
        names = ', '.join(r.name for r in matches)
        logging.warning(f"skip | multiple {label} rules matched | {snapshot.name} | rules: {names}")
        return None
    return matches[0]


def select_stall_rule(snapshot: TorrentSnapshot, stall_rules: Sequence[StallRule]) -> Optional[StallRule]:
    """Return the single enabled stall rule covering this torrent.

    Returns None when nothing matches or when two or more rules match; the
    latter is logged as a warning naming the conflicting rules.
    """
    return _select_single(snapshot, stall_rules, 'stall')


def select_slow_rule(snapshot: TorrentSnapshot, slow_rules: Sequence[SlowRule]) -> Optional[SlowRule]:
    return _select_single(snapshot, slow_rules, 'slow')
