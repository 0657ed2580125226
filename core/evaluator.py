from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from core.models import (
    DecisionResult,
    DeleteReason,
    QueueRule,
    SlowRule,
    StallRule,
    StrikeType,
    TorrentSnapshot,
)
from core.rules import select_slow_rule, select_stall_rule
from core.utils import format_bytes, hours_to_seconds
from storage.baselines import ProgressBaselineCache
from storage.strikes import StrikeLedger


def _keep(snapshot: TorrentSnapshot) -> DecisionResult:
    return DecisionResult(found=True, is_private=snapshot.is_private)


def _decision(snapshot: TorrentSnapshot, rule: QueueRule, should_remove: bool, reason: DeleteReason) -> DecisionResult:
    return DecisionResult(
        found=True,
        should_remove=should_remove,
        delete_reason=reason if should_remove else DeleteReason.NONE,
        is_private=snapshot.is_private,
        delete_from_client=should_remove and rule.delete_private_torrents_from_client,
    )


def has_progressed(delta: int, minimum_progress: Optional[int]) -> bool:
    if delta <= 0:
        return False
    if minimum_progress is None or minimum_progress <= 0:
        return True
    return delta >= minimum_progress


@dataclass
class RuleEvaluator:
    """Applies the selected stall or slow rule to a snapshot.

    Each call makes at most one strike ledger mutation and at most one
    baseline cache exchange. Ledger errors propagate to the caller.
    """

    ledger: StrikeLedger
    baselines: ProgressBaselineCache

    async def evaluate_stall_rules(self, snapshot: TorrentSnapshot, stall_rules: Sequence[StallRule]) -> DecisionResult:
        rule = select_stall_rule(snapshot, stall_rules)
        if rule is None:
            return _keep(snapshot)

        if rule.reset_strikes_on_progress:
            current = int(snapshot.downloaded_bytes or 0)
            previous = await self.baselines.exchange(snapshot.hash, StrikeType.STALLED, current)
            if previous is None:
                logging.debug(f"stall baseline seeded at {format_bytes(current)} | {snapshot.name}")
                return _keep(snapshot)
            delta = current - int(previous)
            if has_progressed(delta, rule.minimum_progress_bytes):
                logging.debug(f"progress of {format_bytes(delta)} since last check | {snapshot.name}")
                await self.ledger.reset(snapshot.hash, snapshot.name, StrikeType.STALLED)
                return _keep(snapshot)

        should_remove = await self.ledger.increment_and_check_limit(
            snapshot.hash, snapshot.name, rule.max_strikes, StrikeType.STALLED
        )
        return _decision(snapshot, rule, should_remove, DeleteReason.STALLED)

    async def evaluate_slow_rules(self, snapshot: TorrentSnapshot, slow_rules: Sequence[SlowRule]) -> DecisionResult:
        rule = select_slow_rule(snapshot, slow_rules)
        if rule is None:
            return _keep(snapshot)

        min_speed = rule.min_speed_bytes
        if min_speed is not None:
            return await self._check_speed(snapshot, rule, min_speed)
        if rule.max_time_hours > 0:
            return await self._check_time(snapshot, rule)
        logging.debug(f"skip | slow rule {rule.name} has neither min speed nor max time")
        return _keep(snapshot)

    async def _check_speed(self, snapshot: TorrentSnapshot, rule: SlowRule, min_speed: int) -> DecisionResult:
        speed = int(snapshot.download_speed or 0)
        if speed < min_speed:
            logging.debug(
                f"slow speed | {format_bytes(speed)}/s, expected {format_bytes(min_speed)}/s | {snapshot.name}"
            )
            should_remove = await self.ledger.increment_and_check_limit(
                snapshot.hash, snapshot.name, rule.max_strikes, StrikeType.SLOW_SPEED
            )
            return _decision(snapshot, rule, should_remove, DeleteReason.SLOW_SPEED)
        if rule.reset_strikes_on_progress:
            await self.ledger.reset(snapshot.hash, snapshot.name, StrikeType.SLOW_SPEED)
        return _keep(snapshot)

    async def _check_time(self, snapshot: TorrentSnapshot, rule: SlowRule) -> DecisionResult:
        eta = int(snapshot.eta or 0)
        max_seconds = hours_to_seconds(rule.max_time_hours)
        if eta > max_seconds:
            logging.debug(f"slow time | eta {eta}s, expected at most {int(max_seconds)}s | {snapshot.name}")
            should_remove = await self.ledger.increment_and_check_limit(
                snapshot.hash, snapshot.name, rule.max_strikes, StrikeType.SLOW_TIME
            )
            return _decision(snapshot, rule, should_remove, DeleteReason.SLOW_TIME)
        if rule.reset_strikes_on_progress:
            await self.ledger.reset(snapshot.hash, snapshot.name, StrikeType.SLOW_TIME)
        return _keep(snapshot)
