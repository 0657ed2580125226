from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from core.config import ConfigAccessor
from core.evaluator import RuleEvaluator
from core.models import DecisionResult, DeleteReason, RuleSet, StrikeType, TorrentSnapshot
from storage.baselines import ProgressBaselineCache
from storage.strikes import StrikeLedger


FILES_SKIPPED_REASONS = (DeleteReason.ALL_FILES_SKIPPED, DeleteReason.ALL_FILES_SKIPPED_BY_QBIT)


def is_ignored(snapshot: TorrentSnapshot, ignored_downloads: Sequence[str]) -> bool:
    """Match hash, category or tag exactly, or a tracker host by domain suffix (case-insensitive)."""
    patterns = [str(p).strip().lower() for p in (ignored_downloads or []) if str(p or '').strip()]
    if not patterns:
        return False
    info_hash = str(snapshot.hash or '').lower()
    category = str(snapshot.category or '').lower()
    tags = {str(t).lower() for t in (snapshot.tags or [])}
    trackers = [str(t).lower() for t in (snapshot.trackers or [])]
    for pattern in patterns:
        if pattern == info_hash or (category and pattern == category) or pattern in tags:
            return True
        if any(host.endswith(pattern) for host in trackers):
            return True
    return False


@dataclass
class QueueChecker:
    """Turns a client snapshot into a removal decision.

    Checks run in a fixed order: ignore list, all-files-skipped,
    downloading metadata, slow rules, stall rules. The first check that asks
    for removal wins.
    """

    evaluator: RuleEvaluator
    rule_set: RuleSet
    ignored_downloads: List[str] = field(default_factory=list)
    downloading_metadata_max_strikes: int = 0
    events: Optional[Any] = None

    @property
    def ledger(self) -> StrikeLedger:
        return self.evaluator.ledger

    async def check(self, snapshot: TorrentSnapshot, files_state: Optional[DeleteReason] = None) -> DecisionResult:
        if is_ignored(snapshot, self.ignored_downloads):
            logging.info(f"skip | download is ignored | {snapshot.name}")
            return DecisionResult(found=True, is_private=snapshot.is_private)

        if files_state in FILES_SKIPPED_REASONS:
            logging.info(f"all files are skipped | {snapshot.name}")
            return await self._report(snapshot, DecisionResult(
                found=True,
                should_remove=True,
                delete_reason=files_state,
                is_private=snapshot.is_private,
                delete_from_client=True,
            ))

        if snapshot.is_metadata_downloading():
            return await self._report(snapshot, await self.check_metadata(snapshot))

        result = DecisionResult(found=True, is_private=snapshot.is_private)
        if snapshot.is_downloading() and int(snapshot.download_speed or 0) > 0:
            result = await self.evaluator.evaluate_slow_rules(snapshot, self.rule_set.slow_rules)
            if result.should_remove:
                return await self._report(snapshot, result)

        if snapshot.is_stalled():
            result = await self.evaluator.evaluate_stall_rules(snapshot, self.rule_set.stall_rules)
        return await self._report(snapshot, result)

    async def check_metadata(self, snapshot: TorrentSnapshot) -> DecisionResult:
        if self.downloading_metadata_max_strikes <= 0:
            return DecisionResult(found=True, is_private=snapshot.is_private)
        should_remove = await self.ledger.increment_and_check_limit(
            snapshot.hash,
            snapshot.name,
            self.downloading_metadata_max_strikes,
            StrikeType.DOWNLOADING_METADATA,
        )
        return DecisionResult(
            found=True,
            should_remove=should_remove,
            delete_reason=DeleteReason.DOWNLOADING_METADATA if should_remove else DeleteReason.NONE,
            is_private=snapshot.is_private,
            delete_from_client=should_remove,
        )

    async def _report(self, snapshot: TorrentSnapshot, result: DecisionResult) -> DecisionResult:
        if not result.should_remove:
            return result
        # a removed torrent leaves nothing behind in either store
        await self.ledger.clear(snapshot.hash)
        await self.evaluator.baselines.forget(snapshot.hash)
        if self.events is not None:
            await self.events.emit(
                'remove',
                hash=str(snapshot.hash).lower(),
                name=snapshot.name,
                reason=result.delete_reason.value,
                delete_from_client=result.delete_from_client,
                private=result.is_private,
            )
        return result


def build_checker(
    cfg: Dict[str, Any],
    ledger: StrikeLedger,
    baselines: Optional[ProgressBaselineCache] = None,
    events: Optional[Any] = None,
) -> QueueChecker:
    acc = ConfigAccessor(cfg)
    if baselines is None:
        baselines = ProgressBaselineCache(ttl_seconds=acc.strike_ttl_seconds())
    return QueueChecker(
        evaluator=RuleEvaluator(ledger=ledger, baselines=baselines),
        rule_set=acc.rule_set(),
        ignored_downloads=acc.ignored_downloads(),
        downloading_metadata_max_strikes=acc.downloading_metadata_max_strikes(),
        events=events,
    )
