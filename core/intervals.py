from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Sequence

from core.models import (
    IntervalGap,
    IntervalOverlap,
    PrivacyType,
    QueueRule,
    RuleInterval,
    ValidationResult,
)


SCOPES = (PrivacyType.PUBLIC, PrivacyType.PRIVATE)


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


def rule_intervals(rule: QueueRule) -> List[RuleInterval]:
    """Expand a rule into one interval per privacy scope it applies to."""
    scopes = SCOPES if rule.privacy_type == PrivacyType.BOTH else (rule.privacy_type,)
    return [
        RuleInterval(
            rule_id=rule.id,
            rule_name=rule.name,
            privacy_type=scope,
            start=float(rule.min_completion_percentage),
            end=float(rule.max_completion_percentage),
        )
        for scope in scopes
    ]


def _active_rules(rules: Iterable[QueueRule]) -> List[QueueRule]:
    # last copy of an id wins so an edited rule replaces its stored version
    by_id: Dict[str, QueueRule] = {}
    for rule in rules:
        by_id.pop(rule.id, None)
        by_id[rule.id] = rule
    return [r for r in by_id.values() if r.enabled]


def find_overlaps(candidate: QueueRule, rules: Sequence[QueueRule]) -> List[IntervalOverlap]:
    active = _active_rules([*rules, candidate])
    if candidate.id not in {r.id for r in active}:
        return []
    mine = rule_intervals(candidate)
    others = [iv for r in active if r.id != candidate.id for iv in rule_intervals(r)]

    overlaps: List[IntervalOverlap] = []
    for iv in mine:
        if iv.end < iv.start:
            continue
        for other in others:
            if other.privacy_type != iv.privacy_type or other.end < other.start:
                continue
            start = max(iv.start, other.start)
            end = min(iv.end, other.end)
            # touching bounds and single-point rules have no width to conflict over
            if end <= start:
                continue
            overlaps.append(IntervalOverlap(
                rule_name=iv.rule_name,
                conflicting_rule_name=other.rule_name,
                privacy_type=iv.privacy_type,
                start=start,
                end=end,
            ))
    return overlaps


def validate_intervals(candidate: QueueRule, existing_rules: Sequence[QueueRule]) -> ValidationResult:
    overlaps = find_overlaps(candidate, existing_rules)
    if not overlaps:
        return ValidationResult(is_valid=True)

    by_rule: Dict[str, List[IntervalOverlap]] = {}
    for ov in overlaps:
        logging.warning(
            f"Rule '{ov.rule_name}' overlaps '{ov.conflicting_rule_name}' for {ov.privacy_type.value} torrents "
            f"between {ov.start:g}% and {ov.end:g}%"
        )
        by_rule.setdefault(ov.conflicting_rule_name, []).append(ov)

    details = []
    for name, items in by_rule.items():
        ranges = ', '.join(f"{ov.privacy_type.value} {ov.start:g}-{ov.end:g}%" for ov in items)
        details.append(f"Overlaps with rule '{name}' ({ranges})")

    return ValidationResult(
        is_valid=False,
        details=details,
        error_message='Rule creates overlapping intervals with existing rules: ' + ', '.join(by_rule),
        overlaps=overlaps,
    )


def _scope_gaps(scope: PrivacyType, intervals: List[RuleInterval]) -> List[IntervalGap]:
    spans = []
    for iv in intervals:
        start, end = _clamp(iv.start), _clamp(iv.end)
        if end < start:
            continue
        spans.append((start, end))
    if not spans:
        return [IntervalGap(scope, 0.0, 100.0)]

    gaps: List[IntervalGap] = []
    cursor = 0.0
    for start, end in sorted(spans):
        if start > cursor:
            gaps.append(IntervalGap(scope, cursor, start))
        cursor = min(100.0, max(cursor, end))
    if cursor < 100.0:
        gaps.append(IntervalGap(scope, cursor, 100.0))
    return gaps


def find_coverage_gaps(rules: Sequence[QueueRule]) -> List[IntervalGap]:
    """Completion ranges left uncovered by enabled rules, per privacy scope.

    Public and private scopes are computed independently; a scope with no
    enabled rules yields a single 0-100 gap.
    """
    intervals = [iv for r in _active_rules(rules) for iv in rule_intervals(r)]
    gaps: List[IntervalGap] = []
    for scope in SCOPES:
        gaps.extend(_scope_gaps(scope, [iv for iv in intervals if iv.privacy_type == scope]))
    return gaps
