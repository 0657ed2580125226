from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

from core.config import RULE_SECTIONS, ConfigAccessor, load_yaml, save_yaml
from core.intervals import find_coverage_gaps, validate_intervals
from core.models import (
    IntervalGap,
    QueueRule,
    Rule,
    RuleSet,
    ValidationError,
    ValidationResult,
)


class RuleConflictError(ValidationError):
    def __init__(self, result: ValidationResult) -> None:
        super().__init__(result.error_message or 'Rule conflicts with existing rules')
        self.result = result


class RuleStore:
    """Holds the active stall and slow rules; every write is validated first."""

    def __init__(self, stall_rules: Optional[List[Rule]] = None, slow_rules: Optional[List[Rule]] = None) -> None:
        self._rules: Dict[str, List[QueueRule]] = {
            'stall': list(stall_rules or []),
            'slow': list(slow_rules or []),
        }

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> 'RuleStore':
        acc = ConfigAccessor(cfg)
        return cls(stall_rules=acc.parsed_rules('stall'), slow_rules=acc.parsed_rules('slow'))

    def rules(self, kind: str) -> List[QueueRule]:
        if kind not in self._rules:
            raise ValidationError(f"Unknown rule kind '{kind}'")
        return list(self._rules[kind])

    def get(self, kind: str, rule_id: str) -> Optional[QueueRule]:
        for rule in self.rules(kind):
            if rule.id == rule_id:
                return rule
        return None

    def rule_set(self) -> RuleSet:
        return RuleSet(stall_rules=tuple(self._rules['stall']), slow_rules=tuple(self._rules['slow']))

    def coverage_gaps(self, kind: str) -> List[IntervalGap]:
        return find_coverage_gaps(self.rules(kind))

    def _check(self, rule: QueueRule, others: List[QueueRule]) -> None:
        rule.validate()
        if rule.enabled and any(o.enabled and o.name == rule.name for o in others):
            raise ValidationError(f"Duplicate {rule.kind} rule names found: {rule.name}")
        result = validate_intervals(rule, others)
        if not result.is_valid:
            raise RuleConflictError(result)

    def add(self, rule: Rule) -> Rule:
        existing = self.rules(rule.kind)
        if any(r.id == rule.id for r in existing):
            raise ValidationError(f"A {rule.kind} rule with id {rule.id} already exists")
        self._check(rule, existing)
        self._rules[rule.kind].append(rule)
        logging.info(f"Added {rule.kind} rule '{rule.name}'")
        return rule

    def update(self, rule: Rule) -> Rule:
        existing = self.rules(rule.kind)
        index = next((i for i, r in enumerate(existing) if r.id == rule.id), None)
        if index is None:
            raise ValidationError(f"No {rule.kind} rule with id {rule.id}")
        others = existing[:index] + existing[index + 1:]
        self._check(rule, others)
        self._rules[rule.kind][index] = rule
        logging.info(f"Updated {rule.kind} rule '{rule.name}'")
        return rule

    def set_enabled(self, kind: str, rule_id: str, enabled: bool) -> Rule:
        rule = self.get(kind, rule_id)
        if rule is None:
            raise ValidationError(f"No {kind} rule with id {rule_id}")
        return self.update(replace(rule, enabled=enabled))

    def delete(self, kind: str, rule_id: str) -> bool:
        before = self.rules(kind)
        kept = [r for r in before if r.id != rule_id]
        if len(kept) == len(before):
            return False
        self._rules[kind] = kept
        logging.info(f"Deleted {kind} rule {rule_id}")
        return True

    def to_config(self, cfg: Dict[str, Any]) -> Dict[str, Any]:
        out = dict(cfg or {})
        qc = dict(out.get('queue_cleaner') or {})
        for kind, section in RULE_SECTIONS.items():
            qc[section] = [_storable(r) for r in self._rules[kind]]
        out['queue_cleaner'] = qc
        return out

    def save(self, path: str) -> None:
        save_yaml(self.to_config(load_yaml(path)), path)


def _storable(rule: QueueRule) -> Dict[str, Any]:
    data = rule.to_dict()
    data.pop('kind', None)
    return {k: v for k, v in data.items() if v is not None}
