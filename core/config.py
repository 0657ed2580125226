from __future__ import annotations

import logging
import os
import uuid
from typing import Any, Dict, List, Optional

import yaml

from core.intervals import find_coverage_gaps, validate_intervals
from core.models import (
    RuleSet,
    SlowRule,
    StallRule,
    ValidationError,
    rule_from_dict,
)


DEFAULT_CONFIG_PATH = '/app/config.yaml'
DEFAULT_STRIKE_FILE_PATH = '/app/data/strikes.json'

RULE_SECTIONS = {
    'stall': 'stall_rules',
    'slow': 'slow_rules',
}


def load_yaml(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        return {}
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        logging.error(f"Config file {path} is not valid YAML: {e}")
        return {}


def save_yaml(data: Dict[str, Any], path: str) -> None:
    tmp_path = path + '.tmp'
    with open(tmp_path, 'w') as f:
        yaml.safe_dump(data, f, sort_keys=False)
    os.replace(tmp_path, path)


def get_env_var(key: str, default: Any = None, cast_to=str) -> Any:
    value = os.environ.get(key)
    if value is not None:
        return cast_to(value)
    return default


def env_flag(value: str) -> bool:
    return str(value).lower() in ['true', '1', 'yes']


def config_path() -> str:
    return get_env_var('CONFIG_PATH', DEFAULT_CONFIG_PATH)


def strike_file_path() -> str:
    return get_env_var('STRIKE_FILE_PATH', DEFAULT_STRIKE_FILE_PATH)


def baseline_file_path() -> str:
    # defaults to a sibling of the strike file
    return get_env_var('BASELINE_FILE_PATH', os.path.splitext(strike_file_path())[0] + '.baselines.json')


class ConfigAccessor:
    def __init__(self, cfg: Dict[str, Any]) -> None:
        self.cfg = cfg if isinstance(cfg, dict) else {}

    # General settings accessor
    def general(self, key: str, default: Any = None) -> Any:
        gen = self.cfg.get('general') if isinstance(self.cfg.get('general'), dict) else {}
        return gen.get(key, default)

    def debug_logging(self) -> bool:
        return get_env_var('DEBUG_LOGGING', bool(self.general('debug_logging', False)), cast_to=env_flag)

    def structured_logs(self) -> bool:
        return get_env_var('STRUCTURED_LOGS', bool(self.general('structured_logs', True)), cast_to=env_flag)

    def strike_ttl_seconds(self) -> float:
        return max(0.0, float(self.general('strike_ttl_minutes', 0) or 0)) * 60.0

    # Clients
    def clients(self) -> Dict[str, Any]:
        return self.cfg.get('clients') if isinstance(self.cfg.get('clients'), dict) else {}

    def queue_cleaner(self) -> Dict[str, Any]:
        qc = self.cfg.get('queue_cleaner')
        return qc if isinstance(qc, dict) else {}

    def ignored_downloads(self) -> List[str]:
        out: List[str] = []
        for source in (self.general('ignored_downloads') or [], self.queue_cleaner().get('ignored_downloads') or []):
            for entry in source if isinstance(source, list) else [source]:
                text = str(entry).strip()
                if text and text not in out:
                    out.append(text)
        return out

    def downloading_metadata_max_strikes(self) -> int:
        try:
            return max(0, int(self.queue_cleaner().get('downloading_metadata_max_strikes', 0) or 0))
        except (TypeError, ValueError):
            return 0

    def parsed_rules(self, kind: str) -> list:
        """Every well-formed rule entry of ``kind``, validated or not."""
        raw = self.queue_cleaner().get(RULE_SECTIONS[kind])
        out = []
        for entry in raw if isinstance(raw, list) else []:
            if not isinstance(entry, dict):
                logging.warning(f"Ignoring malformed {kind} rule entry: {entry!r}")
                continue
            try:
                out.append(rule_from_dict(entry, kind=kind))
            except (TypeError, ValueError) as e:
                logging.warning(f"Ignoring {kind} rule '{entry.get('name')}': {e}")
        return out

    def rules(self, kind: str) -> list:
        out = []
        for rule in self.parsed_rules(kind):
            try:
                rule.validate()
            except ValidationError as e:
                logging.warning(f"Ignoring invalid {kind} rule '{rule.name}': {e}")
                continue
            out.append(rule)
        return out

    def stall_rules(self) -> List[StallRule]:
        return self.rules('stall')

    def slow_rules(self) -> List[SlowRule]:
        return self.rules('slow')

    def rule_set(self) -> RuleSet:
        return RuleSet(stall_rules=tuple(self.stall_rules()), slow_rules=tuple(self.slow_rules()))


def _stable_rule_id(kind: str, name: Any) -> str:
    return uuid.uuid5(uuid.NAMESPACE_URL, f"queue-janitor/{kind}/{name}").hex


def sanitize_config(cfg: Dict[str, Any], debug_logging: bool = False) -> Dict[str, Any]:
    if not isinstance(cfg, dict):
        return {}
    out = dict(cfg)

    def _nz(v, cast, default):
        try:
            return cast(v)
        except (TypeError, ValueError):
            return default

    def _flag(v, default):
        if v is None:
            return default
        if isinstance(v, str):
            return env_flag(v)
        return bool(v)

    gen = out.get('general') if isinstance(out.get('general'), dict) else {}
    if gen:
        gen['strike_ttl_minutes'] = max(0, _nz(gen.get('strike_ttl_minutes', 0), float, 0))
        out['general'] = gen

    qc = dict(out.get('queue_cleaner')) if isinstance(out.get('queue_cleaner'), dict) else {}
    if qc:
        qc['downloading_metadata_max_strikes'] = max(0, _nz(qc.get('downloading_metadata_max_strikes', 0), int, 0))
        ign = qc.get('ignored_downloads')
        if ign is not None and not isinstance(ign, list):
            qc['ignored_downloads'] = [str(ign)]

        for kind, section in RULE_SECTIONS.items():
            raw = qc.get(section)
            if raw is None:
                continue
            cleaned = []
            for entry in raw if isinstance(raw, list) else []:
                if not isinstance(entry, dict):
                    if debug_logging:
                        logging.warning(f'Ignoring invalid {kind} rule entry: {entry}')
                    continue
                r = dict(entry)
                r['id'] = str(r.get('id') or _stable_rule_id(kind, r.get('name')))
                r['enabled'] = _flag(r.get('enabled'), True)
                r['max_strikes'] = _nz(r.get('max_strikes', 3), int, 3)
                r['privacy_type'] = str(r.get('privacy_type') or 'public').lower()
                r['min_completion_percentage'] = _nz(r.get('min_completion_percentage', 0), float, 0.0)
                r['max_completion_percentage'] = _nz(r.get('max_completion_percentage', 100), float, 100.0)
                r['reset_strikes_on_progress'] = _flag(r.get('reset_strikes_on_progress'), True)
                r['delete_private_torrents_from_client'] = _flag(r.get('delete_private_torrents_from_client'), False)
                if kind == 'slow':
                    r['max_time_hours'] = _nz(r.get('max_time_hours', 0), float, 0.0)
                cleaned.append(r)
            qc[section] = cleaned
        out['queue_cleaner'] = qc
    return out


def rule_problems(cfg: Dict[str, Any]) -> List[str]:
    """Every validation problem in the configured rule set, as messages."""
    acc = ConfigAccessor(cfg)
    problems: List[str] = []

    strikes = acc.downloading_metadata_max_strikes()
    if 0 < strikes < 3:
        problems.append('the minimum value for downloading metadata max strikes must be 3')

    for kind in RULE_SECTIONS:
        rules = acc.parsed_rules(kind)
        seen = set()
        for rule in rules:
            try:
                rule.validate()
            except ValidationError as e:
                problems.append(f"{kind} rule '{rule.name}': {e}")
            if rule.enabled:
                if rule.name in seen:
                    problems.append(f'Duplicate {kind} rule name found: {rule.name}')
                seen.add(rule.name)
        for i, rule in enumerate(rules):
            # compare each pair once
            result = validate_intervals(rule, rules[:i])
            if not result.is_valid:
                problems.append(f"{kind} rule '{rule.name}': {result.error_message}")
    return problems


def validate_config(cfg: Dict[str, Any], debug_logging: bool = False) -> List[str]:
    problems = rule_problems(cfg)

    clients = ConfigAccessor(cfg).clients()
    for name, ccfg in clients.items():
        if not isinstance(ccfg, dict):
            continue
        if not ccfg.get('url') and any(ccfg.get(k) for k in ('username', 'password')):
            problems.append(f"Client {name} has credentials but no url; it will be skipped.")

    acc = ConfigAccessor(cfg)
    for kind in RULE_SECTIONS:
        rules = acc.rules(kind)
        if not rules and not debug_logging:
            continue
        for gap in find_coverage_gaps(rules):
            problems.append(
                f"No {kind} rule covers {gap.privacy_type.value} torrents between {gap.start:g}% and {gap.end:g}%"
            )

    for p in problems:
        logging.warning(p)
    return problems


def load_config(path: Optional[str] = None, debug_logging: bool = False) -> Dict[str, Any]:
    cfg = sanitize_config(load_yaml(path or config_path()), debug_logging=debug_logging)
    validate_config(cfg, debug_logging=debug_logging)
    return cfg
