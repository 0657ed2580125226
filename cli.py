import argparse
import asyncio
import json
import sys
from typing import Any, Dict, List

import aiohttp

from core.config import (
    ConfigAccessor,
    RULE_SECTIONS,
    baseline_file_path,
    config_path,
    load_config,
    load_yaml,
    rule_problems,
    strike_file_path,
)
from core.events import EventBus, configure_logging
from core.intervals import find_coverage_gaps
from core.models import DeleteReason, StaticSnapshot
from core.queue_check import build_checker
from integrations.clients import should_remove_from_queue
from storage.baselines import ProgressBaselineCache
from storage.strikes import StrikeLedger, load_strikes, save_strikes, split_strike_key


def _load_cfg() -> Dict[str, Any]:
    return load_config(config_path())


def _ledger(cfg: Dict[str, Any], events: Any = None) -> StrikeLedger:
    return StrikeLedger.from_file(strike_file_path(), ttl_seconds=ConfigAccessor(cfg).strike_ttl_seconds(), events=events)


def _baselines(cfg: Dict[str, Any]) -> ProgressBaselineCache:
    return ProgressBaselineCache.from_file(baseline_file_path(), ttl_seconds=ConfigAccessor(cfg).strike_ttl_seconds())


def _events(cfg: Dict[str, Any]) -> EventBus:
    acc = ConfigAccessor(cfg)
    return EventBus(structured_logs=acc.structured_logs(), debug_logging=acc.debug_logging())


def cmd_list(args):
    data = load_strikes(strike_file_path(), debug_logging=False)
    print(json.dumps(data, indent=2))


def cmd_clear(args):
    if args.key:
        d = load_strikes(strike_file_path(), debug_logging=False)
        if args.key in d:
            d.pop(args.key, None)
            save_strikes(d, strike_file_path())
            print(f"Cleared {args.key}")
        else:
            print("Key not found")
    else:
        save_strikes({}, strike_file_path())
        print("Cleared all strikes")


def cmd_status(args):
    data = load_strikes(strike_file_path(), debug_logging=False)
    by_kind: Dict[str, int] = {}
    hashes = set()
    unknown = 0
    for k, v in (data or {}).items():
        parsed = split_strike_key(k)
        if parsed is None:
            unknown += 1
            continue
        kind, info_hash = parsed
        by_kind[kind.value] = by_kind.get(kind.value, 0) + 1
        hashes.add(info_hash)
    print(
        json.dumps(
            {
                "strike_file": strike_file_path(),
                "entries": sum(by_kind.values()),
                "torrents": len(hashes),
                "by_kind": by_kind,
                "unrecognized_keys": unknown,
            },
            indent=2,
        )
    )


def cmd_validate(args) -> int:
    cfg = _load_cfg()
    problems = rule_problems(cfg)
    print(json.dumps({"valid": not problems, "problems": problems}, indent=2))
    return 1 if problems else 0


def cmd_gaps(args):
    acc = ConfigAccessor(_load_cfg())
    kinds = [args.kind] if getattr(args, 'kind', None) else list(RULE_SECTIONS)
    out = {kind: [g.to_dict() for g in find_coverage_gaps(acc.rules(kind))] for kind in kinds}
    print(json.dumps(out, indent=2))


async def _simulate(cfg: Dict[str, Any], snapshot: StaticSnapshot, files_state, repeat: int) -> List[Dict[str, Any]]:
    events = _events(cfg)
    ledger = _ledger(cfg, events)
    baselines = _baselines(cfg)
    checker = build_checker(cfg, ledger, baselines=baselines, events=events)
    results = []
    for _ in range(max(1, repeat)):
        result = await checker.check(snapshot, files_state)
        results.append(result.to_dict())
        if result.should_remove:
            break
    ledger.save(strike_file_path())
    baselines.save(baseline_file_path())
    return results


def cmd_simulate(args):
    with open(args.snapshot_json, 'r') as f:
        data = json.load(f)
    snapshot = StaticSnapshot.from_dict(data)
    files_state = DeleteReason(data['files_state']) if data.get('files_state') else None
    cfg = _load_cfg()
    results = asyncio.run(_simulate(cfg, snapshot, files_state, int(getattr(args, 'repeat', 1) or 1)))
    print(json.dumps({"hash": snapshot.hash, "results": results}, indent=2))


async def _check(cfg: Dict[str, Any], hashes: List[str]) -> Dict[str, Any]:
    events = _events(cfg)
    ledger = _ledger(cfg, events)
    baselines = _baselines(cfg)
    checker = build_checker(cfg, ledger, baselines=baselines, events=events)
    out: Dict[str, Any] = {}
    async with aiohttp.ClientSession() as session:
        for info_hash in hashes:
            result = await should_remove_from_queue(session, info_hash, cfg, checker)
            out[info_hash] = result.to_dict()
    ledger.save(strike_file_path())
    baselines.save(baseline_file_path())
    return out


def cmd_check(args):
    cfg = _load_cfg()
    print(json.dumps(asyncio.run(_check(cfg, list(args.hashes))), indent=2))


def main():
    ap = argparse.ArgumentParser(description="Torrent Queue Janitor CLI")
    ap.add_argument('--debug', action='store_true', help='Enable debug logging')
    sub = ap.add_subparsers(dest='cmd')

    p_list = sub.add_parser('list', help='List strike records')
    p_list.set_defaults(func=cmd_list)

    p_clear = sub.add_parser('clear', help='Clear strikes (all or one key)')
    p_clear.add_argument('--key', help='Strike key to clear (e.g., stalled:<hash>)')
    p_clear.set_defaults(func=cmd_clear)

    p_status = sub.add_parser('status', help='Show strike summary')
    p_status.set_defaults(func=cmd_status)

    p_val = sub.add_parser('validate', help='Validate configured stall and slow rules')
    p_val.set_defaults(func=cmd_validate)

    p_gaps = sub.add_parser('gaps', help='Show completion ranges not covered by any rule')
    p_gaps.add_argument('--kind', choices=sorted(RULE_SECTIONS), help='Only one rule kind')
    p_gaps.set_defaults(func=cmd_gaps)

    p_sim = sub.add_parser('simulate', help='Run the queue checks on a snapshot JSON')
    p_sim.add_argument('snapshot_json', help='Path to snapshot JSON file')
    p_sim.add_argument('--repeat', type=int, default=1, help='Number of polling cycles to simulate')
    p_sim.set_defaults(func=cmd_simulate)

    p_check = sub.add_parser('check', help='Check torrents in the configured download clients')
    p_check.add_argument('hashes', nargs='+', help='Torrent hashes')
    p_check.set_defaults(func=cmd_check)

    args = ap.parse_args()
    if not hasattr(args, 'func'):
        ap.print_help()
        sys.exit(1)
    configure_logging(args.debug or ConfigAccessor(load_yaml(config_path())).debug_logging())
    rc = args.func(args)
    sys.exit(rc or 0)


if __name__ == '__main__':
    main()
