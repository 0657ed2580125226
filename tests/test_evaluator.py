import importlib

import pytest


pytestmark = pytest.mark.asyncio

models = importlib.import_module('core.models')
evaluator_mod = importlib.import_module('core.evaluator')
baselines_mod = importlib.import_module('storage.baselines')

MB = 1_000_000


class FakeLedger:
    def __init__(self, fail=False):
        self.strikes = []
        self.resets = []
        self.counts = {}
        self.fail = fail

    async def increment_and_check_limit(self, info_hash, name, max_strikes, kind):
        if self.fail:
            raise OSError('ledger unavailable')
        self.strikes.append((info_hash, kind))
        key = (info_hash, kind)
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key] >= max_strikes

    async def reset(self, info_hash, name, kind):
        self.resets.append((info_hash, kind))
        self.counts.pop((info_hash, kind), None)


def _evaluator(ledger=None):
    return evaluator_mod.RuleEvaluator(ledger=ledger or FakeLedger(), baselines=baselines_mod.ProgressBaselineCache())


def _snap(**kw):
    base = {'hash': 'abc', 'name': 'T', 'completion_percentage': 10.0, 'state': 'stalled'}
    base.update(kw)
    return models.StaticSnapshot(**base)


async def test_no_matching_stall_rule_keeps_torrent():
    ev = _evaluator()
    result = await ev.evaluate_stall_rules(_snap(), [])
    assert result.found is True
    assert result.should_remove is False
    assert result.delete_reason == models.DeleteReason.NONE
    assert ev.ledger.strikes == []


async def test_first_observation_seeds_baseline_without_striking():
    ev = _evaluator()
    rule = models.StallRule(name='stall')
    result = await ev.evaluate_stall_rules(_snap(downloaded_bytes=100), [rule])
    assert result.should_remove is False
    assert ev.ledger.strikes == [] and ev.ledger.resets == []
    assert await ev.baselines.get('abc', models.StrikeType.STALLED) == 100


async def test_minimum_progress_resets_only_once_threshold_is_crossed():
    ev = _evaluator()
    rule = models.StallRule(name='stall', minimum_progress='10 MB')
    for downloaded in (0, 1 * MB, 12 * MB):
        await ev.evaluate_stall_rules(_snap(downloaded_bytes=downloaded), [rule])
    assert ev.ledger.resets == [('abc', models.StrikeType.STALLED)]
    # second observation had too little progress and was struck
    assert ev.ledger.strikes == [('abc', models.StrikeType.STALLED)]


async def test_any_positive_progress_resets_without_minimum():
    ev = _evaluator()
    rule = models.StallRule(name='stall')
    await ev.evaluate_stall_rules(_snap(downloaded_bytes=500), [rule])
    await ev.evaluate_stall_rules(_snap(downloaded_bytes=501), [rule])
    assert ev.ledger.resets == [('abc', models.StrikeType.STALLED)]
    assert ev.ledger.strikes == []


async def test_stall_without_reset_strikes_every_cycle_until_limit():
    ledger = FakeLedger()
    ev = _evaluator(ledger)
    rule = models.StallRule(name='stall', max_strikes=3, reset_strikes_on_progress=False,
                            delete_private_torrents_from_client=True)
    results = [await ev.evaluate_stall_rules(_snap(downloaded_bytes=5), [rule]) for _ in range(3)]
    assert [r.should_remove for r in results] == [False, False, True]
    assert results[0].delete_reason == models.DeleteReason.NONE
    assert results[0].delete_from_client is False
    final = results[-1]
    assert final.delete_reason == models.DeleteReason.STALLED
    assert final.delete_from_client is True
    assert len(ledger.strikes) == 3


async def test_delete_from_client_mirrors_rule_flag_for_public_torrent():
    ev = _evaluator()
    rule = models.StallRule(name='stall', max_strikes=3, reset_strikes_on_progress=False,
                            delete_private_torrents_from_client=True)
    snap = _snap(is_private=False)
    for _ in range(2):
        await ev.evaluate_stall_rules(snap, [rule])
    result = await ev.evaluate_stall_rules(snap, [rule])
    assert result.should_remove is True
    assert result.is_private is False
    assert result.delete_from_client is True


async def test_repeat_evaluation_strikes_once_per_call():
    ev = _evaluator()
    rule = models.StallRule(name='stall', max_strikes=10)
    snap = _snap(downloaded_bytes=42)
    await ev.evaluate_stall_rules(snap, [rule])
    await ev.evaluate_stall_rules(snap, [rule])
    await ev.evaluate_stall_rules(snap, [rule])
    # first call seeds, each later call strikes exactly once
    assert len(ev.ledger.strikes) == 2


async def test_ledger_failure_propagates():
    ev = _evaluator(FakeLedger(fail=True))
    rule = models.StallRule(name='stall', reset_strikes_on_progress=False)
    with pytest.raises(OSError):
        await ev.evaluate_stall_rules(_snap(), [rule])


async def test_min_speed_selects_slow_speed_even_with_max_time():
    ev = _evaluator()
    rule = models.SlowRule(name='slow', min_speed='1 MB', max_time_hours=1)
    snap = _snap(state='downloading', download_speed=10, eta=10 ** 6)
    await ev.evaluate_slow_rules(snap, [rule])
    assert ev.ledger.strikes == [('abc', models.StrikeType.SLOW_SPEED)]


async def test_speed_at_threshold_resets_slow_speed():
    ev = _evaluator()
    rule = models.SlowRule(name='slow', min_speed='1 MB')
    result = await ev.evaluate_slow_rules(_snap(state='downloading', download_speed=MB), [rule])
    assert result.should_remove is False
    assert ev.ledger.resets == [('abc', models.StrikeType.SLOW_SPEED)]
    assert ev.ledger.strikes == []


async def test_speed_reset_disabled_takes_no_action():
    ev = _evaluator()
    rule = models.SlowRule(name='slow', min_speed='1 MB', reset_strikes_on_progress=False)
    await ev.evaluate_slow_rules(_snap(state='downloading', download_speed=2 * MB), [rule])
    assert ev.ledger.resets == [] and ev.ledger.strikes == []


async def test_max_time_selects_slow_time():
    ev = _evaluator()
    rule = models.SlowRule(name='slow', max_time_hours=2, max_strikes=3)
    snap = _snap(state='downloading', download_speed=10, eta=2 * 3600 + 1)
    results = [await ev.evaluate_slow_rules(snap, [rule]) for _ in range(3)]
    assert ev.ledger.strikes == [('abc', models.StrikeType.SLOW_TIME)] * 3
    assert results[-1].should_remove is True
    assert results[-1].delete_reason == models.DeleteReason.SLOW_TIME


async def test_eta_within_limit_resets_slow_time():
    ev = _evaluator()
    rule = models.SlowRule(name='slow', max_time_hours=2)
    await ev.evaluate_slow_rules(_snap(state='downloading', download_speed=10, eta=2 * 3600), [rule])
    assert ev.ledger.resets == [('abc', models.StrikeType.SLOW_TIME)]


async def test_slow_rule_without_speed_or_time_makes_no_ledger_call():
    ev = _evaluator()
    rule = models.SlowRule(name='slow')
    result = await ev.evaluate_slow_rules(_snap(state='downloading', download_speed=1), [rule])
    assert result.should_remove is False
    assert ev.ledger.strikes == [] and ev.ledger.resets == []


async def test_slow_speed_removal_carries_reason_and_client_flag():
    ev = _evaluator()
    rule = models.SlowRule(name='slow', min_speed='500 KB', max_strikes=3, privacy_type='private')
    snap = _snap(state='downloading', download_speed=1000, is_private=True)
    for _ in range(2):
        await ev.evaluate_slow_rules(snap, [rule])
    result = await ev.evaluate_slow_rules(snap, [rule])
    assert result.should_remove is True
    assert result.delete_reason == models.DeleteReason.SLOW_SPEED
    assert result.is_private is True
    assert result.delete_from_client is False
