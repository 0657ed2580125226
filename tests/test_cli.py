import importlib
import json
import sys

import pytest


def _write(path, data):
    with open(path, 'w') as f:
        f.write(data)


RULES_YAML = (
    'queue_cleaner:\n'
    '  stall_rules:\n'
    '    - name: public-stall\n'
    '      max_strikes: 3\n'
    '      reset_strikes_on_progress: false\n'
    '  slow_rules:\n'
    '    - name: slow\n'
    '      min_speed: 100 KB\n'
    '      privacy_type: both\n'
    '      max_completion_percentage: 50\n'
)


@pytest.fixture
def paths(monkeypatch, tmp_path):
    strikes_path = tmp_path / 'strikes.json'
    cfg_path = tmp_path / 'config.yaml'
    monkeypatch.setenv('STRIKE_FILE_PATH', str(strikes_path))
    monkeypatch.setenv('CONFIG_PATH', str(cfg_path))
    monkeypatch.delenv('BASELINE_FILE_PATH', raising=False)
    return strikes_path, cfg_path


def test_cli_list_and_clear_all_and_key(capsys, paths):
    cli = importlib.import_module('cli')
    strikes_path, _ = paths
    _write(strikes_path, json.dumps({'stalled:abc': {'count': 2}, 'slow_speed:def': {'count': 1}}))

    cli.cmd_list(type('N', (), {})())
    out = json.loads(capsys.readouterr().out)
    assert 'stalled:abc' in out

    cli.cmd_clear(type('N', (), {'key': 'stalled:abc'})())
    out = json.loads(open(strikes_path).read())
    assert 'stalled:abc' not in out and 'slow_speed:def' in out

    cli.cmd_clear(type('N', (), {'key': None})())
    out = json.loads(open(strikes_path).read())
    assert out == {}


def test_cli_status(capsys, paths):
    cli = importlib.import_module('cli')
    strikes_path, _ = paths
    _write(strikes_path, json.dumps({
        'stalled:abc': {'count': 2},
        'slow_time:abc': {'count': 1},
        'stalled:def': {'count': 1},
        'Sonarr:1': {'count': 2},
    }))
    cli.cmd_status(type('N', (), {})())
    out = json.loads(capsys.readouterr().out)
    assert out['entries'] == 3
    assert out['torrents'] == 2
    assert out['by_kind'] == {'stalled': 2, 'slow_time': 1}
    assert out['unrecognized_keys'] == 1


def test_cli_validate_and_gaps(capsys, paths):
    cli = importlib.import_module('cli')
    _, cfg_path = paths
    _write(cfg_path, RULES_YAML)

    assert cli.cmd_validate(type('N', (), {})()) == 0
    out = json.loads(capsys.readouterr().out)
    assert out == {'valid': True, 'problems': []}

    cli.cmd_gaps(type('N', (), {'kind': 'slow'})())
    out = json.loads(capsys.readouterr().out)
    assert out == {'slow': [
        {'privacy_type': 'public', 'start': 50.0, 'end': 100.0},
        {'privacy_type': 'private', 'start': 50.0, 'end': 100.0},
    ]}


def test_cli_validate_reports_overlap(capsys, paths):
    cli = importlib.import_module('cli')
    _, cfg_path = paths
    _write(cfg_path, RULES_YAML + '    - name: slow-2\n      max_time_hours: 4\n')
    assert cli.cmd_validate(type('N', (), {})()) == 1
    out = json.loads(capsys.readouterr().out)
    assert out['valid'] is False
    assert any('overlapping' in p for p in out['problems'])


def test_cli_simulate(capsys, paths, tmp_path):
    cli = importlib.import_module('cli')
    strikes_path, cfg_path = paths
    _write(cfg_path, RULES_YAML)
    snap_path = tmp_path / 'snapshot.json'
    _write(snap_path, json.dumps({'hash': 'ABC', 'name': 'Stuck', 'state': 'stalled', 'completion_percentage': 70}))

    cli.cmd_simulate(type('N', (), {'snapshot_json': str(snap_path), 'repeat': 5})())
    out = json.loads(capsys.readouterr().out)
    assert out['hash'] == 'ABC'
    assert [r['should_remove'] for r in out['results']] == [False, False, True]
    assert out['results'][-1]['delete_reason'] == 'stalled'
    saved = json.loads(open(strikes_path).read())
    assert 'stalled:abc' not in saved


def test_cli_simulate_strikes_across_separate_runs(capsys, paths, tmp_path):
    cli = importlib.import_module('cli')
    strikes_path, cfg_path = paths
    _write(cfg_path, 'queue_cleaner:\n  stall_rules:\n    - name: everything\n      privacy_type: both\n')
    snap_path = tmp_path / 'snapshot.json'
    _write(snap_path, json.dumps({'hash': 'ABC', 'state': 'stalled', 'downloaded_bytes': 500}))
    baselines_path = tmp_path / 'strikes.baselines.json'

    runs = []
    for _ in range(4):
        cli.cmd_simulate(type('N', (), {'snapshot_json': str(snap_path), 'repeat': 1})())
        runs.append([r['should_remove'] for r in json.loads(capsys.readouterr().out)['results']])
        if len(runs) == 2:
            assert json.loads(open(baselines_path).read()) == {'stalled:abc': 500}
            assert json.loads(open(strikes_path).read())['stalled:abc']['count'] == 1
    assert runs == [[False], [False], [False], [True]]
    assert json.loads(open(strikes_path).read()) == {}
    assert json.loads(open(baselines_path).read()) == {}


def test_baseline_file_path_follows_strike_file(monkeypatch, paths, tmp_path):
    cfgmod = importlib.import_module('core.config')
    assert cfgmod.baseline_file_path() == str(tmp_path / 'strikes.baselines.json')
    monkeypatch.setenv('BASELINE_FILE_PATH', str(tmp_path / 'progress.json'))
    assert cfgmod.baseline_file_path() == str(tmp_path / 'progress.json')


def test_cli_simulate_files_skipped(capsys, paths, tmp_path):
    cli = importlib.import_module('cli')
    _, cfg_path = paths
    _write(cfg_path, RULES_YAML)
    snap_path = tmp_path / 'snapshot.json'
    _write(snap_path, json.dumps({'hash': 'ABC', 'state': 'downloading', 'files_state': 'all_files_skipped'}))

    cli.cmd_simulate(type('N', (), {'snapshot_json': str(snap_path), 'repeat': 1})())
    out = json.loads(capsys.readouterr().out)
    assert out['results'] == [{
        'found': True,
        'should_remove': True,
        'delete_reason': 'all_files_skipped',
        'is_private': False,
        'delete_from_client': True,
    }]


def test_cli_main_exit_codes(monkeypatch, paths):
    cli = importlib.import_module('cli')
    _, cfg_path = paths
    _write(cfg_path, 'queue_cleaner:\n  downloading_metadata_max_strikes: 1\n')
    monkeypatch.setattr(sys, 'argv', ['queue-janitor', 'validate'])
    with pytest.raises(SystemExit) as exc:
        cli.main()
    assert exc.value.code == 1

    monkeypatch.setattr(sys, 'argv', ['queue-janitor'])
    with pytest.raises(SystemExit) as exc:
        cli.main()
    assert exc.value.code == 1
