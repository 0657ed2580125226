import importlib
import pytest


pytestmark = pytest.mark.asyncio

clients = importlib.import_module('integrations.clients')
models = importlib.import_module('core.models')


class DummySession:
    pass


def _fake_check(name, calls, found):
    async def check(session, ccfg, info_hash, checker):
        calls.append((name, ccfg.get('url'), info_hash))
        return models.DecisionResult(found=found, should_remove=found)
    return check


async def test_first_client_that_knows_the_hash_decides(monkeypatch):
    calls = []
    monkeypatch.setattr(clients, 'CLIENT_CHECKS', (
        ('qbittorrent', _fake_check('qbittorrent', calls, False)),
        ('transmission', _fake_check('transmission', calls, True)),
        ('deluge', _fake_check('deluge', calls, True)),
    ))
    cfg = {'clients': {
        'qbittorrent': {'url': 'http://qb'},
        'transmission': {'url': 'http://tr'},
        'deluge': {'url': 'http://dl'},
    }}
    result = await clients.should_remove_from_queue(DummySession(), 'HASH', cfg, checker=None)
    assert result.found is True and result.should_remove is True
    assert [c[0] for c in calls] == ['qbittorrent', 'transmission']


async def test_clients_without_url_are_skipped(monkeypatch):
    calls = []
    monkeypatch.setattr(clients, 'CLIENT_CHECKS', (
        ('qbittorrent', _fake_check('qbittorrent', calls, True)),
        ('utorrent', _fake_check('utorrent', calls, True)),
    ))
    cfg = {'clients': {'qbittorrent': {'username': 'u'}, 'utorrent': {'url': 'http://ut'}}}
    assert list(clients.configured_clients(cfg)) == ['utorrent']
    await clients.should_remove_from_queue(DummySession(), 'HASH', cfg, checker=None)
    assert calls == [('utorrent', 'http://ut', 'HASH')]


async def test_no_clients_or_unknown_hash_is_not_found(monkeypatch):
    result = await clients.should_remove_from_queue(DummySession(), 'HASH', {}, checker=None)
    assert result.found is False

    calls = []
    monkeypatch.setattr(clients, 'CLIENT_CHECKS', (('deluge', _fake_check('deluge', calls, False)),))
    result = await clients.should_remove_from_queue(DummySession(), 'HASH', {'clients': {'deluge': {'url': 'x'}}}, None)
    assert result.found is False and calls
