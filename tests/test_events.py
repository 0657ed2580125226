import importlib
import json
import logging

import pytest


pytestmark = pytest.mark.asyncio


class FakeLogger:
    def __init__(self):
        self.lines = []

    def info(self, msg):
        self.lines.append(str(msg))


async def test_event_bus_emit_logs_json_and_notifies_subscribers():
    events = importlib.import_module('core.events')
    fake_logger = FakeLogger()
    bus = events.EventBus(structured_logs=True, logger=fake_logger)

    seen = []

    async def subscriber(event, fields):
        seen.append((event, fields))

    bus.subscribe(subscriber)
    await bus.emit('strike', hash='abc', name='T', reason='stalled', count=2)

    payload = json.loads(fake_logger.lines[0])
    assert payload == {'event': 'strike', 'count': 2, 'hash': 'abc', 'name': 'T', 'reason': 'stalled'}
    assert seen == [('strike', {'count': 2, 'hash': 'abc', 'name': 'T', 'reason': 'stalled'})]


async def test_event_bus_plain_lines_and_omitted_fields():
    events = importlib.import_module('core.events')
    fake_logger = FakeLogger()
    bus = events.EventBus(structured_logs=False, logger=fake_logger)
    await bus.emit('remove', hash='abc')
    assert fake_logger.lines == ["remove: {'hash': 'abc'}"]


async def test_subscriber_errors_propagate():
    events = importlib.import_module('core.events')
    bus = events.EventBus(structured_logs=True, logger=FakeLogger())

    async def broken(event, fields):
        raise RuntimeError('subscriber failed')

    bus.subscribe(broken)
    with pytest.raises(RuntimeError):
        await bus.emit('strike', hash='abc')


async def test_configure_logging_isolates_event_logger():
    events = importlib.import_module('core.events')
    event_log = events.configure_logging(debug_logging=True)
    assert event_log.name == events.EVENT_LOGGER_NAME
    assert event_log.propagate is False
    assert len(event_log.handlers) == 1
    assert logging.getLogger().level == logging.DEBUG
    events.configure_logging(debug_logging=False)
    assert len(event_log.handlers) == 1
    assert event_log.level == logging.INFO
