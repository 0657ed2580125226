from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional


EVENT_LOGGER_NAME = 'queue_janitor.events'
LOG_FORMAT = '%(asctime)s [%(levelname)s]: %(message)s'

Subscriber = Callable[[str, Dict[str, Any]], Awaitable[None]]


def configure_logging(debug_logging: bool = False) -> logging.Logger:
    level = logging.DEBUG if debug_logging else logging.INFO
    logging.basicConfig(
        format=LOG_FORMAT,
        level=level,
        handlers=[logging.StreamHandler()],
        force=True,
    )

    # Event lines are emitted once, on their own handler
    event_log = logging.getLogger(EVENT_LOGGER_NAME)
    event_log.setLevel(level)
    event_log.propagate = False
    for h in list(event_log.handlers):
        event_log.removeHandler(h)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    event_log.addHandler(handler)
    return event_log


class EventBus:
    def __init__(
        self,
        *,
        structured_logs: bool,
        debug_logging: bool = False,
        logger: Optional[Any] = None,
    ) -> None:
        self.structured_logs = structured_logs
        self.debug_logging = debug_logging
        self.logger = logger if logger is not None else logging.getLogger(EVENT_LOGGER_NAME)
        self.subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> None:
        self.subscribers.append(callback)

    def log(self, event: str, **fields) -> None:
        payload = {"event": event, **fields}
        if self.structured_logs:
            self.logger.info(json.dumps(payload, ensure_ascii=False, default=str))
        else:
            self.logger.info(f"{event}: {fields}")

    async def emit(
        self,
        event: str,
        *,
        hash: Optional[str] = None,
        name: Optional[str] = None,
        reason: Optional[str] = None,
        **fields,
    ) -> None:
        if hash is not None:
            fields.setdefault('hash', hash)
        if name is not None:
            fields.setdefault('name', name)
        if reason is not None:
            fields.setdefault('reason', reason)

        self.log(event, **fields)

        for callback in list(self.subscribers):
            await callback(event, dict(fields))
