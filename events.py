"""Structured pipeline events for log and metrics collectors.

Every event goes to the ``events`` logger as ``event=<name> key=value ...``
with the raw fields attached under ``extra`` so a JSON formatter can pick
them up. Callers that want counters or traces pass an ``on_event`` hook.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

ATTEMPT = "attempt"
RETRY = "retry"
SUCCESS = "success"
DROPPED_RECORD = "dropped_record"
FATAL = "fatal"
PAGE_FAILED = "page_failed"
CACHE_HIT = "cache_hit"
CANCELLED = "cancelled"

EventHook = Callable[[str, dict[str, Any]], None]

LOGGER = logging.getLogger("events")

_WARNING_EVENTS = frozenset({RETRY, DROPPED_RECORD, PAGE_FAILED, CANCELLED})


def emit(name: str, on_event: EventHook | None = None, **fields: Any) -> None:
    """Log one event and forward it to the optional hook."""
    level = logging.ERROR if name == FATAL else logging.WARNING if name in _WARNING_EVENTS else logging.INFO
    if LOGGER.isEnabledFor(level):
        rendered = " ".join(f"{key}={value}" for key, value in fields.items())
        LOGGER.log(level, "event=%s %s", name, rendered, extra={"event": name, "fields": fields})

    if on_event is not None:
        on_event(name, dict(fields))
