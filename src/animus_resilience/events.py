"""Fire-and-forget event sinks.

Primitives report notable moments (retry scheduled, circuit opened, item
failed) as ``(event_name, payload)`` pairs. A sink failing never changes
the outcome of the primitive that emitted the event.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Mapping
from typing import Any

logger = logging.getLogger(__name__)

EventSink = Callable[[str, dict[str, Any]], Any]

# Detached awaitables returned by async sinks
_background: set[asyncio.Future[Any]] = set()


def _log_sink_outcome(event: str, future: asyncio.Future[Any]) -> None:
    _background.discard(future)
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.warning("Event sink failed for %s: %s", event, exc)


def emit_event(sink: EventSink | None, event: str, payload: Mapping[str, Any]) -> None:
    """Deliver an event to a sink without letting it interfere."""
    if sink is None:
        return

    try:
        result = sink(event, dict(payload))
    except Exception as exc:
        logger.warning("Event sink failed for %s: %s", event, exc)
        return

    if inspect.isawaitable(result):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No running loop to schedule on
            if inspect.iscoroutine(result):
                result.close()
            logger.debug("Dropped async event %s outside of an event loop", event)
            return
        future = asyncio.ensure_future(result, loop=loop)
        _background.add(future)
        future.add_done_callback(lambda fut: _log_sink_outcome(event, fut))


class LoggingEventSink:
    """Sink that writes each event to a logger as a structured record."""

    def __init__(self, logger_name: str = "animus_resilience.events", level: int = logging.INFO):
        self._logger = logging.getLogger(logger_name)
        self._level = level

    def __call__(self, event: str, payload: dict[str, Any]) -> None:
        self._logger.log(
            self._level,
            "%s %s",
            event,
            payload,
            extra={"event": event, "event_payload": payload},
        )
