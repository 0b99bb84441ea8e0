"""Pipeline events, pluggable event sinks, and timing helpers."""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog


@dataclass(slots=True)
class PipelineEvent:
    """One structured observation emitted by a pipeline stage."""

    name: str
    payload: dict[str, Any]
    timestamp_utc: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )


EventSink = Callable[[PipelineEvent], None]


def emit(sink: EventSink | None, name: str, **payload: Any) -> None:
    """Send an event to `sink` if one was injected."""
    if sink is None:
        return
    sink(PipelineEvent(name=name, payload=payload))


class EventRecorder:
    """In-memory sink keeping the most recent events.

    Used by tests to assert on pipeline decisions and by the API to serve
    `/events` for debugging routing and selection.
    """

    def __init__(self, max_events: int = 1000) -> None:
        self._events: deque[PipelineEvent] = deque(maxlen=max_events)

    def __call__(self, event: PipelineEvent) -> None:
        self._events.append(event)

    @property
    def events(self) -> list[PipelineEvent]:
        return list(self._events)

    def named(self, name: str) -> list[PipelineEvent]:
        return [event for event in self._events if event.name == name]

    def list_recent(self, limit: int = 50) -> list[PipelineEvent]:
        if limit <= 0:
            return []
        return list(self._events)[-limit:]

    def clear(self) -> None:
        self._events.clear()


class StructlogEventSink:
    """Forwards pipeline events to a structlog logger at debug level."""

    def __init__(self, logger: Any | None = None) -> None:
        self._logger = logger or structlog.get_logger("repo_rag.pipeline")

    def __call__(self, event: PipelineEvent) -> None:
        self._logger.debug(event.name, **event.payload)


def fan_out(*sinks: EventSink | None) -> EventSink:
    """Combine several sinks into one."""
    active = [sink for sink in sinks if sink is not None]

    def _sink(event: PipelineEvent) -> None:
        for sink in active:
            sink(event)

    return _sink


class Timer:
    """Simple context timer used around pipeline stages."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
