"""Append-only events stream."""

from __future__ import annotations

import json
import threading
from collections import deque
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from typing import Any, Callable

from ..utils import now_utc_iso, serialize

RECENT_EVENTS_LIMIT = 200

EventListener = Callable[[dict[str, Any]], None]


@dataclass
class EventWriter:
    """Writes one JSON object per line; a writer without a path only keeps recent events.

    Emitting never raises because of a sink: a failed file write or a raising
    listener is recorded in ``sink_errors`` and the event is still returned.
    """

    path: Path | None
    session_id: str
    sink_errors: list[str] = field(default_factory=list, repr=False, init=False)
    _recent: deque[dict[str, Any]] = field(
        default_factory=lambda: deque(maxlen=RECENT_EVENTS_LIMIT), repr=False, init=False
    )
    _listeners: list[EventListener] = field(default_factory=list, repr=False, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, init=False)

    def emit(self, event_type: str, **payload: Any) -> dict[str, Any]:
        event: dict[str, Any] = {
            "type": event_type,
            "session_id": self.session_id,
            "ts": now_utc_iso(),
        }
        event.update(serialize(payload))
        with self._lock:
            self._recent.append(event)
            if self.path is not None:
                try:
                    self.path.parent.mkdir(parents=True, exist_ok=True)
                    with self.path.open("a", encoding="utf-8") as handle:
                        handle.write(f"{json.dumps(event)}\n")
                except OSError as exc:
                    self.sink_errors.append(f"{event_type}: write failed: {exc}")
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception as exc:
                with self._lock:
                    self.sink_errors.append(f"{event_type}: listener failed: {type(exc).__name__}: {exc}")
        return event

    def add_listener(self, listener: EventListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def recent(self, event_type: str | None = None) -> list[dict[str, Any]]:
        with self._lock:
            events = list(self._recent)
        if event_type is None:
            return events
        return [event for event in events if event["type"] == event_type]
