"""Typed workflow events delivered in the order the milestones happened."""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from jobpilot.log import get_logger
from jobpilot.models import utcnow

log = get_logger(__name__)


class EventType(str, Enum):
    DISCOVERED = "discovered"
    MATCHED = "matched"
    CONFIRMATION_REQUIRED = "confirmation_required"
    APPLICATION_START = "application_start"
    APPLICATION_COMPLETE = "application_complete"
    ERROR = "error"
    PROGRESS = "progress"
    SESSION_FINISHED = "session_finished"


@dataclass(frozen=True)
class WorkflowEvent:
    type: EventType
    session_id: str
    seq: int
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)


Listener = Callable[[WorkflowEvent], None]


class EventChannel:
    """Ordered buffer plus synchronous listeners.

    Listeners run inline on the emitting thread; one that raises is logged
    and does not stop the workflow or the other listeners.
    """

    def __init__(self, session_id: str = "") -> None:
        self.session_id = session_id
        self._events: list[WorkflowEvent] = []
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()
        self._seq = 0

    def subscribe(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def emit(self, type: EventType, **payload: Any) -> WorkflowEvent:
        with self._lock:
            self._seq += 1
            event = WorkflowEvent(type, self.session_id, self._seq, payload)
            self._events.append(event)
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                log.exception("Event listener failed on %s", type.value)
        return event

    def events(self, type: EventType | None = None) -> list[WorkflowEvent]:
        with self._lock:
            return [e for e in self._events if type is None or e.type is type]

    def drain(self) -> list[WorkflowEvent]:
        """Return and clear everything buffered so far."""
        with self._lock:
            out, self._events = self._events, []
        return out
