from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from ..constants import EVENT_HISTORY_LIMIT
from ..task_engine.model import new_id, now_iso

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    TASK_CREATED = "task:created"
    TASK_UPDATED = "task:updated"
    TASK_DELETED = "task:deleted"
    TASK_ASSIGNED = "task:assigned"
    TASK_COMPLETED = "task:completed"
    TASK_FAILED = "task:failed"
    TASK_ERROR = "task:error"
    PROJECT_CREATED = "project:created"
    PROJECT_UPDATED = "project:updated"
    PROJECT_DELETED = "project:deleted"
    PROJECT_DECOMPOSED = "project:decomposed"
    PROJECT_REFINED = "project:refined"


@dataclass(frozen=True)
class Event:
    event_type: EventType
    entity_id: str
    payload: dict[str, Any]
    id: str = field(default_factory=lambda: new_id("evt"))
    ts: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ts": self.ts,
            "type": self.event_type.value,
            "entity_id": self.entity_id,
            "payload": self.payload,
        }


Subscriber = Callable[[Event], None]


class EventBus:
    """Publish engine events to subscribers and keep a bounded history.

    Subscribers run synchronously inside :meth:`emit`; an exception raised by
    one is logged and never reaches the emitter.
    """

    def __init__(self, history_limit: int = EVENT_HISTORY_LIMIT) -> None:
        self._lock = threading.Lock()
        self._history: deque[Event] = deque(maxlen=max(1, history_limit))
        self._subscribers: dict[Optional[EventType], list[Subscriber]] = {}

    def subscribe(self, handler: Subscriber, event_type: Optional[EventType] = None) -> None:
        """Register *handler* for *event_type*, or for every event when None."""
        with self._lock:
            self._subscribers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, handler: Subscriber, event_type: Optional[EventType] = None) -> None:
        with self._lock:
            handlers = self._subscribers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def emit(self, event_type: EventType, entity_id: str, payload: dict[str, Any]) -> Event:
        event = Event(event_type=event_type, entity_id=entity_id, payload=payload)
        with self._lock:
            self._history.append(event)
            handlers = list(self._subscribers.get(event_type, [])) + list(self._subscribers.get(None, []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Event subscriber failed for %s (%s)", event_type.value, entity_id)
        return event

    def recent(self, limit: int = 100, event_type: Optional[EventType] = None) -> list[Event]:
        if limit < 1:
            return []
        with self._lock:
            events = [e for e in self._history if event_type is None or e.event_type == event_type]
        return events[-limit:]
