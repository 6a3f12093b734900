"""Session event bus.

The state machine and controller publish phase changes, clip errors and exit
requests here; the CLI and tests subscribe.

Usage:
    emitter = SessionEventEmitter()
    emitter.subscribe(SessionEventType.PHASE_CHANGED, lambda evt: print(evt.data["phase"]))
    emitter.emit(SessionEvent(SessionEventType.PHASE_CHANGED, data={"phase": "induction"}))
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable, Optional


logger = logging.getLogger(__name__)


class SessionEventType(Enum):
    """Things that happen while a session runs."""

    # Session lifecycle
    SESSION_START = auto()     # start() accepted, PREPARING entered
    SESSION_STOP = auto()      # stopped before completion
    SESSION_END = auto()       # COMPLETE reached

    # Phase flow
    PHASE_TRANSITION_START = auto()  # transition delay began (label already shows target)
    PHASE_CHANGED = auto()           # target phase content started

    # Speech track
    AFFIRMATION_START = auto()
    CLIP_ERROR = auto()

    # Controls
    SETTINGS_CHANGED = auto()
    EXIT_REQUESTED = auto()    # back() / end_session()


EventCallback = Callable[["SessionEvent"], None]


@dataclass
class SessionEvent:
    """A session event with optional payload.

    Attributes:
        event_type: Type of event that occurred
        data: Optional event-specific payload
        timestamp: Wall-clock time, filled in by the emitter when missing
    """

    event_type: SessionEventType
    data: Optional[dict[str, Any]] = None
    timestamp: Optional[float] = None

    def get(self, key: str, default: Any = None) -> Any:
        return (self.data or {}).get(key, default)

    def __str__(self) -> str:
        if self.data:
            payload = ", ".join(f"{k}={v}" for k, v in self.data.items())
            return f"SessionEvent({self.event_type.name}, {payload})"
        return f"SessionEvent({self.event_type.name})"


class SessionEventEmitter:
    """Fan-out of session events to subscribers.

    A subscriber that raises is logged with its traceback and does not stop
    delivery to the remaining subscribers.
    """

    def __init__(self) -> None:
        self._subscribers: dict[SessionEventType, list[EventCallback]] = {}
        self._wildcard: list[EventCallback] = []

    def subscribe(self, event_type: SessionEventType, callback: EventCallback) -> None:
        callbacks = self._subscribers.setdefault(event_type, [])
        if callback not in callbacks:
            callbacks.append(callback)
            logger.debug("[events] Subscribed to %s (total=%d)", event_type.name, len(callbacks))

    def subscribe_all(self, callback: EventCallback) -> None:
        """Receive every event regardless of type."""
        if callback not in self._wildcard:
            self._wildcard.append(callback)

    def unsubscribe(self, event_type: SessionEventType, callback: EventCallback) -> None:
        callbacks = self._subscribers.get(event_type)
        if callbacks and callback in callbacks:
            callbacks.remove(callback)
            logger.debug("[events] Unsubscribed from %s (total=%d)", event_type.name, len(callbacks))

    def unsubscribe_all(self, callback: EventCallback) -> None:
        if callback in self._wildcard:
            self._wildcard.remove(callback)

    def emit(self, event: SessionEvent) -> None:
        if event.timestamp is None:
            event.timestamp = time.time()
        logger.debug("[events] Emitting: %s", event)
        targets = list(self._subscribers.get(event.event_type, ())) + list(self._wildcard)
        for callback in targets:
            try:
                callback(event)
            except Exception as exc:
                logger.error(
                    "[events] Callback error for %s: %s", event.event_type.name, exc, exc_info=True
                )

    def emit_type(self, event_type: SessionEventType, **data: Any) -> SessionEvent:
        event = SessionEvent(event_type, data=data or None)
        self.emit(event)
        return event

    def clear_all(self) -> None:
        self._subscribers.clear()
        self._wildcard.clear()
        logger.debug("[events] Cleared all subscribers")
