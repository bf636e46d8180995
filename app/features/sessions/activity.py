"""
Activity bus.

Global, passive listeners for user activity events. Listeners are plain
callables; a failing listener is logged and never blocks the others.
"""
from enum import Enum
from typing import Callable, Dict, List

from app.utils import get_logger


log = get_logger(__name__)


class ActivityEvent(str, Enum):
    """User interactions that count as activity."""
    MOUSE_DOWN = "mousedown"
    KEY_DOWN = "keydown"
    SCROLL = "scroll"
    TOUCH_START = "touchstart"
    CLICK = "click"


TRACKED_EVENTS = tuple(ActivityEvent)

ActivityListener = Callable[[ActivityEvent], None]


class ActivityBus:
    """Dispatches activity events to registered listeners."""

    def __init__(self):
        self._listeners: Dict[ActivityEvent, List[ActivityListener]] = {}

    def add_listener(self, event: ActivityEvent, listener: ActivityListener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def remove_listener(self, event: ActivityEvent, listener: ActivityListener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)
        if not listeners:
            self._listeners.pop(event, None)

    def listener_count(self, event: ActivityEvent = None) -> int:
        if event is not None:
            return len(self._listeners.get(event, []))
        return sum(len(listeners) for listeners in self._listeners.values())

    def emit(self, event: ActivityEvent) -> int:
        """
        Deliver an event to its listeners.

        Returns:
            Number of listeners that received the event
        """
        delivered = 0
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(event)
                delivered += 1
            except Exception:
                log.exception("Activity listener failed for %s", event.value)
        return delivered
