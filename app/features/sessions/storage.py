"""
Local session storage.

A key/value record per session with three keys that are always removed
together:
- lastActivityTime: epoch milliseconds as a string
- sessionTimeout: configured timeout in minutes (reserved)
- sessionWarningShown: presence flag
"""
from typing import Callable, MutableMapping, Optional

from app.features.sessions.clock import now_ms


LAST_ACTIVITY = "lastActivityTime"
SESSION_TIMEOUT = "sessionTimeout"
WARNING_SHOWN = "sessionWarningShown"

SESSION_KEYS = (LAST_ACTIVITY, SESSION_TIMEOUT, WARNING_SHOWN)


class SessionStorage:
    """Session record kept in a string key/value mapping."""

    def __init__(
        self,
        backend: Optional[MutableMapping[str, str]] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.backend = backend if backend is not None else {}
        self.clock = clock

    def initialize(self, timeout_minutes: float, now: Optional[int] = None) -> None:
        self.backend[SESSION_TIMEOUT] = str(timeout_minutes)
        self.touch(now)

    def touch(self, now: Optional[int] = None) -> None:
        """Record activity and re-arm the warning."""
        self.backend[LAST_ACTIVITY] = str(self.clock() if now is None else now)
        self.backend.pop(WARNING_SHOWN, None)

    def last_activity(self) -> int:
        """Last activity timestamp; a missing record reads as now."""
        value = self.backend.get(LAST_ACTIVITY)
        return int(value) if value else self.clock()

    @property
    def warning_shown(self) -> bool:
        return WARNING_SHOWN in self.backend

    def mark_warning_shown(self) -> None:
        self.backend[WARNING_SHOWN] = "true"

    def exists(self) -> bool:
        return LAST_ACTIVITY in self.backend

    def clear(self) -> None:
        for key in SESSION_KEYS:
            self.backend.pop(key, None)
