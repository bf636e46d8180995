"""
Session lifecycle controller.

State machine for one authenticated session:

    ACTIVE --(should_warn on tick)--> WARNING
    WARNING --(activity)--> ACTIVE
    ACTIVE/WARNING --(is_expired on tick)--> EXPIRED

EXPIRED is terminal: the controller stops itself, clears the session
record and calls the logout callback. A new session needs a new
controller, created by a fresh login.

Side effects are limited to the session record, the warning callback and
the logout callback.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from app.features.sessions import clock as session_clock
from app.features.sessions.activity import TRACKED_EVENTS, ActivityBus, ActivityEvent
from app.features.sessions.scheduler import AsyncioScheduler, ScheduledTask, Scheduler
from app.features.sessions.storage import SessionStorage
from app.utils import get_logger


log = get_logger(__name__)

DEFAULT_CHECK_INTERVAL_SECONDS = 30


class SessionState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    WARNING = "warning"
    EXPIRED = "expired"


class SessionExpiredError(RuntimeError):
    """Raised when restarting a controller whose session already expired."""


@dataclass(frozen=True)
class SessionStatus:
    state: SessionState
    remaining_ms: int
    warning_shown: bool
    last_activity_at: Optional[int]
    timeout_minutes: float

    @property
    def remaining_display(self) -> str:
        return session_clock.format_remaining_time(self.remaining_ms)


class SessionLifecycleController:
    """
    Enforces the inactivity timeout for one session.

    Args:
        on_expire: Awaited once when the session expires (forced logout)
        on_warning: Called with the remaining milliseconds when the
            five-minute warning fires
        storage: Session record; a fresh in-memory one by default
        activity_bus: Source of activity events
        scheduler: Runs the periodic expiry check
        clock: Returns "now" in epoch milliseconds
        timeout_minutes: Inactivity timeout
        check_interval_seconds: Period of the expiry check
    """

    def __init__(
        self,
        on_expire: Callable[[], Awaitable[None]],
        on_warning: Optional[Callable[[int], None]] = None,
        storage: Optional[SessionStorage] = None,
        activity_bus: Optional[ActivityBus] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], int] = session_clock.now_ms,
        timeout_minutes: float = session_clock.DEFAULT_TIMEOUT_MINUTES,
        check_interval_seconds: float = DEFAULT_CHECK_INTERVAL_SECONDS,
    ):
        self.on_expire = on_expire
        self.on_warning = on_warning
        self.clock = clock
        self.storage = storage if storage is not None else SessionStorage(clock=clock)
        self.activity_bus = activity_bus if activity_bus is not None else ActivityBus()
        self.scheduler = scheduler if scheduler is not None else AsyncioScheduler()
        self.timeout_minutes = timeout_minutes
        self.check_interval_seconds = check_interval_seconds

        self.state = SessionState.IDLE
        self._task: Optional[ScheduledTask] = None

    @property
    def running(self) -> bool:
        return self._task is not None

    async def start(self) -> None:
        """Initialize the session record, attach listeners and start ticking."""
        if self.state == SessionState.EXPIRED:
            raise SessionExpiredError("Session expired; log in again to start a new one")
        if self.running:
            return

        self.storage.initialize(self.timeout_minutes, self.clock())
        for event in TRACKED_EVENTS:
            self.activity_bus.add_listener(event, self._handle_activity)
        self._task = self.scheduler.every(self.check_interval_seconds, self.check)
        self.state = SessionState.ACTIVE
        log.debug("Session started with %s minute timeout", self.timeout_minutes)

        await self.check()

    def stop(self) -> None:
        """Detach every listener and cancel the tick. Safe to call repeatedly."""
        for event in TRACKED_EVENTS:
            self.activity_bus.remove_listener(event, self._handle_activity)
        if self._task is not None:
            self._task.cancel()
            self._task = None
        if self.state != SessionState.EXPIRED:
            self.state = SessionState.IDLE

    def _handle_activity(self, event: ActivityEvent) -> None:
        self.record_activity(event)

    def record_activity(self, event: Optional[ActivityEvent] = None) -> bool:
        """
        Reset the inactivity window.

        Returns:
            False when the controller is not running (nothing recorded)
        """
        if not self.running:
            return False

        self.storage.touch(self.clock())
        if self.state == SessionState.WARNING:
            self.state = SessionState.ACTIVE
            log.debug("Activity (%s) cleared session warning", event.value if event else "extend")
        return True

    def extend(self) -> bool:
        """Explicit "continue session" from the warning prompt."""
        return self.record_activity()

    async def check(self) -> None:
        """Periodic tick: expire or warn, evaluated against one snapshot of now."""
        if not self.running:
            return

        now = self.clock()
        last_activity = self.storage.last_activity()

        if session_clock.is_expired(last_activity, now, self.timeout_minutes):
            self.state = SessionState.EXPIRED
            self.stop()
            self.storage.clear()
            log.info("Session expired after %s minutes of inactivity", self.timeout_minutes)
            await self.on_expire()
            return

        if session_clock.should_warn(last_activity, now, self.timeout_minutes, self.storage.warning_shown):
            self.state = SessionState.WARNING
            self.storage.mark_warning_shown()
            left = session_clock.remaining(last_activity, now, self.timeout_minutes)
            if self.on_warning is not None:
                self.on_warning(left)

    def status(self) -> SessionStatus:
        now = self.clock()
        if self.running:
            last_activity = self.storage.last_activity()
            left = session_clock.remaining(last_activity, now, self.timeout_minutes)
        else:
            last_activity = None
            left = 0
        return SessionStatus(
            state=self.state,
            remaining_ms=left,
            warning_shown=self.storage.warning_shown,
            last_activity_at=last_activity,
            timeout_minutes=self.timeout_minutes,
        )
