"""
Tests for the session clock, session storage and activity bus.
"""
from app.features.sessions import clock
from app.features.sessions.activity import ActivityBus, ActivityEvent
from app.features.sessions.storage import LAST_ACTIVITY, SESSION_TIMEOUT, WARNING_SHOWN, SessionStorage


MINUTE = 60 * 1000
NOW = 1_700_000_000_000


class TestRemaining:
    """Tests for remaining / is_expired."""

    def test_full_window_right_after_activity(self):
        assert clock.remaining(NOW, NOW) == 30 * MINUTE

    def test_never_negative(self):
        assert clock.remaining(NOW - 45 * MINUTE, NOW) == 0

    def test_expiry_boundaries(self):
        assert clock.is_expired(NOW - 29 * MINUTE, NOW) is False
        assert clock.is_expired(NOW - 31 * MINUTE, NOW) is True
        assert clock.is_expired(NOW - 30 * MINUTE, NOW) is True

    def test_custom_timeout(self):
        assert clock.remaining(NOW - MINUTE, NOW, timeout_minutes=5) == 4 * MINUTE


class TestShouldWarn:
    """Tests for the five-minute warning predicate."""

    def test_inside_warning_window(self):
        assert clock.should_warn(NOW - 29 * MINUTE, NOW) is True

    def test_outside_warning_window(self):
        assert clock.should_warn(NOW - 20 * MINUTE, NOW) is False

    def test_exactly_five_minutes_left(self):
        assert clock.should_warn(NOW - 25 * MINUTE, NOW) is True

    def test_not_when_expired(self):
        assert clock.should_warn(NOW - 31 * MINUTE, NOW) is False

    def test_not_twice(self):
        assert clock.should_warn(NOW - 29 * MINUTE, NOW, warning_shown=True) is False


class TestFormatRemainingTime:
    def test_minutes_and_seconds(self):
        assert clock.format_remaining_time(4 * MINUTE + 5000) == "4 minutes 5 seconds"

    def test_singular_units(self):
        assert clock.format_remaining_time(MINUTE + 1000) == "1 minute 1 second"
        assert clock.format_remaining_time(1000) == "1 second"

    def test_zero(self):
        assert clock.format_remaining_time(0) == "0 seconds"


class TestSessionStorage:
    """Tests for the local session record."""

    def test_initialize_writes_record(self):
        backend = {}
        storage = SessionStorage(backend, clock=lambda: NOW)
        storage.initialize(30, NOW)
        assert backend == {SESSION_TIMEOUT: "30", LAST_ACTIVITY: str(NOW)}
        assert storage.exists()

    def test_touch_clears_warning(self):
        storage = SessionStorage(clock=lambda: NOW)
        storage.initialize(30, NOW)
        storage.mark_warning_shown()
        assert storage.warning_shown
        storage.touch(NOW + 1000)
        assert not storage.warning_shown
        assert storage.last_activity() == NOW + 1000

    def test_missing_record_reads_as_now(self):
        storage = SessionStorage(clock=lambda: NOW + 42)
        assert storage.last_activity() == NOW + 42
        assert not storage.exists()

    def test_clear_removes_all_keys(self):
        backend = {"unrelated": "keep"}
        storage = SessionStorage(backend, clock=lambda: NOW)
        storage.initialize(30, NOW)
        storage.mark_warning_shown()
        storage.clear()
        assert backend == {"unrelated": "keep"}
        assert WARNING_SHOWN not in backend


class TestActivityBus:
    """Tests for activity listeners."""

    def test_emit_reaches_listeners(self):
        bus = ActivityBus()
        seen = []
        bus.add_listener(ActivityEvent.CLICK, seen.append)
        assert bus.emit(ActivityEvent.CLICK) == 1
        assert bus.emit(ActivityEvent.SCROLL) == 0
        assert seen == [ActivityEvent.CLICK]

    def test_remove_listener(self):
        bus = ActivityBus()
        bus.add_listener(ActivityEvent.KEY_DOWN, print)
        bus.remove_listener(ActivityEvent.KEY_DOWN, print)
        bus.remove_listener(ActivityEvent.KEY_DOWN, print)
        assert bus.listener_count() == 0

    def test_failing_listener_is_isolated(self):
        bus = ActivityBus()
        seen = []

        def broken(_event):
            raise RuntimeError("boom")

        bus.add_listener(ActivityEvent.TOUCH_START, broken)
        bus.add_listener(ActivityEvent.TOUCH_START, seen.append)
        assert bus.emit(ActivityEvent.TOUCH_START) == 1
        assert seen == [ActivityEvent.TOUCH_START]
