"""
Session clock.

Pure time computations over epoch milliseconds. The caller supplies "now"
so a single tick evaluates every predicate against the same instant.
"""
import time


DEFAULT_TIMEOUT_MINUTES = 30
WARNING_THRESHOLD_MS = 5 * 60 * 1000


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def timeout_ms(timeout_minutes: float = DEFAULT_TIMEOUT_MINUTES) -> int:
    return int(timeout_minutes * 60 * 1000)


def remaining(last_activity_at: int, now: int, timeout_minutes: float = DEFAULT_TIMEOUT_MINUTES) -> int:
    """Milliseconds left before the session expires, never negative."""
    return max(0, timeout_ms(timeout_minutes) - (now - last_activity_at))


def is_expired(last_activity_at: int, now: int, timeout_minutes: float = DEFAULT_TIMEOUT_MINUTES) -> bool:
    return remaining(last_activity_at, now, timeout_minutes) == 0


def should_warn(
    last_activity_at: int,
    now: int,
    timeout_minutes: float = DEFAULT_TIMEOUT_MINUTES,
    warning_shown: bool = False,
) -> bool:
    """
    True once per inactivity window, inside the last five minutes.

    The window re-arms only when activity resets last_activity_at (which
    also clears warning_shown).
    """
    left = remaining(last_activity_at, now, timeout_minutes)
    return 0 < left <= WARNING_THRESHOLD_MS and not warning_shown


def format_remaining_time(milliseconds: int) -> str:
    """
    Human readable remaining time.

    >>> format_remaining_time(245000)
    '4 minutes 5 seconds'
    >>> format_remaining_time(1000)
    '1 second'
    """
    minutes = milliseconds // 60000
    seconds = (milliseconds % 60000) // 1000

    def plural(count: int, unit: str) -> str:
        return f"{count} {unit}{'' if count == 1 else 's'}"

    if minutes > 0:
        return f"{plural(minutes, 'minute')} {plural(seconds, 'second')}"
    return plural(seconds, "second")
