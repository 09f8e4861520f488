import os
from dataclasses import dataclass
from datetime import timedelta


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default


def default_timezone() -> str:
    return os.getenv("DEFAULT_TIMEZONE", "Europe/London")


@dataclass(frozen=True)
class TimePolicy:
    """Thresholds applied to worker-submitted (manual) attendance times."""

    max_shift_hours: int = 16
    window_hours: int = 24
    reason_threshold_minutes: int = 15

    @property
    def max_duration(self) -> timedelta:
        return timedelta(hours=self.max_shift_hours)

    @property
    def window(self) -> timedelta:
        return timedelta(hours=self.window_hours)

    @property
    def reason_threshold(self) -> timedelta:
        return timedelta(minutes=self.reason_threshold_minutes)


def load_time_policy() -> TimePolicy:
    return TimePolicy(
        max_shift_hours=_env_int("MANUAL_ENTRY_MAX_HOURS", 16),
        window_hours=_env_int("MANUAL_ENTRY_WINDOW_HOURS", 24),
        reason_threshold_minutes=_env_int("MANUAL_ENTRY_REASON_MINUTES", 15),
    )


def invite_ttl() -> timedelta:
    return timedelta(hours=_env_int("SHIFT_INVITE_TTL_HOURS", 48))
