from datetime import date, datetime, timezone

# Shift day used across the suite. Europe/London is on GMT in early March,
# so wall-clock times on this day are also UTC.
SHIFT_DAY = date(2026, 3, 10)


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def on_shift_day(hour: int, minute: int = 0) -> datetime:
    return utc(SHIFT_DAY.year, SHIFT_DAY.month, SHIFT_DAY.day, hour, minute)
