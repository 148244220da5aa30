"""
Time window evaluation for lifecycle actions.

All timestamps are compared as naive UTC datetimes, the same convention
the database columns use. ``normalize_timestamp`` converts aware values
coming in from requests.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

CHECK_IN_OPENS_BEFORE = timedelta(minutes=60)
CHECK_IN_CLOSES_AFTER = timedelta(minutes=30)


@dataclass(frozen=True)
class TimeWindow:
    opens_at: datetime
    closes_at: datetime

    def contains(self, instant: datetime) -> bool:
        # Both bounds inclusive
        return self.opens_at <= instant <= self.closes_at

    def has_closed(self, instant: datetime) -> bool:
        return instant > self.closes_at


def normalize_timestamp(value: datetime) -> datetime:
    """Return ``value`` as naive UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def check_in_window(appointment_date: datetime) -> TimeWindow:
    return TimeWindow(
        opens_at=appointment_date - CHECK_IN_OPENS_BEFORE,
        closes_at=appointment_date + CHECK_IN_CLOSES_AFTER,
    )


def is_within_check_in_window(now: datetime, appointment_date: datetime) -> bool:
    return check_in_window(appointment_date).contains(now)


def is_in_future(now: datetime, instant: datetime) -> bool:
    return instant > now


def is_past_no_show_cutoff(now: datetime, appointment_date: datetime) -> bool:
    """True once the late check-in grace period is over."""
    return check_in_window(appointment_date).has_closed(now)


def is_within_horizon(now: datetime, instant: datetime, horizon: timedelta) -> bool:
    return now <= instant <= now + horizon


def minutes_between(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() // 60)
