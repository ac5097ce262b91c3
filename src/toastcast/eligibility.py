"""Toast-day eligibility and generation windows, evaluated in the user's timezone."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger("toastcast.eligibility")

UTC = ZoneInfo("UTC")

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


class ToastType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


@dataclass(frozen=True)
class Window:
    """A generation window. start/end are aware instants; period_key is the local end date."""
    start: datetime
    end: datetime
    period_key: str


def resolve_timezone(name: str | None) -> ZoneInfo:
    """Return the ZoneInfo for an IANA name, falling back to UTC."""
    if not name:
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, TypeError) as e:
        logger.warning("Invalid timezone %r, using UTC: %s", name, e)
        return UTC


def normalize_weekday(value: int | None) -> int:
    """Clamp a stored weekday preference to 0-6 (0 = Sunday); unknown means Sunday."""
    if isinstance(value, int) and 0 <= value <= 6:
        return value
    return 0


def local_weekday(now: datetime, tz: ZoneInfo) -> int:
    """Day of week of `now` in `tz`, with 0 = Sunday .. 6 = Saturday."""
    # datetime.weekday() is 0 = Monday .. 6 = Sunday
    return (now.astimezone(tz).weekday() + 1) % 7


def is_toast_day(timezone: str | None, preferred_weekday: int | None, now: datetime) -> bool:
    """
    True when the user's local calendar day is their preferred toast day.

    `now` must be timezone-aware. The comparison uses local wall-clock dates,
    so DST transitions never shift the day.
    """
    tz = resolve_timezone(timezone)
    return local_weekday(now, tz) == normalize_weekday(preferred_weekday)


def _local_midnight(local: datetime) -> datetime:
    return local.replace(hour=0, minute=0, second=0, microsecond=0)


def generation_window(
    toast_type: ToastType,
    now: datetime,
    timezone: str | None = None,
) -> Window:
    """
    Canonical window for a toast type ending at `now`.

    weekly covers the seven local calendar days ending now (today and the
    six before it), so a toast written late on last week's toast day ends
    before this week's window opens. daily, monthly and yearly start at the
    local beginning of the current day, month and year.
    """
    tz = resolve_timezone(timezone)
    local_now = now.astimezone(tz)
    toast_type = ToastType(toast_type)

    if toast_type is ToastType.WEEKLY:
        first_day = local_now.date() - timedelta(days=6)
        start = datetime(first_day.year, first_day.month, first_day.day, tzinfo=tz)
    elif toast_type is ToastType.DAILY:
        start = _local_midnight(local_now)
    elif toast_type is ToastType.MONTHLY:
        start = _local_midnight(local_now).replace(day=1)
    else:
        start = _local_midnight(local_now).replace(month=1, day=1)

    return Window(
        start=start.astimezone(UTC),
        end=now.astimezone(UTC),
        period_key=local_now.date().isoformat(),
    )


def next_toast_date(timezone: str | None, preferred_weekday: int | None, now: datetime) -> datetime:
    """Local midnight of the next preferred weekday strictly after today."""
    tz = resolve_timezone(timezone)
    local_now = now.astimezone(tz)
    days_ahead = (normalize_weekday(preferred_weekday) - local_weekday(now, tz)) % 7 or 7
    target = local_now.date() + timedelta(days=days_ahead)
    return datetime(target.year, target.month, target.day, tzinfo=tz)
