"""Local-time helpers for per-user scheduling."""

from datetime import UTC, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fortune.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEZONE = "Europe/Moscow"


def resolve_timezone(timezone: str | None, default: str = DEFAULT_TIMEZONE) -> ZoneInfo:
    """ZoneInfo for an IANA name. Absent or unknown names fall back to `default`."""
    if timezone:
        try:
            return ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Invalid timezone, using default", timezone=timezone, default=default)
    return ZoneInfo(default)


def get_current_hour_in_timezone(
    timezone: str | None, now: datetime | None = None, default: str = DEFAULT_TIMEZONE
) -> int:
    now = now or datetime.now(UTC)
    return now.astimezone(resolve_timezone(timezone, default)).hour


def parse_hour(value: str | None) -> int:
    """Hour part of an "HH:MM" string; 0 when it cannot be parsed."""
    if not value:
        return 0
    head = value.strip().split(":", 1)[0]
    try:
        hour = int(head)
    except ValueError:
        return 0
    return hour if 0 <= hour <= 23 else 0


def local_day_bounds(
    timezone: str | None, now: datetime | None = None, default: str = DEFAULT_TIMEZONE
) -> tuple[datetime, datetime]:
    """UTC start (inclusive) and end (exclusive) of the local calendar day containing `now`."""
    now = now or datetime.now(UTC)
    tz = resolve_timezone(timezone, default)
    local_date = now.astimezone(tz).date()
    start = datetime.combine(local_date, time.min, tzinfo=tz)
    end = datetime.combine(local_date + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(UTC), end.astimezone(UTC)


def utc_day_bounds(now: datetime | None = None) -> tuple[datetime, datetime]:
    now = (now or datetime.now(UTC)).astimezone(UTC)
    start = datetime.combine(now.date(), time.min, tzinfo=UTC)
    return start, start + timedelta(days=1)


def day_of_year(today: datetime | None = None) -> int:
    """1-based ordinal day used to rotate static content pools."""
    today = today or datetime.now(UTC)
    return today.timetuple().tm_yday
