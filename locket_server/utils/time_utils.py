from datetime import datetime, timezone
from typing import Any, Optional


def utc_now() -> datetime:
    """Return the current time as naive UTC, truncated to milliseconds.

    MongoDB stores datetimes with millisecond precision and hands them back
    naive, so values kept in memory are normalized the same way before they
    are compared with stored ones.
    """
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def to_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=(dt.microsecond // 1000) * 1000)


def parse_iso_or_epoch(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string or epoch seconds into naive UTC, or return None."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, (int, float)):
        return to_naive_utc(datetime.fromtimestamp(float(value), tz=timezone.utc))
    s = str(value).strip()
    try:
        return to_naive_utc(datetime.fromisoformat(s.replace('Z', '+00:00')))
    except ValueError:
        pass
    try:
        return to_naive_utc(datetime.fromtimestamp(float(s), tz=timezone.utc))
    except (ValueError, OverflowError, OSError):
        return None


def isoformat(dt: Optional[datetime]) -> Optional[str]:
    """Render a naive UTC datetime as ISO-8601 with a trailing Z."""
    if dt is None:
        return None
    return dt.isoformat(timespec='milliseconds') + 'Z'
