"""
Clock and date helpers shared by the change log and the pull/push engines.

All timestamps in replisync are naive UTC datetimes, stored with second
precision in the `YYYY-MM-DD HH:MM:SS` wire format used by master.
"""
from datetime import date, datetime, timezone
from typing import Any, Optional

DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def utc_now() -> datetime:
    """Current UTC time as a naive datetime, truncated to whole seconds."""
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse a remote date value without ever raising.

    Tries the strict wire format first, then falls back to lenient ISO 8601
    parsing (``T`` separator, fractional seconds, ``Z`` or offset suffix).
    Aware values are converted to naive UTC. Anything unparseable is None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _to_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str):
        return None

    s = value.strip()
    try:
        return datetime.strptime(s, DATETIME_FORMAT)
    except ValueError:
        pass

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        return _to_naive_utc(datetime.fromisoformat(s))
    except ValueError:
        return None


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return _to_naive_utc(value).strftime(DATETIME_FORMAT)


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=0)
