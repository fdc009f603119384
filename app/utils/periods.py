from datetime import datetime, timezone
from typing import Optional, Tuple

MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def current_month_year(now: Optional[datetime] = None) -> Tuple[int, int]:
    """Return (year, month) for the current UTC month."""
    now = now or utc_now()
    return now.year, now.month


def month_name(month: int) -> str:
    if month < 1 or month > 12:
        return ""
    return MONTH_NAMES[month - 1]


def period_key(year: int, month: int) -> str:
    """Sort key used for monthly budget documents, e.g. 2025-11."""
    return f"{year:04d}-{month:02d}"


def to_iso(value: Optional[datetime] = None) -> str:
    """
    Normalize a datetime to a UTC ISO-8601 string so stored values sort
    chronologically. Naive datetimes are treated as UTC.
    """
    value = value or utc_now()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()
