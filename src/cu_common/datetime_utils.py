"""UTC datetime utilities."""

from datetime import date, datetime, time, timedelta, timezone


def utc_now() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | date | str | None) -> datetime | None:
    """Normalize a DB/JSON timestamp to an aware UTC datetime.

    Naive datetimes are assumed to already be UTC. A bare date (e.g. a legacy
    `expires_on` DATE column) means midnight UTC of that day.
    """
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        value = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if not isinstance(value, datetime):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_days(start: datetime, days: int | None) -> datetime | None:
    """start + days, or None when there is no validity window."""
    if days is None:
        return None
    return start + timedelta(days=days)


def to_iso(value: datetime | date | None) -> str | None:
    """ISO-8601 with a trailing Z for UTC, None passthrough."""
    normalized = ensure_utc(value)
    if normalized is None:
        return None
    return normalized.isoformat().replace("+00:00", "Z")
