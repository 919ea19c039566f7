from datetime import UTC, datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC; storage providers may drop tzinfo."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
