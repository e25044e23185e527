from datetime import datetime, timezone


def as_utc(value: datetime) -> datetime:
    """Naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def as_utc_or_none(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return as_utc(value)
