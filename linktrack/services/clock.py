"""Time helpers. All stored timestamps are naive UTC."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Normalise an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def epoch_ms(value: datetime) -> int:
    """Milliseconds since the Unix epoch."""
    return int(as_naive_utc(value).replace(tzinfo=timezone.utc).timestamp() * 1000)


def parse_timestamp(value) -> datetime:
    """
    Accept a datetime or an ISO-8601 string and return naive UTC.

    Raises:
        ValueError: If the value cannot be parsed
    """
    if isinstance(value, datetime):
        return as_naive_utc(value)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        return as_naive_utc(datetime.fromisoformat(text))
    raise ValueError(f"Invalid timestamp: {value!r}")
