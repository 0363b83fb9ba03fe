import datetime as _dt
from typing import Optional, Union

TimestampLike = Union[str, int, float, _dt.datetime]


def utc_now() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def ensure_utc(value: _dt.datetime) -> _dt.datetime:
    """Naive datetimes are taken to be UTC; aware ones are converted."""
    if value.tzinfo is None:
        return value.replace(tzinfo=_dt.timezone.utc)
    return value.astimezone(_dt.timezone.utc)


def parse_timestamp(value: TimestampLike) -> _dt.datetime:
    """Parse an ISO-8601 string, epoch milliseconds or datetime into aware UTC.

    Accepts the trailing ``Z`` form written by the mobile clients
    (``2024-12-01T10:00:00.000Z``).
    """
    if isinstance(value, _dt.datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return from_epoch_millis(int(value))
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("empty timestamp")
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        return ensure_utc(_dt.datetime.fromisoformat(text))
    raise ValueError(f"unsupported timestamp type: {type(value).__name__}")


def to_epoch_millis(value: _dt.datetime) -> int:
    return int(ensure_utc(value).timestamp() * 1000)


def from_epoch_millis(millis: int) -> _dt.datetime:
    return _dt.datetime.fromtimestamp(millis / 1000, tz=_dt.timezone.utc)


def month_key(value: _dt.datetime) -> str:
    return ensure_utc(value).strftime("%Y-%m")


def resolve_now(now: Optional[_dt.datetime] = None) -> _dt.datetime:
    return utc_now() if now is None else ensure_utc(now)
