from datetime import date, datetime, time, timezone
from typing import Union

DateInput = Union[str, date, datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_occurred_at(value: DateInput) -> datetime:
    """Normalize a date, datetime or ISO-8601 string to naive UTC.

    A bare date ("2024-03-05") means midnight UTC of that day.
    """
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time(0, 0))
    if not isinstance(value, str):
        raise ValueError("Invalid date")
    raw = value.strip()
    if not raw:
        raise ValueError("Invalid date")
    try:
        if len(raw) == 10:
            return datetime.combine(date.fromisoformat(raw), time(0, 0))
        if raw.endswith(("Z", "z")):
            raw = raw[:-1] + "+00:00"
        return to_naive_utc(datetime.fromisoformat(raw))
    except ValueError as exc:
        raise ValueError(f"Invalid date: {value}") from exc


def month_label(value: datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}"
