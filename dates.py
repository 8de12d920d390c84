from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from errors import ValidationFailed


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_day(value: Optional[str], message: str) -> date:
    clean = (value or "").strip()
    if not clean:
        raise ValidationFailed(message)
    try:
        return parse_instant(clean).date()
    except ValueError as exc:
        raise ValidationFailed(f"Fecha inválida: {clean}") from exc


def day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def parse_instant(value: str) -> datetime:
    """Parse ``YYYY-MM-DD`` or a full ISO timestamp (``Z`` suffix allowed)."""
    clean = value.strip()
    if clean.endswith("Z"):
        clean = clean[:-1] + "+00:00"
    if len(clean) == 10:
        return datetime.combine(date.fromisoformat(clean), time.min)
    return to_naive_utc(datetime.fromisoformat(clean))
