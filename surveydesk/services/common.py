import math
import uuid
from datetime import UTC, date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from surveydesk.services.errors import SurveyNotFoundError


def now_utc() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def coerce_uuid(value, label: str = "Resource") -> uuid.UUID:
    """Parse an id, treating anything malformed as a missing entity."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        raise SurveyNotFoundError(detail=f"{label} not found.") from None


def date_key_for(moment: datetime) -> str:
    return as_utc(moment).date().isoformat()


def day_bounds(date_key: str) -> tuple[datetime, datetime]:
    """Return the half-open UTC interval ``[start, end)`` covering a day key."""
    day = date.fromisoformat(date_key)
    start = datetime(day.year, day.month, day.day, tzinfo=UTC)
    return start, start + timedelta(days=1)


def clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(value, upper))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def round2(value: float) -> float:
    return round_half_up(value * 100) / 100


def to_percent(value: float, total: float) -> float:
    if total <= 0:
        return 0.0
    return round2(value / total * 100)


def format_fixed2(value: float) -> str:
    """Two-decimal text with ties rounded away from zero."""
    return str(Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
