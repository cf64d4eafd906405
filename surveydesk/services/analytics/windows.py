"""UTC day keys and bounded analytics windows."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta

from surveydesk.config import settings
from surveydesk.services.common import day_bounds
from surveydesk.services.errors import SurveyLimitError, SurveyValidationError


@dataclass(frozen=True)
class DateRange:
    from_date: str
    to_date: str
    start: datetime
    end: datetime
    day_keys: list[str]


def normalize_date_key(value: str) -> str:
    """Return ``YYYY-MM-DD`` for an ISO date or datetime string."""
    text = (value or "").strip()
    try:
        return date.fromisoformat(text).isoformat()
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date().isoformat()
    except ValueError:
        raise SurveyValidationError("INVALID_DATE", f"Invalid date: {value}") from None


def build_date_keys(from_date: str, to_date: str) -> list[str]:
    start = date.fromisoformat(normalize_date_key(from_date))
    end = date.fromisoformat(normalize_date_key(to_date))
    keys = []
    cursor = start
    while cursor <= end:
        keys.append(cursor.isoformat())
        cursor += timedelta(days=1)
    return keys


def parse_date_range(from_date: str, to_date: str, max_days: int | None = None) -> DateRange:
    from_key = normalize_date_key(from_date)
    to_key = normalize_date_key(to_date)
    day_keys = build_date_keys(from_key, to_key)
    if not day_keys:
        raise SurveyValidationError("INVALID_DATE_RANGE", "from_date must be before or equal to to_date.")

    limit = max_days or settings.analytics_max_window_days
    if len(day_keys) > limit:
        raise SurveyLimitError(
            "ANALYTICS_WINDOW_TOO_LARGE",
            f"Requested window is {len(day_keys)} days. Max supported window is {limit} days.",
        )
    start, _ = day_bounds(from_key)
    _, end = day_bounds(to_key)
    return DateRange(from_date=from_key, to_date=to_key, start=start, end=end, day_keys=day_keys)
