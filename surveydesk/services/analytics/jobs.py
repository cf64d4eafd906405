"""Write paths that drive the daily rebuild: per response, per window and in bulk.

Each job commits its own work so it can run from a Celery task or an admin
request.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from surveydesk.config import settings
from surveydesk.models.session import SurveyResponse
from surveydesk.models.survey import Survey
from surveydesk.services.analytics.materialization import (
    rebuild_daily_materialized_analytics,
    refresh_daily_text_insights,
)
from surveydesk.services.analytics.windows import build_date_keys, parse_date_range
from surveydesk.services.common import clamp, coerce_uuid, date_key_for, now_utc
from surveydesk.services.outbox import enqueue_event

logger = logging.getLogger(__name__)

DEFAULT_REBUILD_REASON = "manual_or_internal"
RECENT_SURVEY_LIMIT_MAX = 500


def _recent_survey_ids(db: Session, limit: int) -> list[uuid.UUID]:
    rows = db.query(Survey.id).order_by(Survey.updated_at.desc()).limit(limit).all()
    return [row[0] for row in rows]


def incremental_ingest_response(db: Session, response_id) -> dict:
    """Rebuild the day of one submitted response, without text insights."""
    response = db.get(SurveyResponse, coerce_uuid(response_id, "Response"))
    if response is None:
        return {"processed": False, "date_key": None}
    date_key = date_key_for(response.submitted_at)
    rebuild_daily_materialized_analytics(db, response.survey_id, date_key, include_text_insights=False)
    db.commit()
    return {"processed": True, "date_key": date_key}


def rebuild_materialized_window(
    db: Session,
    survey_id,
    from_date: str,
    to_date: str,
    reason: str | None = None,
    now: datetime | None = None,
) -> dict:
    moment = now or now_utc()
    survey_uuid = coerce_uuid(survey_id, "Survey")
    window = parse_date_range(from_date, to_date, max_days=settings.analytics_max_window_days)
    for date_key in window.day_keys:
        rebuild_daily_materialized_analytics(db, survey_uuid, date_key, include_text_insights=True, now=moment)

    enqueue_event(
        db,
        "analytics_rebuild_triggered",
        f"survey:{survey_uuid}",
        {
            "survey_id": str(survey_uuid),
            "from_date": window.from_date,
            "to_date": window.to_date,
            "reason": reason or DEFAULT_REBUILD_REASON,
        },
        now=moment,
    )
    db.commit()
    logger.info(
        "analytics_window_rebuilt survey_id=%s from=%s to=%s days=%d",
        survey_uuid,
        window.from_date,
        window.to_date,
        len(window.day_keys),
    )
    return {"days_processed": len(window.day_keys)}


def refresh_text_summaries_batch(
    db: Session,
    survey_id=None,
    from_date: str | None = None,
    to_date: str | None = None,
    limit: int | None = None,
    now: datetime | None = None,
) -> dict:
    """Recompute text insights for a window (by default the last three days)."""
    moment = now or now_utc()
    default_to = date_key_for(moment)
    default_from = date_key_for(moment - timedelta(days=2))
    window = parse_date_range(
        from_date or default_from,
        to_date or default_to,
        max_days=settings.analytics_text_refresh_max_days,
    )
    days = window.day_keys
    if limit:
        days = days[: clamp(limit, 1, len(days))]

    if survey_id:
        survey_ids = [coerce_uuid(survey_id, "Survey")]
    else:
        survey_ids = _recent_survey_ids(db, 200)

    days_processed = 0
    for current in survey_ids:
        for date_key in days:
            refresh_daily_text_insights(db, current, date_key, now=moment)
            days_processed += 1
    db.commit()
    return {"surveys_processed": len(survey_ids), "days_processed": days_processed}


def rebuild_recent_window_for_all_surveys(
    db: Session,
    lookback_days: int | None = None,
    survey_limit: int | None = None,
    now: datetime | None = None,
) -> dict:
    """Repair the trailing days of the most recently updated surveys."""
    moment = now or now_utc()
    lookback = clamp(lookback_days or 2, 1, settings.analytics_default_window_days)
    limit = clamp(survey_limit or 200, 1, RECENT_SURVEY_LIMIT_MAX)
    day_keys = build_date_keys(date_key_for(moment - timedelta(days=lookback - 1)), date_key_for(moment))

    survey_ids = _recent_survey_ids(db, limit)
    days_processed = 0
    for survey_id in survey_ids:
        for date_key in day_keys:
            rebuild_daily_materialized_analytics(db, survey_id, date_key, include_text_insights=False, now=moment)
            days_processed += 1
    db.commit()
    return {"surveys_processed": len(survey_ids), "days_processed": days_processed}
