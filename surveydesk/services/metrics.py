"""Live daily counters for session lifecycle events."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy.orm import Session

from surveydesk.models.analytics import SurveyAnalyticsDaily, SurveyMetricsDaily
from surveydesk.services.common import date_key_for, now_utc

METRIC_NAMES = ("started", "completed", "idle", "abandoned", "reactivated")


def _get_or_create(db: Session, model, survey_id: uuid.UUID, date_key: str, now: datetime):
    row = db.query(model).filter(model.survey_id == survey_id).filter(model.date_key == date_key).first()
    if row is None:
        row = model(survey_id=survey_id, date_key=date_key, updated_at=now)
        for name in METRIC_NAMES:
            setattr(row, name, 0)
        db.add(row)
        db.flush()
    return row


def bump_daily_metric(
    db: Session,
    survey_id: uuid.UUID,
    metric: str,
    delta: int = 1,
    at: datetime | None = None,
) -> SurveyMetricsDaily:
    """Add ``delta`` to one counter for the day containing ``at``.

    The same counter is mirrored into the analytics daily row so that
    reads see lifecycle activity before the next rebuild. Counters never
    go below zero.
    """
    if metric not in METRIC_NAMES:
        raise ValueError(f"Unknown metric: {metric}")
    moment = at or now_utc()
    date_key = date_key_for(moment)

    metrics_row = _get_or_create(db, SurveyMetricsDaily, survey_id, date_key, moment)
    setattr(metrics_row, metric, max((getattr(metrics_row, metric) or 0) + delta, 0))
    metrics_row.updated_at = moment

    analytics_row = _get_or_create(db, SurveyAnalyticsDaily, survey_id, date_key, moment)
    if analytics_row.avg_score_percent is None:
        analytics_row.avg_score_percent = 0.0
    for name in ("total_graded", "total_correct", "total_incorrect"):
        if getattr(analytics_row, name) is None:
            setattr(analytics_row, name, 0)
    setattr(analytics_row, metric, max((getattr(analytics_row, metric) or 0) + delta, 0))
    analytics_row.updated_at = moment
    return metrics_row
