"""Daily rollup rebuild.

``rebuild_daily_materialized_analytics`` recomputes every derived rollup for
one survey and one UTC day from the responses submitted that day. It is a
pure function of those responses (plus the live funnel counters), so running
it twice leaves identical rows. Rows whose key is no longer produced are
deleted.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field as dataclass_field
from datetime import datetime

from sqlalchemy.orm import Session

from surveydesk.models.analytics import (
    SurveyAnalyticsDaily,
    SurveyAnswerBucketsDaily,
    SurveyFieldAnalyticsDaily,
    SurveyMetricsDaily,
    SurveyTextInsightsDaily,
)
from surveydesk.models.session import SurveyResponse
from surveydesk.models.survey import SurveyVersion
from surveydesk.schemas.survey import SELECT_KINDS, TEXT_KINDS, FieldKind, SurveyField
from surveydesk.services.analytics.text_insights import sampled_snippets, top_phrases
from surveydesk.services.analytics.windows import normalize_date_key
from surveydesk.services.common import day_bounds, format_fixed2, now_utc, round2
from surveydesk.services.validation import (
    ChoiceAnswer,
    MultiChoiceAnswer,
    NumberAnswer,
    is_answer_present,
    load_fields,
    parse_answer,
)
from surveydesk.telemetry import get_tracer

logger = logging.getLogger(__name__)

PROVIDED_BUCKET_KEY = "__provided__"
PROVIDED_BUCKET_LABEL = "Provided"
RATING_BUCKETS = ("1", "2", "3", "4", "5")


@dataclass
class FieldAggregate:
    field_id: str
    kind: FieldKind
    order: int
    option_order: list[str]
    option_labels: dict[str, str]
    reached_count: int = 0
    answered_count: int = 0
    buckets: dict[str, list] = dataclass_field(default_factory=dict)
    text_answers: list[str] = dataclass_field(default_factory=list)

    @classmethod
    def for_field(cls, field: SurveyField) -> FieldAggregate:
        options = field.options or []
        return cls(
            field_id=field.id,
            kind=field.kind,
            order=field.order,
            option_order=[option.value for option in options],
            option_labels={option.value: option.label for option in options},
        )

    def add_bucket(self, key: str, label: str) -> None:
        bucket = self.buckets.setdefault(key, [label, 0])
        bucket[1] += 1

    def bucket_rows(self) -> list[dict]:
        rows = {key: {"bucket_label": label, "count": count} for key, (label, count) in self.buckets.items()}
        if self.kind in SELECT_KINDS:
            for value in self.option_order:
                rows.setdefault(value, {"bucket_label": self.option_labels.get(value, value), "count": 0})
        if self.kind == FieldKind.rating_1_5:
            for rating in RATING_BUCKETS:
                rows.setdefault(rating, {"bucket_label": rating, "count": 0})
        return [{"field_id": self.field_id, "bucket_key": key, **row} for key, row in rows.items()]


def format_number_bucket(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return format_fixed2(value)


def bucket_entries(field: SurveyField, value) -> list[tuple[str, str]]:
    """Return the ``(bucket_key, bucket_label)`` pairs one answer contributes."""
    labels = {option.value: option.label for option in field.options or []}
    if field.kind in TEXT_KINDS or field.kind in {FieldKind.email, FieldKind.date}:
        return [(PROVIDED_BUCKET_KEY, PROVIDED_BUCKET_LABEL)]

    answer = parse_answer(field, value)
    if isinstance(answer, ChoiceAnswer):
        key = answer.value.strip()
        return [(key, labels.get(key, key))] if key else []
    if isinstance(answer, MultiChoiceAnswer):
        return [(entry, labels.get(entry, entry)) for entry in answer.values if entry.strip()]
    if isinstance(answer, NumberAnswer):
        key = format_number_bucket(answer.value)
        return [(key, key)]
    return []


def responses_for_day(db: Session, survey_id: uuid.UUID, date_key: str) -> list[SurveyResponse]:
    start, end = day_bounds(date_key)
    return (
        db.query(SurveyResponse)
        .filter(SurveyResponse.survey_id == survey_id)
        .filter(SurveyResponse.submitted_at >= start)
        .filter(SurveyResponse.submitted_at < end)
        .order_by(SurveyResponse.submitted_at.asc())
        .all()
    )


class _VersionCache:
    def __init__(self, db: Session):
        self._db = db
        self._fields: dict[uuid.UUID, list[SurveyField] | None] = {}

    def fields_for(self, version_id: uuid.UUID) -> list[SurveyField] | None:
        if version_id not in self._fields:
            version = self._db.get(SurveyVersion, version_id)
            self._fields[version_id] = load_fields(version.fields) if version is not None else None
        return self._fields[version_id]


def _sync_rows(
    db: Session,
    model,
    survey_id: uuid.UUID,
    date_key: str,
    rows: list[dict],
    key_of: Callable[[object], tuple],
    now: datetime,
) -> None:
    """Make the stored rows for one survey day match ``rows`` exactly.

    Existing rows are updated in place, missing ones inserted, and any row
    whose key is absent from ``rows`` (or duplicates an earlier one) deleted.
    """
    existing = (
        db.query(model)
        .filter(model.survey_id == survey_id)
        .filter(model.date_key == date_key)
        .order_by(model.id)
        .all()
    )
    by_key = {}
    for row in existing:
        key = key_of(row)
        if key in by_key:
            db.delete(row)
            continue
        by_key[key] = row

    for values in rows:
        key = key_of(values)
        current = by_key.pop(key, None)
        if current is None:
            db.add(model(survey_id=survey_id, date_key=date_key, updated_at=now, **values))
            continue
        for name, value in values.items():
            setattr(current, name, value)
        current.updated_at = now

    for stale in by_key.values():
        db.delete(stale)


def _field_key(row) -> tuple:
    return (row["field_id"],) if isinstance(row, dict) else (row.field_id,)


def _bucket_key(row) -> tuple:
    if isinstance(row, dict):
        return (row["field_id"], row["bucket_key"])
    return (row.field_id, row.bucket_key)


def _upsert_analytics_row(db: Session, survey_id: uuid.UUID, date_key: str, values: dict, now: datetime) -> None:
    _sync_rows(db, SurveyAnalyticsDaily, survey_id, date_key, [values], lambda row: (), now)


def _text_rows(aggregates: dict[str, list[str]]) -> list[dict]:
    return [
        {
            "field_id": field_id,
            "top_phrases": top_phrases(answers),
            "sampled_snippets": sampled_snippets(answers),
        }
        for field_id, answers in aggregates.items()
    ]


def rebuild_daily_materialized_analytics(
    db: Session,
    survey_id: uuid.UUID,
    date_key: str,
    include_text_insights: bool = False,
    now: datetime | None = None,
) -> dict:
    """Recompute the derived rollups of one survey day. The caller commits.

    A submission reaches the first field unconditionally and every field up
    to the highest-ordered one it answered.
    """
    moment = now or now_utc()
    day = normalize_date_key(date_key)
    tracer = get_tracer(__name__)
    with tracer.start_as_current_span("analytics.rebuild_day") as span:
        span.set_attribute("survey_id", str(survey_id))
        span.set_attribute("date_key", day)

        responses = responses_for_day(db, survey_id, day)
        versions = _VersionCache(db)
        aggregates: dict[str, FieldAggregate] = {}
        total_graded = 0
        total_correct = 0
        total_incorrect = 0
        score_sum = 0.0

        for response in responses:
            grading = response.grading or {}
            if grading.get("gradable_count", 0) > 0:
                total_graded += 1
                score_sum += float(grading.get("score_percent", 0))
            total_correct += int(grading.get("correct_count", 0))
            total_incorrect += int(grading.get("incorrect_count", 0))

            fields = versions.fields_for(response.survey_version_id)
            if not fields:
                continue
            answers = response.answers or {}
            max_reached_order = 0
            for field in fields:
                if is_answer_present(answers.get(field.id)):
                    max_reached_order = max(max_reached_order, field.order)

            for field in fields:
                aggregate = aggregates.get(field.id)
                if aggregate is None:
                    aggregate = aggregates[field.id] = FieldAggregate.for_field(field)
                if field.order <= max_reached_order:
                    aggregate.reached_count += 1
                value = answers.get(field.id)
                if not is_answer_present(value):
                    continue
                aggregate.answered_count += 1
                for key, label in bucket_entries(field, value):
                    aggregate.add_bucket(key, label)
                if field.kind in TEXT_KINDS and isinstance(value, str) and value.strip():
                    aggregate.text_answers.append(value)

        metrics = (
            db.query(SurveyMetricsDaily)
            .filter(SurveyMetricsDaily.survey_id == survey_id)
            .filter(SurveyMetricsDaily.date_key == day)
            .first()
        )
        completed = max(metrics.completed if metrics else 0, len(responses))
        started = max(metrics.started if metrics else 0, completed)
        _upsert_analytics_row(
            db,
            survey_id,
            day,
            {
                "started": started,
                "completed": completed,
                "idle": metrics.idle if metrics else 0,
                "abandoned": metrics.abandoned if metrics else 0,
                "reactivated": metrics.reactivated if metrics else 0,
                "avg_score_percent": round2(score_sum / total_graded) if total_graded else 0.0,
                "total_graded": total_graded,
                "total_correct": total_correct,
                "total_incorrect": total_incorrect,
            },
            moment,
        )

        ordered = sorted(aggregates.values(), key=lambda aggregate: aggregate.order)
        field_rows = [
            {
                "field_id": aggregate.field_id,
                "reached_count": aggregate.reached_count,
                "answered_count": aggregate.answered_count,
                "dropoff_count": max(aggregate.reached_count - aggregate.answered_count, 0),
            }
            for aggregate in ordered
        ]
        _sync_rows(db, SurveyFieldAnalyticsDaily, survey_id, day, field_rows, _field_key, moment)

        bucket_rows = [row for aggregate in ordered for row in aggregate.bucket_rows()]
        _sync_rows(db, SurveyAnswerBucketsDaily, survey_id, day, bucket_rows, _bucket_key, moment)

        text_row_count = 0
        if include_text_insights:
            text_rows = _text_rows(
                {aggregate.field_id: aggregate.text_answers for aggregate in ordered if aggregate.kind in TEXT_KINDS}
            )
            _sync_rows(db, SurveyTextInsightsDaily, survey_id, day, text_rows, _field_key, moment)
            text_row_count = len(text_rows)

        db.flush()

    logger.debug(
        "analytics_rebuild_day survey_id=%s date=%s responses=%d fields=%d buckets=%d",
        survey_id,
        day,
        len(responses),
        len(field_rows),
        len(bucket_rows),
    )
    return {
        "date_key": day,
        "responses": len(responses),
        "field_rows": len(field_rows),
        "bucket_rows": len(bucket_rows),
        "text_rows": text_row_count,
    }


def refresh_daily_text_insights(
    db: Session,
    survey_id: uuid.UUID,
    date_key: str,
    now: datetime | None = None,
) -> int:
    """Recompute only the text insight rows of one survey day. The caller commits."""
    moment = now or now_utc()
    day = normalize_date_key(date_key)
    versions = _VersionCache(db)
    answers_by_field: dict[str, list[str]] = {}
    for response in responses_for_day(db, survey_id, day):
        fields = versions.fields_for(response.survey_version_id)
        if not fields:
            continue
        answers = response.answers or {}
        for field in fields:
            if field.kind not in TEXT_KINDS:
                continue
            value = answers.get(field.id)
            if isinstance(value, str) and value.strip():
                answers_by_field.setdefault(field.id, []).append(value)

    rows = _text_rows(answers_by_field)
    _sync_rows(db, SurveyTextInsightsDaily, survey_id, day, rows, _field_key, moment)
    db.flush()
    return len(rows)
