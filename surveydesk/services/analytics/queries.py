"""Dashboard reads over the daily rollups.

Every read is bounded by a parsed date window and restricted to the survey
owner or an admin. A survey that no longer exists reads as empty, except for
the field breakdown and CSV export which raise ``NOT_FOUND``.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from dataclasses import dataclass

from sqlalchemy import func
from sqlalchemy.orm import Session

from surveydesk.config import settings
from surveydesk.models.analytics import (
    SurveyAnalyticsDaily,
    SurveyAnswerBucketsDaily,
    SurveyFieldAnalyticsDaily,
    SurveyTextInsightsDaily,
)
from surveydesk.models.survey import Survey, SurveyVersion
from surveydesk.models.user import AppUser
from surveydesk.schemas.survey import SELECT_KINDS, TEXT_KINDS, FieldKind
from surveydesk.services.analytics.materialization import RATING_BUCKETS
from surveydesk.services.analytics.text_insights import merge_ranked
from surveydesk.services.analytics.windows import DateRange, parse_date_range
from surveydesk.services.common import clamp, coerce_uuid, format_fixed2, round2, to_percent
from surveydesk.services.errors import SurveyLimitError, SurveyNotFoundError, SurveyValidationError
from surveydesk.services.users import require_survey_access
from surveydesk.services.validation import load_fields

OTHER_BUCKET_KEY = "__other__"
OTHER_BUCKET_LABEL = "Other"
MAX_FREEFORM_BUCKETS = 20
DEFAULT_FIELD_BUCKET_LIMIT = 20
SAMPLED_TEXT_LIMIT = 10

CSV_REPORTS = ("funnel", "scoring", "answer_breakdown")

FUNNEL_CSV_HEADERS = [
    "dateKey",
    "started",
    "completed",
    "idle",
    "abandoned",
    "reactivated",
    "conversionRate",
    "avgScorePercent",
]
SCORING_CSV_HEADERS = ["dateKey", "totalGraded", "avgScorePercent"]
ANSWER_CSV_HEADERS = [
    "fieldId",
    "label",
    "kind",
    "totalAnswered",
    "bucketKey",
    "bucketLabel",
    "bucketCount",
    "bucketPercent",
]


@dataclass
class FieldMeta:
    label: str
    kind: FieldKind
    order: int
    option_order: list[str]
    option_labels: dict[str, str]


def _survey_with_access(db: Session, user: AppUser, survey_id) -> Survey | None:
    survey = db.get(Survey, coerce_uuid(survey_id, "Survey"))
    if survey is None:
        return None
    require_survey_access(user, survey)
    return survey


def _require_survey_with_access(db: Session, user: AppUser, survey_id) -> Survey:
    survey = _survey_with_access(db, user, survey_id)
    if survey is None:
        raise SurveyNotFoundError(detail="Survey not found.")
    return survey


def _window(from_date: str, to_date: str) -> DateRange:
    return parse_date_range(from_date, to_date, max_days=settings.analytics_max_window_days)


def _in_window(query, model, survey_id: uuid.UUID, window: DateRange):
    return (
        query.filter(model.survey_id == survey_id)
        .filter(model.date_key >= window.from_date)
        .filter(model.date_key <= window.to_date)
    )


def _daily_rows(db: Session, survey_id: uuid.UUID, window: DateRange) -> dict[str, SurveyAnalyticsDaily]:
    rows = _in_window(db.query(SurveyAnalyticsDaily), SurveyAnalyticsDaily, survey_id, window).all()
    return {row.date_key: row for row in rows}


def get_survey_field_meta(db: Session, survey_id: uuid.UUID) -> tuple[dict[str, FieldMeta], list[str]]:
    """Return field metadata across all versions plus the latest version's field ids.

    When a field id appears in several versions the newest definition wins.
    """
    versions = (
        db.query(SurveyVersion)
        .filter(SurveyVersion.survey_id == survey_id)
        .order_by(SurveyVersion.version.desc())
        .all()
    )
    meta: dict[str, FieldMeta] = {}
    latest_ids: list[str] = []
    for index, version in enumerate(versions):
        fields = load_fields(version.fields)
        if index == 0:
            latest_ids = [field.id for field in fields]
        for field in fields:
            if field.id in meta:
                continue
            options = field.options or []
            meta[field.id] = FieldMeta(
                label=field.label,
                kind=field.kind,
                order=field.order,
                option_order=[option.value for option in options],
                option_labels={option.value: option.label for option in options},
            )
    return meta, latest_ids


def normalize_bucket_rows(
    kind: FieldKind,
    option_order: list[str],
    option_labels: dict[str, str],
    buckets: list[dict],
) -> list[dict]:
    """Pad and order bucket rows so charts render complete, stable axes.

    Select kinds list every configured option in option order, ratings list
    1 through 5, and anything else is ranked by count with the tail beyond
    twenty rows folded into a single ``Other`` bucket.
    """
    normalized = [dict(bucket) for bucket in buckets]
    present = {bucket["key"] for bucket in normalized}

    if kind in SELECT_KINDS:
        for value in option_order:
            if value not in present:
                normalized.append({"key": value, "label": option_labels.get(value, value), "count": 0})
        position = {value: index for index, value in enumerate(option_order)}
        return sorted(normalized, key=lambda bucket: position.get(bucket["key"], -1))

    if kind == FieldKind.rating_1_5:
        for rating in RATING_BUCKETS:
            if rating not in present:
                normalized.append({"key": rating, "label": rating, "count": 0})
        return sorted(normalized, key=lambda bucket: _numeric_key(bucket["key"]))

    normalized.sort(key=lambda bucket: (-bucket["count"], bucket["label"]))
    if len(normalized) > MAX_FREEFORM_BUCKETS:
        top = normalized[: MAX_FREEFORM_BUCKETS - 1]
        other = sum(bucket["count"] for bucket in normalized[MAX_FREEFORM_BUCKETS - 1 :])
        if other > 0:
            top.append({"key": OTHER_BUCKET_KEY, "label": OTHER_BUCKET_LABEL, "count": other})
        return top
    return normalized


def _numeric_key(value: str) -> float:
    try:
        return float(value)
    except ValueError:
        return float("inf")


def _with_percent(buckets: list[dict], total: int) -> list[dict]:
    return [
        {
            "key": bucket["key"],
            "label": bucket["label"],
            "count": bucket["count"],
            "percent": to_percent(bucket["count"], total),
        }
        for bucket in buckets
    ]


def _sum_buckets(rows) -> dict[str, dict[str, dict]]:
    per_field: dict[str, dict[str, dict]] = defaultdict(dict)
    for row in rows:
        existing = per_field[row.field_id].setdefault(row.bucket_key, {"label": row.bucket_label, "count": 0})
        existing["count"] += row.count
        existing["label"] = row.bucket_label
    return per_field


def get_survey_funnel(db: Session, user: AppUser, survey_id, from_date: str, to_date: str) -> dict:
    survey = _survey_with_access(db, user, survey_id)
    totals = {"started": 0, "completed": 0, "idle": 0, "abandoned": 0, "reactivated": 0}
    if survey is None:
        return {**totals, "conversion_rate": 0.0}

    window = _window(from_date, to_date)
    for row in _daily_rows(db, survey.id, window).values():
        for name in totals:
            totals[name] += getattr(row, name) or 0
    return {**totals, "conversion_rate": to_percent(totals["completed"], totals["started"])}


def get_scoring_summary(db: Session, user: AppUser, survey_id, from_date: str, to_date: str) -> dict:
    survey = _survey_with_access(db, user, survey_id)
    if survey is None:
        return {"graded_responses": 0, "avg_score_percent": 0.0, "total_correct": 0, "total_incorrect": 0}

    window = _window(from_date, to_date)
    rows = list(_daily_rows(db, survey.id, window).values())
    graded = sum(row.total_graded or 0 for row in rows)
    weighted = sum((row.avg_score_percent or 0.0) * (row.total_graded or 0) for row in rows)
    return {
        "graded_responses": graded,
        "avg_score_percent": round2(weighted / graded) if graded > 0 else 0.0,
        "total_correct": sum(row.total_correct or 0 for row in rows),
        "total_incorrect": sum(row.total_incorrect or 0 for row in rows),
    }


def get_trend_series(db: Session, user: AppUser, survey_id, from_date: str, to_date: str) -> list[dict]:
    survey = _survey_with_access(db, user, survey_id)
    if survey is None:
        return []

    window = _window(from_date, to_date)
    by_date = _daily_rows(db, survey.id, window)
    series = []
    for date_key in window.day_keys:
        row = by_date.get(date_key)
        started = row.started if row else 0
        completed = row.completed if row else 0
        series.append(
            {
                "date_key": date_key,
                "started": started,
                "completed": completed,
                "idle": row.idle if row else 0,
                "abandoned": row.abandoned if row else 0,
                "reactivated": row.reactivated if row else 0,
                "conversion_rate": to_percent(completed, started),
                "avg_score_percent": row.avg_score_percent if row else 0.0,
            }
        )
    return series


def _answer_breakdown(db: Session, survey_id: uuid.UUID, window: DateRange) -> list[dict]:
    meta, latest_ids = get_survey_field_meta(db, survey_id)

    answered: dict[str, int] = defaultdict(int)
    for row in _in_window(db.query(SurveyFieldAnalyticsDaily), SurveyFieldAnalyticsDaily, survey_id, window):
        answered[row.field_id] += row.answered_count
    buckets = _sum_buckets(
        _in_window(db.query(SurveyAnswerBucketsDaily), SurveyAnswerBucketsDaily, survey_id, window)
    )

    # Current fields always render; retired ones only while they still have answers.
    field_ids = list(latest_ids)
    for field_id in [*answered, *buckets]:
        if field_id not in field_ids and answered.get(field_id, 0) > 0:
            field_ids.append(field_id)

    rows = []
    for field_id in field_ids:
        field_meta = meta.get(field_id)
        if field_meta is None:
            continue
        total = answered.get(field_id, 0)
        raw = [
            {"key": key, "label": value["label"], "count": value["count"]}
            for key, value in buckets.get(field_id, {}).items()
        ]
        normalized = normalize_bucket_rows(field_meta.kind, field_meta.option_order, field_meta.option_labels, raw)
        rows.append(
            {
                "field_id": field_id,
                "label": field_meta.label,
                "kind": field_meta.kind,
                "order": field_meta.order,
                "total_answered": total,
                "buckets": _with_percent(normalized, total),
            }
        )
    rows.sort(key=lambda row: row["order"])
    for row in rows:
        row.pop("order")
    return rows


def get_answer_breakdown(db: Session, user: AppUser, survey_id, from_date: str, to_date: str) -> list[dict]:
    survey = _survey_with_access(db, user, survey_id)
    if survey is None:
        return []
    return _answer_breakdown(db, survey.id, _window(from_date, to_date))


def get_field_breakdown(
    db: Session,
    user: AppUser,
    survey_id,
    field_id: str,
    from_date: str,
    to_date: str,
    limit: int | None = None,
) -> dict:
    survey = _require_survey_with_access(db, user, survey_id)
    window = _window(from_date, to_date)
    meta, _ = get_survey_field_meta(db, survey.id)
    field_meta = meta.get(field_id)
    if field_meta is None:
        raise SurveyNotFoundError(code="FIELD_NOT_FOUND", detail=f"Unknown field: {field_id}")

    bucket_limit = clamp(limit or DEFAULT_FIELD_BUCKET_LIMIT, 1, settings.analytics_max_buckets)

    answered_by_date: dict[str, int] = defaultdict(int)
    total_answered = 0
    field_rows = _in_window(
        db.query(SurveyFieldAnalyticsDaily), SurveyFieldAnalyticsDaily, survey.id, window
    ).filter(SurveyFieldAnalyticsDaily.field_id == field_id)
    for row in field_rows:
        total_answered += row.answered_count
        answered_by_date[row.date_key] += row.answered_count

    bucket_rows = _in_window(
        db.query(SurveyAnswerBucketsDaily), SurveyAnswerBucketsDaily, survey.id, window
    ).filter(SurveyAnswerBucketsDaily.field_id == field_id)
    raw = [
        {"key": key, "label": value["label"], "count": value["count"]}
        for key, value in _sum_buckets(bucket_rows).get(field_id, {}).items()
    ]
    normalized = normalize_bucket_rows(field_meta.kind, field_meta.option_order, field_meta.option_labels, raw)

    result = {
        "field_id": field_id,
        "label": field_meta.label,
        "kind": field_meta.kind,
        "total_answered": total_answered,
        "buckets": _with_percent(normalized[:bucket_limit], total_answered),
        "daily_trend": [
            {"date_key": date_key, "answered_count": answered_by_date.get(date_key, 0)}
            for date_key in window.day_keys
        ],
    }
    if field_meta.kind not in TEXT_KINDS:
        return result

    text_rows = (
        _in_window(db.query(SurveyTextInsightsDaily), SurveyTextInsightsDaily, survey.id, window)
        .filter(SurveyTextInsightsDaily.field_id == field_id)
        .all()
    )
    phrases = [entry for row in text_rows for entry in row.top_phrases or []]
    snippets = [entry for row in text_rows for entry in row.sampled_snippets or []]
    result["top_phrases"] = merge_ranked(phrases, "phrase", settings.analytics_max_top_phrases)
    result["sampled_text"] = merge_ranked(snippets, "snippet", SAMPLED_TEXT_LIMIT)
    return result


def get_dropoff_by_step(db: Session, user: AppUser, survey_id, from_date: str, to_date: str) -> list[dict]:
    survey = _survey_with_access(db, user, survey_id)
    if survey is None:
        return []

    window = _window(from_date, to_date)
    meta, _ = get_survey_field_meta(db, survey.id)
    sums = (
        _in_window(
            db.query(
                SurveyFieldAnalyticsDaily.field_id,
                func.sum(SurveyFieldAnalyticsDaily.reached_count),
                func.sum(SurveyFieldAnalyticsDaily.answered_count),
                func.sum(SurveyFieldAnalyticsDaily.dropoff_count),
            ),
            SurveyFieldAnalyticsDaily,
            survey.id,
            window,
        )
        .group_by(SurveyFieldAnalyticsDaily.field_id)
        .all()
    )

    rows = []
    for field_id, reached, answered, dropoff in sums:
        field_meta = meta.get(field_id)
        if field_meta is None:
            continue
        reached = int(reached or 0)
        dropoff = int(dropoff or 0)
        rows.append(
            (
                field_meta.order,
                {
                    "field_id": field_id,
                    "label": field_meta.label,
                    "reached_count": reached,
                    "answered_count": int(answered or 0),
                    "dropoff_count": dropoff,
                    "dropoff_rate": to_percent(dropoff, reached),
                },
            )
        )
    rows.sort(key=lambda item: item[0])
    return [row for _, row in rows]


def _enforce_csv_row_limit(row_count: int) -> None:
    if row_count > settings.analytics_max_csv_rows:
        raise SurveyLimitError(
            "ANALYTICS_EXPORT_TOO_LARGE",
            f"CSV row limit exceeded ({row_count}). Reduce date range or filter scope.",
            status_code=413,
        )


def get_csv_export(
    db: Session, user: AppUser, survey_id, report: str, from_date: str, to_date: str
) -> dict:
    """Return ``{filename, headers, rows}`` for one report with every cell as text."""
    if report not in CSV_REPORTS:
        raise SurveyValidationError("INVALID_REPORT", f"Unknown report: {report}")
    survey = _require_survey_with_access(db, user, survey_id)
    window = _window(from_date, to_date)

    if report == "funnel":
        by_date = _daily_rows(db, survey.id, window)
        headers = FUNNEL_CSV_HEADERS
        rows = []
        for date_key in window.day_keys:
            row = by_date.get(date_key)
            started = row.started if row else 0
            completed = row.completed if row else 0
            rows.append(
                [
                    date_key,
                    str(started),
                    str(completed),
                    str(row.idle if row else 0),
                    str(row.abandoned if row else 0),
                    str(row.reactivated if row else 0),
                    format_fixed2(to_percent(completed, started)),
                    format_fixed2(row.avg_score_percent if row else 0),
                ]
            )
    elif report == "scoring":
        by_date = _daily_rows(db, survey.id, window)
        headers = SCORING_CSV_HEADERS
        rows = [
            [
                date_key,
                str(by_date[date_key].total_graded if date_key in by_date else 0),
                format_fixed2(by_date[date_key].avg_score_percent if date_key in by_date else 0),
            ]
            for date_key in window.day_keys
        ]
    else:
        headers = ANSWER_CSV_HEADERS
        rows = [
            [
                field["field_id"],
                field["label"],
                field["kind"].value,
                str(field["total_answered"]),
                bucket["key"],
                bucket["label"],
                str(bucket["count"]),
                format_fixed2(bucket["percent"]),
            ]
            for field in _answer_breakdown(db, survey.id, window)
            for bucket in field["buckets"]
        ]

    _enforce_csv_row_limit(len(rows))
    return {
        "filename": f"survey_{survey.id}_{report}_{window.from_date}_to_{window.to_date}.csv",
        "headers": headers,
        "rows": rows,
    }
