import csv
import io

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from surveydesk.api.deps import get_app_user, get_db
from surveydesk.models.user import AppUser
from surveydesk.schemas.analytics import (
    CsvExportRead,
    CsvReport,
    DropoffStep,
    FieldAnswerBreakdown,
    FieldBreakdownRead,
    FunnelRead,
    IdleSessionRead,
    RebuildRequest,
    RebuildResult,
    ScoringSummaryRead,
    TrendPoint,
)
from surveydesk.services.analytics import jobs, queries
from surveydesk.services.sessions import list_idle_sessions
from surveydesk.services.surveys import get_survey_for_user

router = APIRouter(prefix="/surveys/{survey_id}/analytics", tags=["analytics"])


def _csv_response(export: dict) -> StreamingResponse:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(export["headers"])
    writer.writerows(export["rows"])
    output.seek(0)
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={export['filename']}"},
    )


@router.get("/funnel", response_model=FunnelRead)
def get_funnel(
    survey_id: str,
    from_date: str,
    to_date: str,
    user: AppUser = Depends(get_app_user),
    db: Session = Depends(get_db),
):
    return queries.get_survey_funnel(db, user, survey_id, from_date, to_date)


@router.get("/scoring", response_model=ScoringSummaryRead)
def get_scoring(
    survey_id: str,
    from_date: str,
    to_date: str,
    user: AppUser = Depends(get_app_user),
    db: Session = Depends(get_db),
):
    return queries.get_scoring_summary(db, user, survey_id, from_date, to_date)


@router.get("/trend", response_model=list[TrendPoint])
def get_trend(
    survey_id: str,
    from_date: str,
    to_date: str,
    user: AppUser = Depends(get_app_user),
    db: Session = Depends(get_db),
):
    return queries.get_trend_series(db, user, survey_id, from_date, to_date)


@router.get("/answers", response_model=list[FieldAnswerBreakdown])
def get_answers(
    survey_id: str,
    from_date: str,
    to_date: str,
    user: AppUser = Depends(get_app_user),
    db: Session = Depends(get_db),
):
    return queries.get_answer_breakdown(db, user, survey_id, from_date, to_date)


@router.get("/fields/{field_id}", response_model=FieldBreakdownRead, response_model_exclude_none=True)
def get_field(
    survey_id: str,
    field_id: str,
    from_date: str,
    to_date: str,
    limit: int | None = Query(default=None, ge=1),
    user: AppUser = Depends(get_app_user),
    db: Session = Depends(get_db),
):
    return queries.get_field_breakdown(db, user, survey_id, field_id, from_date, to_date, limit=limit)


@router.get("/dropoff", response_model=list[DropoffStep])
def get_dropoff(
    survey_id: str,
    from_date: str,
    to_date: str,
    user: AppUser = Depends(get_app_user),
    db: Session = Depends(get_db),
):
    return queries.get_dropoff_by_step(db, user, survey_id, from_date, to_date)


@router.get("/export", response_model=CsvExportRead)
def export_report(
    survey_id: str,
    report: CsvReport,
    from_date: str,
    to_date: str,
    export_format: str = Query(default="json", alias="format", pattern="^(json|csv)$"),
    user: AppUser = Depends(get_app_user),
    db: Session = Depends(get_db),
):
    """Export a report as JSON rows, or as a CSV download with ``format=csv``."""
    export = queries.get_csv_export(db, user, survey_id, report, from_date, to_date)
    if export_format == "csv":
        return _csv_response(export)
    return export


@router.get("/idle-sessions", response_model=list[IdleSessionRead])
def get_idle_sessions(
    survey_id: str,
    page: int = Query(default=0, ge=0),
    limit: int = Query(default=50),
    user: AppUser = Depends(get_app_user),
    db: Session = Depends(get_db),
):
    return list_idle_sessions(db, user, survey_id, page=page, limit=limit)


@router.post("/rebuild", response_model=RebuildResult)
def rebuild(
    survey_id: str,
    payload: RebuildRequest,
    user: AppUser = Depends(get_app_user),
    db: Session = Depends(get_db),
):
    survey = get_survey_for_user(db, user, survey_id)
    return jobs.rebuild_materialized_window(
        db, survey.id, payload.from_date, payload.to_date, reason=payload.reason or "manual_rebuild"
    )
