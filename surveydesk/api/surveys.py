from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from surveydesk.api.deps import get_app_user, get_db
from surveydesk.models.survey import SurveyStatus
from surveydesk.models.user import AppUser
from surveydesk.schemas.invite import InviteCreate, InviteIssued, InviteRead
from surveydesk.schemas.survey import (
    SurveyCreate,
    SurveyDetail,
    SurveyRead,
    SurveyUpdate,
    SurveyVersionCreate,
    SurveyVersionRead,
)
from surveydesk.services.errors import SurveyNotFoundError
from surveydesk.services.invites import invite_link, invite_manager
from surveydesk.services.surveys import survey_manager

router = APIRouter(prefix="/surveys", tags=["surveys"])


@router.post("", response_model=SurveyRead, status_code=status.HTTP_201_CREATED)
def create_survey(payload: SurveyCreate, user: AppUser = Depends(get_app_user), db: Session = Depends(get_db)):
    return survey_manager.create(db, user, payload)


@router.get("", response_model=list[SurveyRead])
def list_surveys(
    status: SurveyStatus | None = None,
    search: str | None = None,
    user: AppUser = Depends(get_app_user),
    db: Session = Depends(get_db),
):
    """List surveys visible to the caller, most recently updated first."""
    return survey_manager.list(db, user, status=status, search=search)


@router.get("/{survey_id}", response_model=SurveyDetail)
def get_survey(survey_id: str, user: AppUser = Depends(get_app_user), db: Session = Depends(get_db)):
    detail = survey_manager.detail(db, user, survey_id)
    if detail is None:
        raise SurveyNotFoundError(detail="Survey not found.")
    current = detail["current_version"]
    return SurveyDetail(
        **SurveyRead.model_validate(detail["survey"]).model_dump(),
        versions=detail["versions"],
        current_version=SurveyVersionRead.model_validate(current) if current is not None else None,
    )


@router.patch("/{survey_id}", response_model=SurveyRead)
def update_survey(
    survey_id: str,
    payload: SurveyUpdate,
    user: AppUser = Depends(get_app_user),
    db: Session = Depends(get_db),
):
    return survey_manager.update(db, user, survey_id, payload)


@router.post("/{survey_id}/versions", response_model=SurveyVersionRead, status_code=status.HTTP_201_CREATED)
def create_version(
    survey_id: str,
    payload: SurveyVersionCreate,
    user: AppUser = Depends(get_app_user),
    db: Session = Depends(get_db),
):
    """Save a new draft version of the survey's fields."""
    return survey_manager.create_version_draft(db, user, survey_id, payload.fields, payload.settings)


@router.post("/{survey_id}/versions/{version_id}/publish", response_model=SurveyRead)
def publish_version(
    survey_id: str,
    version_id: str,
    user: AppUser = Depends(get_app_user),
    db: Session = Depends(get_db),
):
    return survey_manager.publish_version(db, user, survey_id, version_id)


@router.get("/{survey_id}/invites", response_model=list[InviteRead])
def list_invites(survey_id: str, user: AppUser = Depends(get_app_user), db: Session = Depends(get_db)):
    return invite_manager.list_for_survey(db, user, survey_id)


@router.post("/{survey_id}/invites", response_model=InviteIssued, status_code=status.HTTP_201_CREATED)
def create_invite(
    survey_id: str,
    payload: InviteCreate,
    user: AppUser = Depends(get_app_user),
    db: Session = Depends(get_db),
):
    """Issue an invite. The plaintext token is only returned here."""
    invite, token = invite_manager.create(
        db,
        user,
        survey_id,
        payload.survey_version_id,
        max_completions=payload.max_completions,
        expires_at=payload.expires_at,
    )
    return InviteIssued(invite=InviteRead.model_validate(invite), token=token, link=invite_link(token))


@router.post("/invites/{invite_id}/revoke", response_model=InviteRead)
def revoke_invite(invite_id: str, user: AppUser = Depends(get_app_user), db: Session = Depends(get_db)):
    return invite_manager.revoke(db, user, invite_id)
