from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from surveydesk.api.deps import get_db
from surveydesk.schemas.respondent import (
    AnswerSave,
    AnswerSaveResponse,
    InviteResolution,
    PublicSurvey,
    PublicSurveyVersion,
    SessionSnapshot,
    SessionStartRequest,
    SessionStartResponse,
    SubmitResponse,
)
from surveydesk.services import respondent as respondent_service
from surveydesk.services.errors import SurveyNotFoundError
from surveydesk.services.invites import resolve_invite

router = APIRouter(prefix="/respondent", tags=["respondent"])


@router.get("/invites/{token}", response_model=InviteResolution)
def get_invite(token: str, db: Session = Depends(get_db)):
    """Resolve an invite link without consuming it."""
    resolved = resolve_invite(db, token)
    if resolved["invite"] is None:
        return InviteResolution(state=resolved["state"])
    return InviteResolution(
        state=resolved["state"],
        survey=PublicSurvey.model_validate(resolved["survey"]),
        version=PublicSurveyVersion.model_validate(resolved["version"]),
        expires_at=resolved["invite"].expires_at,
    )


@router.post("/sessions", response_model=SessionStartResponse)
def start_session(payload: SessionStartRequest, db: Session = Depends(get_db)):
    return respondent_service.start_or_resume_session(
        db,
        payload.invite_token,
        payload.respondent_key,
        prior_session_id=payload.prior_session_public_id,
    )


@router.put("/sessions/{public_id}/answers/{field_id}", response_model=AnswerSaveResponse)
def save_answer(public_id: str, field_id: str, payload: AnswerSave, db: Session = Depends(get_db)):
    return respondent_service.save_answer(db, public_id, field_id, payload.value)


@router.post("/sessions/{public_id}/submit", response_model=SubmitResponse)
def submit(public_id: str, db: Session = Depends(get_db)):
    return respondent_service.submit_session(db, public_id)


@router.get("/sessions/{public_id}", response_model=SessionSnapshot)
def get_session(public_id: str, db: Session = Depends(get_db)):
    session = respondent_service.get_session_snapshot(db, public_id)
    if session is None:
        raise SurveyNotFoundError(detail="Session not found.")
    return session
