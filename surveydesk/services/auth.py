"""Bearer token identity resolution."""

from __future__ import annotations

from dataclasses import dataclass

from jose import JWTError, jwt

from surveydesk.config import settings
from surveydesk.services.errors import SurveyAuthError

DEFAULT_EMAIL = "unknown@example.com"


@dataclass(frozen=True)
class Identity:
    subject: str
    email: str


def decode_identity(token: str | None) -> Identity:
    """Validate a bearer JWT and return the caller's identity.

    Raises ``SurveyAuthError`` when the token is missing, malformed, signed
    with another key, expired or lacks a subject.
    """
    if not token:
        raise SurveyAuthError()
    if not settings.jwt_secret:
        raise SurveyAuthError(detail="Authentication is not configured.")
    options = {"verify_aud": bool(settings.jwt_audience)}
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options=options,
        )
    except JWTError as exc:
        raise SurveyAuthError(detail="Invalid token.") from exc

    subject = str(payload.get("sub") or "").strip()
    if not subject:
        raise SurveyAuthError(detail="Token has no subject.")
    email = str(payload.get("email") or "").strip() or DEFAULT_EMAIL
    return Identity(subject=subject, email=email)
