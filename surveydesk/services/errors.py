"""Error taxonomy for survey services.

Every failure surfaced to respondents or admins is a ``SurveyError`` carrying a
stable machine readable ``code`` and a human readable ``detail``.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(eq=False)
class SurveyError(Exception):
    code: str
    detail: str
    status_code: int = 400
    field_id: str | None = None

    def __str__(self) -> str:
        return f"{self.code}: {self.detail}"

    def to_payload(self) -> dict:
        payload = {"code": self.code, "message": self.detail}
        if self.field_id is not None:
            payload["field_id"] = self.field_id
        return payload


class SurveyValidationError(SurveyError):
    def __init__(self, code: str, detail: str, field_id: str | None = None):
        super().__init__(code=code, detail=detail, status_code=400, field_id=field_id)


class SurveyAuthError(SurveyError):
    def __init__(self, code: str = "UNAUTHORIZED", detail: str = "Authentication required."):
        super().__init__(code=code, detail=detail, status_code=401)


class SurveyForbiddenError(SurveyError):
    def __init__(self, code: str = "FORBIDDEN", detail: str = "Forbidden."):
        super().__init__(code=code, detail=detail, status_code=403)


class SurveyNotFoundError(SurveyError):
    def __init__(self, code: str = "NOT_FOUND", detail: str = "Not found."):
        super().__init__(code=code, detail=detail, status_code=404)


class SurveyConflictError(SurveyError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=409)


class SurveyLimitError(SurveyError):
    def __init__(self, code: str, detail: str, status_code: int = 400):
        super().__init__(code=code, detail=detail, status_code=status_code)
