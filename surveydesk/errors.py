import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from surveydesk.services.errors import SurveyError

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    """Render domain and request validation errors as ``{code, message}`` JSON."""

    @app.exception_handler(SurveyError)
    async def _survey_error_handler(request: Request, exc: SurveyError):
        if exc.status_code >= 500:
            logger.error("survey_error path=%s code=%s detail=%s", request.url.path, exc.code, exc.detail)
        else:
            logger.info("survey_error path=%s code=%s", request.url.path, exc.code)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def _request_validation_handler(request: Request, exc: RequestValidationError):
        errors = []
        for error in exc.errors():
            errors.append(
                {
                    "loc": [str(part) for part in error.get("loc", ())],
                    "msg": str(error.get("msg", "")),
                    "type": str(error.get("type", "")),
                }
            )
        return JSONResponse(
            status_code=422,
            content={"code": "INVALID_REQUEST", "message": "Request validation failed.", "errors": errors},
        )
