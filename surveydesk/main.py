from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from surveydesk.api.analytics import router as analytics_router
from surveydesk.api.outbox import router as outbox_router
from surveydesk.api.respondent import router as respondent_router
from surveydesk.api.surveys import router as surveys_router
from surveydesk.api.users import router as users_router
from surveydesk.errors import register_error_handlers
from surveydesk.logging import configure_logging
from surveydesk.telemetry import setup_otel

configure_logging()

app = FastAPI(title="surveydesk API")

setup_otel(app)
register_error_handlers(app)


def _include_api_router(router, dependencies=None):
    app.include_router(router, dependencies=dependencies)
    app.include_router(router, prefix="/api/v1", dependencies=dependencies)


_include_api_router(users_router)
_include_api_router(surveys_router)
_include_api_router(analytics_router)
_include_api_router(respondent_router)
_include_api_router(outbox_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.head("/health")
def head_health():
    return Response(status_code=200)


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
