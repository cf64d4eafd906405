import logging

from surveydesk.celery_app import celery_app
from surveydesk.db import SessionLocal
from surveydesk.services.analytics import jobs

logger = logging.getLogger(__name__)


@celery_app.task(name="surveydesk.tasks.analytics.ingest_response")
def ingest_response(response_id: str):
    """Rebuild the analytics day of one submitted response."""
    session = SessionLocal()
    try:
        result = jobs.incremental_ingest_response(session, response_id)
        logger.info("analytics_ingest response_id=%s processed=%s", response_id, result["processed"])
        return result
    except Exception:
        session.rollback()
        logger.exception("Error ingesting response %s", response_id)
        raise
    finally:
        session.close()


@celery_app.task(name="surveydesk.tasks.analytics.rebuild_window")
def rebuild_window(survey_id: str, from_date: str, to_date: str, reason: str | None = None):
    session = SessionLocal()
    try:
        return jobs.rebuild_materialized_window(session, survey_id, from_date, to_date, reason=reason)
    except Exception:
        session.rollback()
        logger.exception("Error rebuilding analytics window survey_id=%s", survey_id)
        raise
    finally:
        session.close()


@celery_app.task(name="surveydesk.tasks.analytics.rebuild_recent_window")
def rebuild_recent_window(lookback_days: int | None = None, survey_limit: int | None = None):
    """Periodic task: repair the trailing days of recently updated surveys."""
    session = SessionLocal()
    try:
        result = jobs.rebuild_recent_window_for_all_surveys(
            session, lookback_days=lookback_days, survey_limit=survey_limit
        )
        logger.info(
            "analytics_recent_rebuild surveys=%d days=%d",
            result["surveys_processed"],
            result["days_processed"],
        )
        return result
    except Exception:
        session.rollback()
        logger.exception("Error rebuilding recent analytics window")
        raise
    finally:
        session.close()


@celery_app.task(name="surveydesk.tasks.analytics.refresh_text_summaries")
def refresh_text_summaries(survey_id: str | None = None, limit: int | None = None):
    """Periodic task: recompute text insights for the last few days."""
    session = SessionLocal()
    try:
        result = jobs.refresh_text_summaries_batch(session, survey_id=survey_id, limit=limit)
        logger.info(
            "analytics_text_refresh surveys=%d days=%d",
            result["surveys_processed"],
            result["days_processed"],
        )
        return result
    except Exception:
        session.rollback()
        logger.exception("Error refreshing text summaries")
        raise
    finally:
        session.close()
