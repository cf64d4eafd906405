import logging

from surveydesk.celery_app import celery_app
from surveydesk.db import SessionLocal
from surveydesk.services import outbox as outbox_service

logger = logging.getLogger(__name__)


@celery_app.task(name="surveydesk.tasks.outbox.flush_analytics_outbox")
def flush_analytics_outbox(limit: int | None = None):
    """Periodic task: deliver due analytics events to PostHog."""
    session = SessionLocal()
    try:
        result = outbox_service.flush_outbox(session, limit=limit)
        if result["processed"]:
            logger.info(
                "analytics_outbox_flush processed=%d sent=%d failed=%d",
                result["processed"],
                result["sent"],
                result["failed"],
            )
        return result
    except Exception:
        session.rollback()
        logger.exception("Error flushing analytics outbox")
        raise
    finally:
        session.close()


@celery_app.task(name="surveydesk.tasks.outbox.cleanup_sent_events")
def cleanup_sent_events(older_than_days: int | None = None):
    session = SessionLocal()
    try:
        deleted = outbox_service.cleanup_sent_events(session, older_than_days=older_than_days)
        logger.info("analytics_outbox_cleanup deleted=%d", deleted)
        return {"deleted": deleted}
    except Exception:
        session.rollback()
        logger.exception("Error cleaning up sent outbox events")
        raise
    finally:
        session.close()
