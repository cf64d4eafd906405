import logging

from surveydesk.celery_app import celery_app
from surveydesk.db import SessionLocal
from surveydesk.services import sessions as session_service

logger = logging.getLogger(__name__)


@celery_app.task(name="surveydesk.tasks.sessions.mark_idle_sessions")
def mark_idle_sessions(limit: int | None = None):
    """Periodic task: move stale in-progress sessions to idle."""
    session = SessionLocal()
    try:
        result = session_service.mark_idle_batch(session, limit=limit)
        logger.info("session_idle_sweep processed=%d", result["processed"])
        return result
    except Exception:
        session.rollback()
        logger.exception("Error sweeping idle sessions")
        raise
    finally:
        session.close()


@celery_app.task(name="surveydesk.tasks.sessions.mark_abandoned_sessions")
def mark_abandoned_sessions(limit: int | None = None):
    """Periodic task: abandon sessions past the abandon threshold."""
    session = SessionLocal()
    try:
        result = session_service.mark_abandoned_batch(session, limit=limit)
        logger.info("session_abandon_sweep processed=%d", result["processed"])
        return result
    except Exception:
        session.rollback()
        logger.exception("Error sweeping abandoned sessions")
        raise
    finally:
        session.close()
