import logging
import os
from datetime import timedelta

logger = logging.getLogger(__name__)


def _env_value(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = _env_value(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = _env_value(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("scheduler_config_invalid_int name=%s value=%s", name, raw)
        return default


def get_celery_config() -> dict:
    broker = _env_value("CELERY_BROKER_URL") or _env_value("REDIS_URL") or "redis://localhost:6379/0"
    backend = _env_value("CELERY_RESULT_BACKEND") or _env_value("REDIS_URL") or "redis://localhost:6379/1"
    config: dict[str, object] = {
        "broker_url": broker,
        "result_backend": backend,
        "timezone": _env_value("CELERY_TIMEZONE") or "UTC",
        "enable_utc": True,
        "task_acks_late": True,
    }
    config["beat_max_loop_interval"] = _env_int("CELERY_BEAT_MAX_LOOP_INTERVAL", 5)
    return config


def build_beat_schedule() -> dict:
    """Periodic jobs, each toggled by a ``*_ENABLED`` flag with an overridable interval."""
    schedule: dict[str, dict] = {}

    if _env_bool("SESSION_IDLE_SWEEP_ENABLED", True):
        interval = _env_int("SESSION_IDLE_SWEEP_INTERVAL_SECONDS", 300)
        schedule["session_idle_sweep"] = {
            "task": "surveydesk.tasks.sessions.mark_idle_sessions",
            "schedule": timedelta(seconds=max(interval, 30)),
        }

    if _env_bool("SESSION_ABANDON_SWEEP_ENABLED", True):
        interval = _env_int("SESSION_ABANDON_SWEEP_INTERVAL_SECONDS", 600)
        schedule["session_abandon_sweep"] = {
            "task": "surveydesk.tasks.sessions.mark_abandoned_sessions",
            "schedule": timedelta(seconds=max(interval, 30)),
        }

    if _env_bool("ANALYTICS_OUTBOX_FLUSH_ENABLED", True):
        interval = _env_int("ANALYTICS_OUTBOX_FLUSH_INTERVAL_SECONDS", 60)
        schedule["analytics_outbox_flush"] = {
            "task": "surveydesk.tasks.outbox.flush_analytics_outbox",
            "schedule": timedelta(seconds=max(interval, 10)),
        }

    if _env_bool("ANALYTICS_RECENT_REBUILD_ENABLED", True):
        interval = _env_int("ANALYTICS_RECENT_REBUILD_INTERVAL_MINUTES", 60)
        schedule["analytics_recent_rebuild"] = {
            "task": "surveydesk.tasks.analytics.rebuild_recent_window",
            "schedule": timedelta(minutes=max(interval, 1)),
        }

    if _env_bool("ANALYTICS_TEXT_REFRESH_ENABLED", True):
        interval = _env_int("ANALYTICS_TEXT_REFRESH_INTERVAL_MINUTES", 60)
        schedule["analytics_text_refresh"] = {
            "task": "surveydesk.tasks.analytics.refresh_text_summaries",
            "schedule": timedelta(minutes=max(interval, 1)),
        }

    if _env_bool("ANALYTICS_OUTBOX_CLEANUP_ENABLED", True):
        interval = _env_int("ANALYTICS_OUTBOX_CLEANUP_INTERVAL_SECONDS", 86400)
        schedule["analytics_outbox_cleanup"] = {
            "task": "surveydesk.tasks.outbox.cleanup_sent_events",
            "schedule": timedelta(seconds=max(interval, 3600)),
        }

    return schedule
