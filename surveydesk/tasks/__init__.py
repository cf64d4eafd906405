from surveydesk.tasks.analytics import (
    ingest_response,
    rebuild_recent_window,
    rebuild_window,
    refresh_text_summaries,
)
from surveydesk.tasks.outbox import cleanup_sent_events, flush_analytics_outbox
from surveydesk.tasks.sessions import mark_abandoned_sessions, mark_idle_sessions

__all__ = [
    "ingest_response",
    "rebuild_window",
    "rebuild_recent_window",
    "refresh_text_summaries",
    "flush_analytics_outbox",
    "cleanup_sent_events",
    "mark_idle_sessions",
    "mark_abandoned_sessions",
]
