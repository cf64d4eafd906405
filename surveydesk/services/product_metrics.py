"""Prometheus metrics for survey activity."""

from __future__ import annotations

import logging

from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)

SESSION_EVENTS = Counter(
    "surveydesk_session_events_total",
    "Session lifecycle events",
    ["event"],  # started, idle, abandoned, reactivated, completed
)

SUBMISSIONS = Counter(
    "surveydesk_submissions_total",
    "Submitted survey responses",
    ["graded"],
)

OUTBOX_DISPATCH = Counter(
    "surveydesk_outbox_dispatch_total",
    "Analytics outbox delivery attempts",
    ["result"],  # sent, retry, failed
)

OUTBOX_FLUSH_TIME = Histogram(
    "surveydesk_outbox_flush_seconds",
    "Time spent flushing one outbox batch",
)


def record_session_event(event: str) -> None:
    try:
        SESSION_EVENTS.labels(event=event).inc()
    except Exception:
        logger.warning("product_metric_failed metric=session_events event=%s", event, exc_info=True)


def record_submission(graded: bool) -> None:
    try:
        SUBMISSIONS.labels(graded="true" if graded else "false").inc()
    except Exception:
        logger.warning("product_metric_failed metric=submissions", exc_info=True)


def record_outbox_dispatch(result: str) -> None:
    try:
        OUTBOX_DISPATCH.labels(result=result).inc()
    except Exception:
        logger.warning("product_metric_failed metric=outbox_dispatch result=%s", result, exc_info=True)
