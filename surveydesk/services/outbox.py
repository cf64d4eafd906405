"""Analytics outbox: durable queue of product events delivered to PostHog."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

import httpx
from sqlalchemy import func
from sqlalchemy.orm import Session

from surveydesk.config import settings
from surveydesk.models.outbox import AnalyticsOutboxEvent
from surveydesk.services import product_metrics
from surveydesk.services.common import as_utc, clamp, coerce_uuid, now_utc
from surveydesk.services.errors import SurveyConflictError, SurveyNotFoundError
from surveydesk.telemetry import get_tracer

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_SENT = "sent"
STATUS_FAILED = "failed"

_MAX_BACKOFF_EXPONENT = 10


def _compute_backoff_seconds(attempts: int) -> int:
    return min(2 ** min(attempts, _MAX_BACKOFF_EXPONENT), settings.outbox_max_backoff_seconds)


def enqueue_event(
    db: Session,
    event_name: str,
    distinct_id: str,
    properties: dict | None = None,
    now: datetime | None = None,
) -> AnalyticsOutboxEvent:
    """Stage an event in the caller's transaction. Nothing is committed here."""
    moment = now or now_utc()
    event = AnalyticsOutboxEvent(
        event_name=event_name,
        distinct_id=distinct_id,
        properties=properties or {},
        status=STATUS_PENDING,
        attempt_count=0,
        next_attempt_at=moment,
        created_at=moment,
    )
    db.add(event)
    return event


def list_due_events(db: Session, limit: int | None = None, now: datetime | None = None) -> list[AnalyticsOutboxEvent]:
    moment = now or now_utc()
    batch_cap = settings.outbox_batch_limit
    limit = clamp(limit or batch_cap, 1, batch_cap)
    return (
        db.query(AnalyticsOutboxEvent)
        .filter(AnalyticsOutboxEvent.status == STATUS_PENDING)
        .filter(AnalyticsOutboxEvent.next_attempt_at <= moment)
        .order_by(AnalyticsOutboxEvent.next_attempt_at.asc(), AnalyticsOutboxEvent.created_at.asc())
        .limit(limit)
        .all()
    )


def record_dispatch(
    db: Session,
    outbox_id,
    success: bool,
    error: str | None = None,
    now: datetime | None = None,
) -> AnalyticsOutboxEvent | None:
    event = db.get(AnalyticsOutboxEvent, coerce_uuid(outbox_id, "Outbox event"))
    if event is None:
        return None
    moment = now or now_utc()
    attempts = (event.attempt_count or 0) + 1
    event.attempt_count = attempts

    if success:
        event.status = STATUS_SENT
        event.sent_at = moment
        event.last_error = None
        db.commit()
        product_metrics.record_outbox_dispatch("sent")
        return event

    event.next_attempt_at = moment + timedelta(seconds=_compute_backoff_seconds(attempts))
    event.last_error = error
    if attempts >= settings.outbox_max_attempts:
        event.status = STATUS_FAILED
        product_metrics.record_outbox_dispatch("failed")
        logger.warning(
            "analytics_outbox_dead_letter outbox_id=%s event=%s attempts=%d error=%s",
            event.id,
            event.event_name,
            attempts,
            error,
        )
    else:
        event.status = STATUS_PENDING
        product_metrics.record_outbox_dispatch("retry")
    db.commit()
    return event


def _build_capture_payload(event: AnalyticsOutboxEvent, api_key: str) -> dict:
    properties = dict(event.properties or {})
    properties["distinct_id"] = event.distinct_id
    return {"api_key": api_key, "event": event.event_name, "properties": properties}


def _deliver(client: httpx.Client, url: str, payload: dict) -> None:
    response = client.post(url, json=payload)
    if not response.is_success:
        raise RuntimeError(f"HTTP {response.status_code}: {response.text}")


def flush_outbox(
    db: Session,
    limit: int | None = None,
    client: httpx.Client | None = None,
    now: datetime | None = None,
) -> dict:
    """Deliver due events to PostHog and record each outcome.

    Without an API key nothing is read or sent.
    """
    api_key = settings.posthog_api_key
    if not api_key:
        return {"processed": 0, "sent": 0, "failed": 0}

    url = f"{settings.posthog_host.rstrip('/')}/capture/"
    tracer = get_tracer(__name__)
    owns_client = client is None
    if owns_client:
        client = httpx.Client(timeout=settings.posthog_timeout_seconds)

    due: list[AnalyticsOutboxEvent] = []
    sent = 0
    failed = 0
    try:
        with tracer.start_as_current_span("analytics_outbox.flush"), product_metrics.OUTBOX_FLUSH_TIME.time():
            due = list_due_events(db, limit=limit, now=now)
            for event in due:
                try:
                    _deliver(client, url, _build_capture_payload(event, api_key))
                except (httpx.HTTPError, RuntimeError) as exc:
                    logger.warning(
                        "analytics_outbox_delivery_failed outbox_id=%s event=%s error=%s",
                        event.id,
                        event.event_name,
                        exc,
                    )
                    record_dispatch(
                        db, event.id, success=False, error=str(exc) or "Unknown PostHog dispatch error", now=now
                    )
                    failed += 1
                    continue
                record_dispatch(db, event.id, success=True, now=now)
                sent += 1
    finally:
        if owns_client:
            client.close()

    return {"processed": len(due), "sent": sent, "failed": failed}


def outbox_status_counts(db: Session) -> dict:
    rows = (
        db.query(AnalyticsOutboxEvent.status, func.count(AnalyticsOutboxEvent.id))
        .group_by(AnalyticsOutboxEvent.status)
        .all()
    )
    counts = {STATUS_PENDING: 0, STATUS_SENT: 0, STATUS_FAILED: 0}
    for status, count in rows:
        counts[status] = int(count)
    return counts


def list_failed_events(db: Session, limit: int = 50) -> list[AnalyticsOutboxEvent]:
    return (
        db.query(AnalyticsOutboxEvent)
        .filter(AnalyticsOutboxEvent.status == STATUS_FAILED)
        .order_by(AnalyticsOutboxEvent.created_at.desc())
        .limit(clamp(limit, 1, 500))
        .all()
    )


def requeue_failed_event(db: Session, outbox_id, now: datetime | None = None) -> AnalyticsOutboxEvent:
    event = db.get(AnalyticsOutboxEvent, coerce_uuid(outbox_id, "Outbox event"))
    if event is None:
        raise SurveyNotFoundError(detail="Outbox event not found.")
    if event.status != STATUS_FAILED:
        raise SurveyConflictError("OUTBOX_NOT_FAILED", "Only failed events can be requeued.")
    event.status = STATUS_PENDING
    event.attempt_count = 0
    event.next_attempt_at = now or now_utc()
    event.last_error = None
    db.commit()
    db.refresh(event)
    logger.info("analytics_outbox_requeued outbox_id=%s event=%s", event.id, event.event_name)
    return event


def cleanup_sent_events(db: Session, older_than_days: int | None = None, now: datetime | None = None) -> int:
    days = older_than_days if older_than_days is not None else settings.outbox_sent_retention_days
    cutoff = as_utc(now or now_utc()) - timedelta(days=max(days, 0))
    deleted = (
        db.query(AnalyticsOutboxEvent)
        .filter(AnalyticsOutboxEvent.status == STATUS_SENT)
        .filter(AnalyticsOutboxEvent.sent_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    return int(deleted or 0)
