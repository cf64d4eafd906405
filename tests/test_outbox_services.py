from datetime import timedelta

import httpx
import pytest

from surveydesk.models.outbox import AnalyticsOutboxEvent
from surveydesk.services import outbox as outbox_service
from surveydesk.services.errors import SurveyConflictError, SurveyNotFoundError

from helpers import NOW


def _enqueue(db_session, name="survey_created", distinct_id="user-1", now=NOW) -> AnalyticsOutboxEvent:
    event = outbox_service.enqueue_event(db_session, name, distinct_id, {"survey_id": "s-1"}, now=now)
    db_session.commit()
    return event


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_backoff_doubles_and_caps(override_settings):
    assert outbox_service._compute_backoff_seconds(1) == 2
    assert outbox_service._compute_backoff_seconds(3) == 8
    assert outbox_service._compute_backoff_seconds(40) == 1024
    override_settings(outbox_max_backoff_seconds=60)
    assert outbox_service._compute_backoff_seconds(8) == 60


def test_enqueue_does_not_commit(db_session):
    event = outbox_service.enqueue_event(db_session, "survey_created", "user-1", now=NOW)
    assert event in db_session.new
    assert event.status == "pending"
    assert event.next_attempt_at == NOW


def test_list_due_events_orders_and_filters(db_session):
    later = _enqueue(db_session, now=NOW + timedelta(minutes=5))
    first = _enqueue(db_session, now=NOW - timedelta(minutes=5))
    _enqueue(db_session, now=NOW + timedelta(hours=1))

    due = outbox_service.list_due_events(db_session, now=NOW + timedelta(minutes=10))
    assert [event.id for event in due] == [first.id, later.id]


def test_failures_retry_then_dead_letter(db_session, override_settings):
    override_settings(outbox_max_attempts=3)
    event = _enqueue(db_session)

    outbox_service.record_dispatch(db_session, event.id, success=False, error="boom", now=NOW)
    assert event.status == "pending"
    assert event.attempt_count == 1
    assert event.last_error == "boom"

    outbox_service.record_dispatch(db_session, event.id, success=False, error="boom", now=NOW)
    outbox_service.record_dispatch(db_session, event.id, success=False, error="boom", now=NOW)
    db_session.refresh(event)
    assert event.status == "failed"
    assert event.attempt_count == 3


def test_default_dead_letter_after_eight_attempts(db_session):
    event = _enqueue(db_session)
    for _ in range(7):
        outbox_service.record_dispatch(db_session, event.id, success=False, error="down", now=NOW)
    assert event.status == "pending"
    outbox_service.record_dispatch(db_session, event.id, success=False, error="down", now=NOW)
    assert event.status == "failed"


def test_record_dispatch_unknown_event(db_session):
    assert outbox_service.record_dispatch(db_session, "00000000-0000-0000-0000-000000000000", success=True) is None


def test_flush_without_api_key_is_noop(db_session, override_settings):
    override_settings(posthog_api_key=None)
    _enqueue(db_session)
    assert outbox_service.flush_outbox(db_session, now=NOW) == {"processed": 0, "sent": 0, "failed": 0}


def test_flush_delivers_and_records_outcomes(db_session, override_settings):
    override_settings(posthog_api_key="phc_test", posthog_host="https://posthog.example.com/")
    ok = _enqueue(db_session, name="survey_created")
    bad = _enqueue(db_session, name="survey_published", now=NOW + timedelta(seconds=1))
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if b"survey_published" in request.content:
            return httpx.Response(500, text="unavailable")
        return httpx.Response(200, json={"status": 1})

    with _client(handler) as client:
        result = outbox_service.flush_outbox(db_session, client=client, now=NOW + timedelta(seconds=5))

    assert result == {"processed": 2, "sent": 1, "failed": 1}
    assert str(requests[0].url) == "https://posthog.example.com/capture/"
    assert b'"api_key":"phc_test"' in requests[0].content.replace(b" ", b"")
    db_session.refresh(ok)
    db_session.refresh(bad)
    assert ok.status == "sent"
    assert ok.sent_at is not None
    assert bad.status == "pending"
    assert bad.last_error == "HTTP 500: unavailable"
    assert outbox_service.outbox_status_counts(db_session) == {"pending": 1, "sent": 1, "failed": 0}


def test_flush_records_transport_errors(db_session, override_settings):
    override_settings(posthog_api_key="phc_test")
    event = _enqueue(db_session)

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with _client(handler) as client:
        result = outbox_service.flush_outbox(db_session, client=client, now=NOW)
    assert result["failed"] == 1
    db_session.refresh(event)
    assert event.attempt_count == 1
    assert "connection refused" in event.last_error


def test_requeue_failed_event(db_session):
    event = _enqueue(db_session)
    with pytest.raises(SurveyConflictError) as exc:
        outbox_service.requeue_failed_event(db_session, event.id, now=NOW)
    assert exc.value.code == "OUTBOX_NOT_FAILED"

    event.status = "failed"
    event.attempt_count = 8
    event.last_error = "down"
    db_session.commit()

    assert [row.id for row in outbox_service.list_failed_events(db_session, limit=0)] == [event.id]
    requeued = outbox_service.requeue_failed_event(db_session, event.id, now=NOW)
    assert requeued.status == "pending"
    assert requeued.attempt_count == 0
    assert requeued.last_error is None

    with pytest.raises(SurveyNotFoundError):
        outbox_service.requeue_failed_event(db_session, "not-a-uuid")


def test_cleanup_removes_old_sent_events(db_session):
    old = _enqueue(db_session)
    recent = _enqueue(db_session)
    pending = _enqueue(db_session)
    outbox_service.record_dispatch(db_session, old.id, success=True, now=NOW - timedelta(days=10))
    outbox_service.record_dispatch(db_session, recent.id, success=True, now=NOW - timedelta(days=1))

    assert outbox_service.cleanup_sent_events(db_session, now=NOW) == 1
    remaining = {row.id for row in db_session.query(AnalyticsOutboxEvent)}
    assert remaining == {recent.id, pending.id}
