"""Tests for the Celery task wrappers."""

import pytest

from surveydesk.tasks import analytics as analytics_tasks
from surveydesk.tasks import outbox as outbox_tasks
from surveydesk.tasks import sessions as session_tasks


class _FakeSession:
    def __init__(self):
        self.closed = False
        self.rolled_back = False

    def rollback(self):
        self.rolled_back = True

    def close(self):
        self.closed = True


@pytest.fixture()
def fake_session(monkeypatch):
    session = _FakeSession()
    for module in (analytics_tasks, outbox_tasks, session_tasks):
        monkeypatch.setattr(module, "SessionLocal", lambda: session)
    return session


def test_idle_sweep_task_closes_session(monkeypatch, fake_session):
    monkeypatch.setattr(session_tasks.session_service, "mark_idle_batch", lambda db, limit=None: {"processed": 2})
    assert session_tasks.mark_idle_sessions.run() == {"processed": 2}
    assert fake_session.closed
    assert not fake_session.rolled_back


def test_flush_task_rolls_back_and_reraises(monkeypatch, fake_session):
    def _boom(db, limit=None):
        raise RuntimeError("posthog down")

    monkeypatch.setattr(outbox_tasks.outbox_service, "flush_outbox", _boom)
    with pytest.raises(RuntimeError):
        outbox_tasks.flush_analytics_outbox.run()
    assert fake_session.rolled_back
    assert fake_session.closed


def test_ingest_task_delegates(monkeypatch, fake_session):
    calls = []

    def _ingest(db, response_id):
        calls.append(response_id)
        return {"processed": True, "date_key": "2026-03-10"}

    monkeypatch.setattr(analytics_tasks.jobs, "incremental_ingest_response", _ingest)
    assert analytics_tasks.ingest_response.run("abc")["processed"] is True
    assert calls == ["abc"]
