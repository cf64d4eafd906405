"""Tests for the HTTP API routers."""

import uuid

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from surveydesk.db import get_db
from surveydesk.main import app
from surveydesk.services.common import date_key_for, now_utc

from helpers import SAMPLE_FIELDS

JWT_SECRET = "test-secret"


def _token(subject: str, email: str) -> dict:
    encoded = jwt.encode({"sub": subject, "email": email}, JWT_SECRET, algorithm="HS256")
    return {"Authorization": f"Bearer {encoded}"}


@pytest.fixture
def client(db_session, override_settings):
    """Create a test client bound to the test transaction."""
    override_settings(jwt_secret=JWT_SECRET, jwt_audience=None, admin_emails="")

    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def admin_headers(client):
    headers = _token(f"admin-{uuid.uuid4().hex}", "owner@example.com")
    response = client.post("/users/me", headers=headers)
    assert response.status_code == 200
    return headers


@pytest.fixture
def published(client, admin_headers):
    survey = client.post(
        "/surveys",
        json={"title": "Onboarding", "slug": f"Onboarding {uuid.uuid4().hex[:6]}"},
        headers=admin_headers,
    ).json()
    version = client.post(
        f"/surveys/{survey['id']}/versions", json={"fields": SAMPLE_FIELDS}, headers=admin_headers
    ).json()
    client.post(f"/surveys/{survey['id']}/versions/{version['id']}/publish", headers=admin_headers)
    return survey, version


@pytest.fixture
def invite_token(client, admin_headers, published):
    survey, version = published
    response = client.post(
        f"/surveys/{survey['id']}/invites",
        json={"survey_version_id": version["id"], "max_completions": 2},
        headers=admin_headers,
    )
    assert response.status_code == 201
    return response.json()["token"]


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}
        assert client.head("/health").status_code == 200

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "surveydesk_session_events_total" in response.text


class TestAuth:
    def test_missing_token_401(self, client):
        response = client.get("/surveys")
        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"

    def test_wrong_signature_401(self, client):
        encoded = jwt.encode({"sub": "someone"}, "other-secret", algorithm="HS256")
        response = client.get("/surveys", headers={"Authorization": f"Bearer {encoded}"})
        assert response.status_code == 401

    def test_uninitialized_user_403(self, client):
        response = client.get("/surveys", headers=_token("ghost", "ghost@example.com"))
        assert response.status_code == 403


class TestUsers:
    def test_first_user_becomes_admin(self, client, admin_headers):
        response = client.get("/users/me", headers=admin_headers)
        assert response.json()["role"] == "admin"

    def test_later_users_are_members(self, client, admin_headers):
        headers = _token("member-1", "member@example.com")
        assert client.post("/users/me", headers=headers).json()["role"] == "member"

        response = client.post("/users/me/promote", headers=headers)
        assert response.status_code == 403
        assert response.json()["code"] == "FORBIDDEN"

    def test_allowlisted_user_can_promote(self, client, admin_headers, override_settings):
        headers = _token("member-2", "lead@example.com")
        client.post("/users/me", headers=headers)
        override_settings(admin_emails="lead@example.com")
        assert client.post("/users/me/promote", headers=headers).json()["role"] == "admin"

    def test_promote_without_profile(self, client, admin_headers):
        response = client.post("/users/me/promote", headers=_token("nobody", "nobody@example.com"))
        assert response.status_code == 403
        assert response.json()["code"] == "USER_NOT_INITIALIZED"


class TestSurveys:
    def test_detail_includes_current_version(self, client, admin_headers, published):
        survey, version = published
        for prefix in ("", "/api/v1"):
            response = client.get(f"{prefix}/surveys/{survey['id']}", headers=admin_headers)
            assert response.status_code == 200
            data = response.json()
            assert data["status"] == "published"
            assert data["slug"].startswith("onboarding-")
            assert data["current_version"]["id"] == version["id"]
            assert data["versions"][0]["field_count"] == len(SAMPLE_FIELDS)

    def test_invalid_fields_400(self, client, admin_headers, published):
        survey, _ = published
        response = client.post(
            f"/surveys/{survey['id']}/versions", json={"fields": []}, headers=admin_headers
        )
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_FIELDS"

    def test_duplicate_slug_409(self, client, admin_headers, published):
        survey, _ = published
        response = client.post(
            "/surveys", json={"title": "Copy", "slug": survey["slug"]}, headers=admin_headers
        )
        assert response.status_code == 409
        assert response.json()["code"] == "SLUG_TAKEN"

    def test_unknown_survey_404(self, client, admin_headers):
        response = client.get(f"/surveys/{uuid.uuid4()}", headers=admin_headers)
        assert response.status_code == 404

    def test_invite_issue_and_revoke(self, client, admin_headers, published):
        survey, version = published
        issued = client.post(
            f"/surveys/{survey['id']}/invites",
            json={"survey_version_id": version["id"]},
            headers=admin_headers,
        ).json()
        assert issued["link"].endswith(f"/s/{issued['token']}")
        assert "token_hash" not in issued["invite"]

        revoked = client.post(f"/surveys/invites/{issued['invite']['id']}/revoke", headers=admin_headers)
        assert revoked.json()["status"] == "revoked"
        assert client.get(f"/respondent/invites/{issued['token']}").json()["state"] == "revoked"


class TestRespondentFlow:
    def test_unknown_invite_reads_invalid(self, client):
        response = client.get("/respondent/invites/inv_missing")
        assert response.status_code == 200
        assert response.json() == {"state": "invalid", "survey": None, "version": None, "expires_at": None}

    def test_full_flow_feeds_analytics(self, client, admin_headers, published, invite_token):
        survey, _ = published
        resolved = client.get(f"/respondent/invites/{invite_token}").json()
        assert resolved["state"] == "active"
        assert len(resolved["version"]["fields"]) == len(SAMPLE_FIELDS)

        started = client.post(
            "/respondent/sessions",
            json={"invite_token": invite_token, "respondent_key": "browser-key-000001"},
        )
        assert started.status_code == 200
        public_id = started.json()["session_public_id"]
        assert started.json()["progress"]["progress_percent"] == 0

        bad = client.put(f"/respondent/sessions/{public_id}/answers/rating", json={"value": 7})
        assert bad.status_code == 400
        assert bad.json() == {
            "code": "INVALID_ANSWER",
            "message": "Rating must be between 1 and 5.",
            "field_id": "rating",
        }

        client.put(f"/respondent/sessions/{public_id}/answers/name", json={"value": "Ada"})
        saved = client.put(f"/respondent/sessions/{public_id}/answers/color", json={"value": "blue"})
        assert saved.json() == {"progress_percent": 100, "status": "in_progress"}

        submitted = client.post(f"/respondent/sessions/{public_id}/submit")
        assert submitted.status_code == 200
        snapshot = client.get(f"/respondent/sessions/{public_id}").json()
        assert snapshot["status"] == "completed"

        today = date_key_for(now_utc())
        params = {"from_date": today, "to_date": today}
        funnel = client.get(f"/surveys/{survey['id']}/analytics/funnel", params=params, headers=admin_headers)
        assert funnel.json()["completed"] == 1
        assert funnel.json()["conversion_rate"] == 100.0

        scoring = client.get(f"/surveys/{survey['id']}/analytics/scoring", params=params, headers=admin_headers)
        assert scoring.json()["avg_score_percent"] == 100.0

        field = client.get(
            f"/surveys/{survey['id']}/analytics/fields/rating", params=params, headers=admin_headers
        ).json()
        assert [bucket["key"] for bucket in field["buckets"]] == ["1", "2", "3", "4", "5"]
        assert "top_phrases" not in field

        csv_response = client.get(
            f"/surveys/{survey['id']}/analytics/export",
            params={**params, "report": "funnel", "format": "csv"},
            headers=admin_headers,
        )
        assert csv_response.status_code == 200
        assert csv_response.headers["content-type"].startswith("text/csv")
        assert csv_response.text.splitlines()[0].startswith("dateKey,started,completed")

        rebuilt = client.post(
            f"/surveys/{survey['id']}/analytics/rebuild",
            json={"from_date": today, "to_date": today},
            headers=admin_headers,
        )
        assert rebuilt.json() == {"days_processed": 1}

    def test_export_rejects_unknown_format(self, client, admin_headers, published):
        survey, _ = published
        today = date_key_for(now_utc())
        response = client.get(
            f"/surveys/{survey['id']}/analytics/export",
            params={"from_date": today, "to_date": today, "report": "funnel", "format": "xml"},
            headers=admin_headers,
        )
        assert response.status_code == 422
        assert response.json()["code"] == "INVALID_REQUEST"


class TestOutboxAdmin:
    def test_requires_admin(self, client, admin_headers):
        headers = _token("member-3", "member3@example.com")
        client.post("/users/me", headers=headers)
        assert client.get("/admin/outbox/status", headers=headers).status_code == 403

    def test_status_counts(self, client, admin_headers, published):
        response = client.get("/admin/outbox/status", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["pending"] >= 2
        assert client.get("/admin/outbox/failed", headers=admin_headers).json() == []
