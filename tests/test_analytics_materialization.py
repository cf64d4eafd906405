from datetime import timedelta

from surveydesk.models.analytics import (
    SurveyAnalyticsDaily,
    SurveyAnswerBucketsDaily,
    SurveyFieldAnalyticsDaily,
    SurveyTextInsightsDaily,
)
from surveydesk.schemas.survey import SurveyField
from surveydesk.services.analytics.materialization import (
    bucket_entries,
    format_number_bucket,
    rebuild_daily_materialized_analytics,
    refresh_daily_text_insights,
)

from helpers import NOW, SAMPLE_FIELDS, TODAY, issue_invite, submit_answers


def _seed(db_session, admin_user, published_survey):
    survey, version = published_survey
    _, token = issue_invite(db_session, admin_user, survey, version, max_completions=10)
    submit_answers(db_session, token, "respondent-key-a001", {"name": "Ada", "color": "blue"})
    submit_answers(
        db_session,
        token,
        "respondent-key-b002",
        {"name": "Bob", "color": "red", "comments": "Great support team, great support"},
        now=NOW + timedelta(minutes=5),
    )
    return survey


def _field_rows(db_session, survey_id):
    rows = (
        db_session.query(SurveyFieldAnalyticsDaily)
        .filter(SurveyFieldAnalyticsDaily.survey_id == survey_id)
        .filter(SurveyFieldAnalyticsDaily.date_key == TODAY)
        .all()
    )
    return {row.field_id: (row.reached_count, row.answered_count, row.dropoff_count) for row in rows}


def _bucket_rows(db_session, survey_id):
    rows = (
        db_session.query(SurveyAnswerBucketsDaily)
        .filter(SurveyAnswerBucketsDaily.survey_id == survey_id)
        .filter(SurveyAnswerBucketsDaily.date_key == TODAY)
        .all()
    )
    return {(row.field_id, row.bucket_key): row.count for row in rows}


def test_number_bucket_keys():
    assert format_number_bucket(4.0) == "4"
    assert format_number_bucket(2.5) == "2.50"


def test_bucket_entries_by_kind():
    fields = {item["id"]: SurveyField.model_validate(item) for item in SAMPLE_FIELDS}
    assert bucket_entries(fields["name"], "Ada") == [("__provided__", "Provided")]
    assert bucket_entries(fields["color"], "blue") == [("blue", "Blue")]
    assert bucket_entries(fields["rating"], 3) == [("3", "3")]


def test_reach_follows_highest_answered_field(db_session, admin_user, published_survey):
    survey = _seed(db_session, admin_user, published_survey)
    assert _field_rows(db_session, survey.id) == {
        "name": (2, 2, 0),
        "color": (2, 2, 0),
        "rating": (1, 0, 1),
        "comments": (1, 1, 0),
    }


def test_select_and_rating_buckets_are_padded(db_session, admin_user, published_survey):
    survey = _seed(db_session, admin_user, published_survey)
    buckets = _bucket_rows(db_session, survey.id)
    assert buckets[("color", "red")] == 1
    assert buckets[("color", "blue")] == 1
    assert buckets[("name", "__provided__")] == 2
    for rating in ("1", "2", "3", "4", "5"):
        assert buckets[("rating", rating)] == 0


def test_daily_row_combines_counters_and_grading(db_session, admin_user, published_survey):
    survey = _seed(db_session, admin_user, published_survey)
    row = (
        db_session.query(SurveyAnalyticsDaily)
        .filter(SurveyAnalyticsDaily.survey_id == survey.id)
        .filter(SurveyAnalyticsDaily.date_key == TODAY)
        .one()
    )
    assert row.started == 2
    assert row.completed == 2
    assert row.total_graded == 2
    assert row.avg_score_percent == 50.0
    assert (row.total_correct, row.total_incorrect) == (1, 1)


def test_rebuild_is_idempotent(db_session, admin_user, published_survey):
    survey = _seed(db_session, admin_user, published_survey)
    before = (_field_rows(db_session, survey.id), _bucket_rows(db_session, survey.id))

    first = rebuild_daily_materialized_analytics(db_session, survey.id, TODAY, include_text_insights=True, now=NOW)
    second = rebuild_daily_materialized_analytics(db_session, survey.id, TODAY, include_text_insights=True, now=NOW)

    assert first == second
    assert first["responses"] == 2
    assert (_field_rows(db_session, survey.id), _bucket_rows(db_session, survey.id)) == before
    assert db_session.query(SurveyAnalyticsDaily).filter(SurveyAnalyticsDaily.survey_id == survey.id).count() == 1


def test_rebuild_deletes_rows_that_are_no_longer_produced(db_session, admin_user, published_survey):
    survey = _seed(db_session, admin_user, published_survey)
    db_session.add(
        SurveyFieldAnalyticsDaily(
            survey_id=survey.id,
            date_key=TODAY,
            field_id="retired",
            reached_count=9,
            answered_count=9,
            dropoff_count=0,
        )
    )
    db_session.add(
        SurveyAnswerBucketsDaily(
            survey_id=survey.id,
            date_key=TODAY,
            field_id="color",
            bucket_key="green",
            bucket_label="Green",
            count=4,
        )
    )
    db_session.flush()

    rebuild_daily_materialized_analytics(db_session, survey.id, TODAY, now=NOW)
    assert "retired" not in _field_rows(db_session, survey.id)
    assert ("color", "green") not in _bucket_rows(db_session, survey.id)


def test_empty_day_produces_zero_row(db_session, published_survey):
    survey, _ = published_survey
    result = rebuild_daily_materialized_analytics(db_session, survey.id, "2026-01-01", now=NOW)
    assert result["responses"] == 0
    row = (
        db_session.query(SurveyAnalyticsDaily)
        .filter(SurveyAnalyticsDaily.survey_id == survey.id)
        .filter(SurveyAnalyticsDaily.date_key == "2026-01-01")
        .one()
    )
    assert (row.started, row.completed, row.total_graded, row.avg_score_percent) == (0, 0, 0, 0.0)


def test_text_insights_refresh(db_session, admin_user, published_survey):
    survey = _seed(db_session, admin_user, published_survey)
    assert refresh_daily_text_insights(db_session, survey.id, TODAY, now=NOW) == 2

    insight = (
        db_session.query(SurveyTextInsightsDaily)
        .filter(SurveyTextInsightsDaily.survey_id == survey.id)
        .filter(SurveyTextInsightsDaily.field_id == "comments")
        .one()
    )
    phrases = {entry["phrase"]: entry["count"] for entry in insight.top_phrases}
    assert phrases["great"] == 2
    assert phrases["great support"] == 2
    assert insight.sampled_snippets == [{"snippet": "Great support team, great support", "count": 1}]
