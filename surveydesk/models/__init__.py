from surveydesk.models.analytics import (  # noqa: F401
    SurveyAnalyticsDaily,
    SurveyAnswerBucketsDaily,
    SurveyFieldAnalyticsDaily,
    SurveyMetricsDaily,
    SurveyTextInsightsDaily,
)
from surveydesk.models.audit import AuditActorType, AuditLog  # noqa: F401
from surveydesk.models.invite import InviteStatus, SurveyInvite  # noqa: F401
from surveydesk.models.outbox import AnalyticsOutboxEvent  # noqa: F401
from surveydesk.models.session import (  # noqa: F401
    SessionStatus,
    SessionTransition,
    SurveyResponse,
    SurveySession,
)
from surveydesk.models.survey import Survey, SurveyStatus, SurveyVersion  # noqa: F401
from surveydesk.models.user import AppUser, UserRole  # noqa: F401
