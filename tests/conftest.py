import dataclasses
import importlib
import os
import sqlite3
import uuid
from datetime import UTC, datetime

import pytest
from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from surveydesk.db import Base

load_dotenv(os.path.join(os.getcwd(), ".env"))


class _JoseDateTimeProxy:
    @staticmethod
    def utcnow():
        return datetime.now(UTC)

    @staticmethod
    def now(tz=None):
        return datetime.now(tz)

    def __getattr__(self, name: str):
        return getattr(datetime, name)


@pytest.fixture(autouse=True)
def _patch_jose_datetime(monkeypatch):
    import jose.jwt as jose_jwt

    monkeypatch.setattr(jose_jwt, "datetime", _JoseDateTimeProxy, raising=False)


# Register UUID adapter for SQLite - store as string
sqlite3.register_adapter(uuid.UUID, lambda u: str(u))

# Monkey-patch SQLAlchemy's UUID type for SQLite compatibility
# This must happen before any models are imported
from sqlalchemy.sql import sqltypes  # noqa: E402

_original_uuid_bind_processor = sqltypes.Uuid.bind_processor
_original_uuid_result_processor = sqltypes.Uuid.result_processor


def _sqlite_uuid_bind_processor(self, dialect):
    if dialect.name == "sqlite":
        def process(value):
            if value is not None:
                if isinstance(value, uuid.UUID):
                    return str(value)
                return str(uuid.UUID(value)) if value else None
            return None
        return process
    return _original_uuid_bind_processor(self, dialect)


def _sqlite_uuid_result_processor(self, dialect, coltype):
    if dialect.name == "sqlite":
        def process(value):
            if value is not None:
                if isinstance(value, uuid.UUID):
                    return value
                return uuid.UUID(value) if value else None
            return None
        return process
    return _original_uuid_result_processor(self, dialect, coltype)


sqltypes.Uuid.bind_processor = _sqlite_uuid_bind_processor
sqltypes.Uuid.result_processor = _sqlite_uuid_result_processor

from surveydesk import models  # noqa: F401,E402
from surveydesk.models.user import UserRole  # noqa: E402

from helpers import issue_invite, make_user, publish_survey  # noqa: E402

# Modules that read ``settings`` at call time.
_SETTINGS_MODULES = (
    "surveydesk.services.auth",
    "surveydesk.services.users",
    "surveydesk.services.invites",
    "surveydesk.services.sessions",
    "surveydesk.services.outbox",
    "surveydesk.services.analytics.windows",
    "surveydesk.services.analytics.text_insights",
    "surveydesk.services.analytics.queries",
    "surveydesk.services.analytics.jobs",
    "surveydesk.telemetry",
)


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={
            "check_same_thread": False,
            "detect_types": sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
        },
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture()
def db_session(engine):
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(bind=connection, autoflush=False, autocommit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture()
def override_settings(monkeypatch):
    """Replace the frozen settings instance seen by every service module."""

    def _apply(**changes):
        for name in _SETTINGS_MODULES:
            module = importlib.import_module(name)
            monkeypatch.setattr(module, "settings", dataclasses.replace(module.settings, **changes))

    return _apply


@pytest.fixture()
def admin_user(db_session):
    return make_user(db_session, UserRole.admin)


@pytest.fixture()
def member_user(db_session):
    return make_user(db_session, UserRole.member)


@pytest.fixture()
def published_survey(db_session, admin_user):
    return publish_survey(db_session, admin_user)


@pytest.fixture()
def invite(db_session, admin_user, published_survey):
    survey, version = published_survey
    return issue_invite(db_session, admin_user, survey, version)
