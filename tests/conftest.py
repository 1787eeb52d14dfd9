"""
Shared fixtures: an in-memory SQLite database per test.

Concurrency and scheduler tests need real separate connections, so they use
the file-backed `file_session_factory` instead.
"""
from datetime import date, time, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, build_engine, get_db, get_settings
from models import Event, Registration
from core.event_manager import EventManager
from core.registration_manager import RegistrationManager
from core.scheduler import JobScheduler, get_scheduler

TEST_DATABASE_URL = "sqlite://"


@pytest.fixture
def engine():
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def file_session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'core.db'}")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def settings():
    """The process settings; tests override fields with monkeypatch.setattr."""
    return get_settings()


@pytest.fixture
def client(session_factory):
    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    scheduler = JobScheduler(session_factory)
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    # no context manager: the lifespan would create tables on the real engine
    yield TestClient(app)
    app.dependency_overrides.clear()


# ============ Builders ============

def make_event(db, name="Speed Programming", event_date=None, start_time=time(9, 0), **fields) -> Event:
    return EventManager.create_event(
        db,
        name=name,
        event_date=event_date or date.today() + timedelta(days=30),
        start_time=start_time,
        **fields,
    )


def make_published_event(db, **fields) -> Event:
    event = make_event(db, **fields)
    return EventManager.publish_event(db, event.id)


def register(db, event_id, user_id) -> Registration:
    return RegistrationManager.create_registration(db, user_id=user_id, event_id=event_id)


@pytest.fixture
def published_event(db):
    return make_published_event(db, registration_fee=Decimal("500"))


@pytest.fixture
def rounds(db, published_event):
    return EventManager.get_rounds(db, published_event.id)
