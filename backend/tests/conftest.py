"""
Configuration partagée pour tous les tests.

- `client`    : override de get_db par un MagicMock (aucune connexion réelle)
- `db_session`: base SQLite en mémoire, pour les règles qui exigent un vrai
                stockage (idempotence, exclusion mutuelle, index partiel)
"""

import os
import uuid
from datetime import datetime, timedelta

os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from unittest.mock import MagicMock  # noqa: E402

from app.database import Base, get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models.event import Event, EventParticipant  # noqa: E402
from app.models.session import EventSession  # noqa: E402

# Début des événements de test ; les services reçoivent `now` explicitement
EVENT_START = datetime(2026, 5, 25, 9, 0)
NOW = datetime(2026, 5, 25, 18, 0)


@pytest.fixture
def client():
    """Client HTTP de test avec la BDD mockée."""
    mock_db = MagicMock()
    app.dependency_overrides[get_db] = lambda: mock_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def db_session():
    """Session SQLAlchemy sur une base SQLite en mémoire, schéma complet."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSession()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


@pytest.fixture
def db_client(db_session):
    """Client HTTP de test branché sur la base SQLite en mémoire."""
    app.dependency_overrides[get_db] = lambda: db_session
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_event(db_session):
    """Fabrique d'événements avec participants inscrits."""

    def _make(participants=(), **kwargs) -> Event:
        event = Event(
            title=kwargs.pop("title", "Conférence annuelle"),
            status=kwargs.pop("status", "ACTIVE"),
            start_time=kwargs.pop("start_time", EVENT_START),
            **kwargs,
        )
        db_session.add(event)
        db_session.flush()
        for subject_id in participants:
            db_session.add(EventParticipant(event_id=event.id, subject_id=subject_id))
        db_session.commit()
        return event

    return _make


@pytest.fixture
def make_session(db_session):
    """Fabrique de sessions rattachées à un événement."""

    def _make(event: Event, title: str = "Session", is_required: bool = False, order: int = 1) -> EventSession:
        session = EventSession(
            event_id=event.id,
            title=title,
            start_time=EVENT_START + timedelta(hours=order - 1),
            end_time=EVENT_START + timedelta(hours=order),
            is_required=is_required,
            order=order,
        )
        db_session.add(session)
        db_session.commit()
        return session

    return _make


@pytest.fixture
def subject_id():
    return uuid.uuid4()
