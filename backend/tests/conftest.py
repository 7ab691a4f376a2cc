"""Pytest fixtures — file-backed SQLite database, recreated for every test."""
import os
from datetime import datetime, timezone, timedelta

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

# The app engine is built at import; keep it off the Postgres default.
# Requests use the per-test engine below through dependency_overrides.
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_app.db")

from pulse.database import Base, get_db  # noqa: E402
from pulse.main import app  # noqa: E402
from pulse.services.notifications import get_notifier  # noqa: E402

# Import all models so they register with Base.metadata
from pulse.models.user import User                     # noqa: F401
from pulse.models.event import Event                   # noqa: F401
from pulse.models.rsvp import EventRSVP                # noqa: F401
from pulse.models.event_mutation import EventMutation  # noqa: F401
from pulse.models.report import EventReport            # noqa: F401

SQLITE_URL = "sqlite:///./test.db"


class RecordingNotifier:
    """Notifier double that keeps every payload it is handed."""

    def __init__(self):
        self.sent = []

    def send(self, notification):
        self.sent.append(notification)

    def kinds_for(self, user_id: str) -> list[str]:
        return [n.kind.value for n in self.sent if n.user_id == user_id]


@pytest.fixture(scope="function")
def db_engine():
    """Create a fresh SQLite engine for each test."""
    engine = create_engine(SQLITE_URL, connect_args={"check_same_thread": False})

    # WAL lets readers proceed while one thread writes
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db(session_factory):
    """Yield a database session, closed after the test."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def notifier():
    return RecordingNotifier()


@pytest.fixture(scope="function")
def client(session_factory, notifier):
    """TestClient with the database and notifier dependencies overridden."""

    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def as_user(email: str, name: str = None) -> dict:
    """Headers the SSO proxy would forward for this address."""
    headers = {"X-User-Email": email}
    if name:
        headers["X-User-Name"] = name
    return headers


def whoami(client: TestClient, email: str) -> dict:
    resp = client.get("/api/me", headers=as_user(email))
    assert resp.status_code == 200, resp.text
    return resp.json()


def create_test_event(client: TestClient, email: str, title: str = "Team Lunch",
                      capacity: int = None, start_offset_hours: int = 24,
                      duration_hours: int = 1, **extra) -> dict:
    """Helper — POST /api/events as ``email`` and return response JSON."""
    start = datetime.now(timezone.utc) + timedelta(hours=start_offset_hours)
    end = start + timedelta(hours=duration_hours)
    payload = {
        "title": title,
        "start_at": start.isoformat(),
        "end_at": end.isoformat(),
        "capacity": capacity,
    }
    payload.update(extra)
    resp = client.post("/api/events/", json=payload, headers=as_user(email))
    assert resp.status_code == 201, resp.text
    return resp.json()


def join(client: TestClient, event_id: str, email: str):
    return client.post(f"/api/events/{event_id}/join", headers=as_user(email))


def leave(client: TestClient, event_id: str, email: str):
    return client.post(f"/api/events/{event_id}/leave", headers=as_user(email))
