"""
Shared pytest fixtures for the Task Tracker test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - employee / other_employee / manager / admin: committed User rows
    - auth_headers: builds an Authorization header for a user
    - recorder / workflow: engine wired to a RecordingEventSink
"""

import pytest

from tasktracker import create_app
from tasktracker.models import db as _db
from tasktracker.models.auth import ROLE_ADMIN, ROLE_EMPLOYEE, ROLE_MANAGER, User
from tasktracker.services.completion_service import CompletionWorkflow
from tasktracker.services.event_sink import EventSink
from tasktracker.services.jwt_service import generate_access_token
from tasktracker.services.role_gate import RoleGate


class RecordingEventSink(EventSink):
    """Keeps every emitted event in memory, in order."""

    def __init__(self):
        self.events = []

    def emit(self, subject, event, payload):
        self.events.append((subject, event, dict(payload)))

    def names(self):
        return [event for _, event, _ in self.events]


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app(tmp_path_factory):
    """Create the Flask application once per test session."""
    application = create_app("testing")
    application.config["UPLOAD_FOLDER"] = str(tmp_path_factory.mktemp("uploads"))
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Users ────────────────────────────────────────────────────────────────


def _make_user(username, role, is_active=True):
    u = User(username=username, email=f"{username}@example.test", role=role, is_active=is_active)
    _db.session.add(u)
    _db.session.commit()
    return u


@pytest.fixture()
def employee():
    return _make_user("alice", ROLE_EMPLOYEE)


@pytest.fixture()
def other_employee():
    return _make_user("dave", ROLE_EMPLOYEE)


@pytest.fixture()
def manager():
    return _make_user("bob", ROLE_MANAGER)


@pytest.fixture()
def admin():
    return _make_user("carol", ROLE_ADMIN)


@pytest.fixture()
def auth_headers():
    """Return a function building a Bearer header for a user."""
    def _headers(user, **kwargs):
        token = generate_access_token(user.id, user.role, **kwargs)
        return {"Authorization": f"Bearer {token}"}
    return _headers


# ── Engine ───────────────────────────────────────────────────────────────


@pytest.fixture()
def recorder():
    return RecordingEventSink()


@pytest.fixture()
def workflow(recorder):
    """Engine with the default role table and a recording sink."""
    return CompletionWorkflow(role_gate=RoleGate(), event_sink=recorder)
