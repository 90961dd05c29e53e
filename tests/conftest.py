"""
Shared pytest fixtures for the PhaseTrack test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - supervisor / super_admin / engineer / engineer2 / administrator: users
    - user_factory: build extra users
    - project / phases: three-phase project created through the service layer
    - project_factory: build projects with custom phases or fields
    - auth_headers: mint a Bearer header for a user
"""

from datetime import date

import pytest

from phasetrack import create_app
from phasetrack.models import db as _db
from phasetrack.models.auth import User
from phasetrack.services import realtime
from phasetrack.services.jwt_service import generate_access_token
from phasetrack.utils.crypto import hash_password

TEST_PASSWORD = "correct-horse-1"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
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
        realtime.clear_recorded_events()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()
        realtime.clear_recorded_events()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Users ────────────────────────────────────────────────────────────────


def make_user(email, role="engineer", *, name=None, is_super_admin=False, is_active=True):
    user = User(
        email=email,
        name=name or email.split("@")[0].title(),
        role=role,
        password_hash=hash_password(TEST_PASSWORD, rounds=4),
        is_super_admin=is_super_admin,
        is_active=is_active,
    )
    _db.session.add(user)
    _db.session.commit()
    return user


@pytest.fixture()
def supervisor():
    return make_user("sara@studio.test", "supervisor", name="Sara Supervisor")


@pytest.fixture()
def super_admin():
    return make_user("root@studio.test", "supervisor", name="Root Admin", is_super_admin=True)


@pytest.fixture()
def engineer():
    return make_user("eli@studio.test", "engineer", name="Eli Engineer")


@pytest.fixture()
def engineer2():
    return make_user("nora@studio.test", "engineer", name="Nora Engineer")


@pytest.fixture()
def administrator():
    return make_user("ada@studio.test", "administrator", name="Ada Admin")


@pytest.fixture()
def user_factory():
    """Return ``make_user`` so tests can add accounts beyond the named ones."""
    return make_user


@pytest.fixture()
def auth_headers(app):
    """Return a function that builds Authorization headers for a user."""

    def _headers(user):
        token = generate_access_token(user.id, user.role)
        return {"Authorization": f"Bearer {token}"}

    return _headers


# ── Projects ─────────────────────────────────────────────────────────────


def make_project(actor, phases=None, **overrides):
    from phasetrack.services.project_service import create_project

    if phases is None:
        phases = [
            {"phase_name": "Concept Design", "planned_weeks": 2, "predicted_hours": 100},
            {"phase_name": "Schematic Design", "planned_weeks": 3, "predicted_hours": 150},
            {"phase_name": "Construction Documents", "planned_weeks": 5, "predicted_hours": 200},
        ]
    data = {
        "name": "Harbour Library",
        "start_date": date(2026, 1, 5).isoformat(),
        "planned_total_weeks": sum(p["planned_weeks"] for p in phases),
        "phases": phases,
    }
    data.update(overrides)
    return create_project(actor, data)


@pytest.fixture()
def project_factory():
    """Return ``make_project`` so tests can vary phases and fields."""
    return make_project


@pytest.fixture()
def project(supervisor):
    """Three-phase project; phase 1 is ready, phases 2-3 not_started."""
    return make_project(supervisor)


@pytest.fixture()
def phases(project):
    from phasetrack.models.phase import ProjectPhase

    return (
        ProjectPhase.query.filter_by(project_id=project["project"]["id"])
        .order_by(ProjectPhase.phase_order)
        .all()
    )
