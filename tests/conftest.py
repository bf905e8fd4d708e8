"""
Shared pytest fixtures for the Gate Pass Service test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test app context, cache reset, table recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_student / student: roster rows
    - make_window: leave window created through the service
"""

import itertools

import pytest

from gatepass import create_app
from gatepass.models import db as _db
from gatepass.models.roster import Student
from gatepass.services.cache_service import get_read_cache

_admission_seq = itertools.count(1)


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
    """Per-test: open app context, reset the read cache, recreate tables."""
    with app.app_context():
        # Ids are reused after the tables are recreated; cached lists keyed
        # by subject id would otherwise leak between tests.
        get_read_cache().invalidate()
        yield
        get_read_cache().invalidate()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def make_student():
    """Factory: create and commit a roster row."""

    def _make(name=None, *, is_active=True, class_name="10-A"):
        n = next(_admission_seq)
        s = Student(
            admission_number=f"ADM-{n:05d}",
            name=name or f"Student {n}",
            class_name=class_name,
            is_active=is_active,
        )
        _db.session.add(s)
        _db.session.commit()
        return s

    return _make


@pytest.fixture()
def student(make_student):
    return make_student()


@pytest.fixture()
def make_window():
    """Factory: create an ACTIVE leave window through the service."""
    from gatepass.services.leave_service import create_leave_window

    def _make(**overrides):
        data = {
            "start_date": "2026-03-01",
            "end_date": "2026-03-03",
            "start_time": "09:00",
            "end_time": "17:00",
            "created_by": 900,
            "created_by_name": "Warden Rao",
        }
        data.update(overrides)
        return create_leave_window(data)

    return _make
