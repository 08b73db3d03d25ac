"""
Shared pytest fixtures for the Certification Tracker test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - student: Pre-created Student entity
    - make_process: factory for persisted CertificationProcess rows
"""

from datetime import UTC, datetime

import pytest

from certtrack import create_app
from certtrack.models import db as _db
from certtrack.models.certification import CertificationProcess, Stage
from certtrack.models.student import Student


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
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


def make_student(name="Maria da Silva", cpf="12345678901", phone="5511999990000"):
    s = Student(name=name, email="aluno@example.com", phone=phone, cpf=cpf)
    _db.session.add(s)
    _db.session.flush()
    return s


@pytest.fixture()
def student():
    """A committed student without a certification process."""
    s = make_student()
    _db.session.commit()
    return s


@pytest.fixture()
def make_process():
    """Factory: persist a CertificationProcess with arbitrary stage timestamps.

    Usage:
        process = make_process(status=Stage.DOCUMENTS_UNDER_REVIEW,
                               documents_under_review_at=datetime(...))
    """
    counter = {"n": 0}

    def _factory(status=Stage.WELCOME, wants_physical=False, student=None, **fields):
        if student is None:
            counter["n"] += 1
            student = make_student(
                name=f"Aluno Teste {counter['n']}", cpf=f"{counter['n']:011d}",
            )
        fields.setdefault("created_at", datetime(2024, 1, 1, 12, 0, tzinfo=UTC))
        process = CertificationProcess(
            student_id=student.id,
            status=Stage(status).value,
            wants_physical=wants_physical,
            certifier_name="",
            **fields,
        )
        _db.session.add(process)
        _db.session.commit()
        return process

    return _factory
