"""
Shared pytest fixtures for the ROC Tracker test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - project: Pre-created Project entity
    - provisioned_project: Project with the built-in templates provisioned
"""

import pytest

from roctrack import create_app
from roctrack.models import db as _db


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


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def project():
    """Create and return a committed test Project."""
    from roctrack.models.project import Project
    proj = Project(code="P-100", name="Unit 100 Piping")
    _db.session.add(proj)
    _db.session.commit()
    return proj


@pytest.fixture()
def provisioned_project(project):
    """Project with FULL / REDUCED / THREADED / INSULATION / PAINT templates."""
    from roctrack.services.template_registry import provision_project_templates
    provision_project_templates(project.id, actor="setup")
    _db.session.commit()
    return project
