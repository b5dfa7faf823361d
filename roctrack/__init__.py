"""
ROC Tracker
Flask Application Factory.

Usage:
    from roctrack import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask
from flask_migrate import Migrate

from roctrack.config import config
from roctrack.models import db
from roctrack.middleware.logging_config import configure_logging

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement + real transactions (global engine events) ─────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _configure_sqlite(dbapi_conn, connection_record):
    """Enable foreign keys and hand transaction control to SQLAlchemy."""
    if "sqlite" in type(dbapi_conn).__module__:
        # pysqlite's own BEGIN handling breaks SAVEPOINT; we emit BEGIN below
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@_sa_event.listens_for(_sa_engine.Engine, "begin")
def _sqlite_begin(conn):
    if conn.dialect.name == "sqlite":
        conn.exec_driver_sql("BEGIN")


migrate = Migrate()


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.

    Raises:
        RuntimeError: if the built-in milestone template registry is
            incomplete or one of its templates is invalid.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)

    # ── Import all models so Alembic can detect them ─────────────────────
    from roctrack.models import project as _project_models              # noqa: F401
    from roctrack.models import milestone_template as _template_models  # noqa: F401
    from roctrack.models import component as _component_models          # noqa: F401
    from roctrack.models import import_job as _import_job_models        # noqa: F401
    from roctrack.models import audit as _audit_models                  # noqa: F401

    # ── Template registry completeness (fail fast) ───────────────────────
    from roctrack.services.template_registry import validate_registry
    validate_registry()

    # ── Auto-create tables (safe for production — CREATE IF NOT EXISTS) ──
    if config_name == "development":
        os.makedirs(os.path.join(os.path.dirname(app.root_path), "instance"), exist_ok=True)
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-templates")
    def seed_templates_cmd():
        """Provision the built-in milestone templates for every project."""
        from roctrack.models.project import Project
        from roctrack.services.template_registry import provision_project_templates
        total = 0
        for project in db.session.execute(db.select(Project)).scalars():
            total += len(provision_project_templates(project.id, actor=app.config["DEFAULT_ACTOR"]))
        db.session.commit()
        logger.info("Provisioned %s new milestone templates.", total)

    return app
