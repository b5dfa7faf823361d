"""
Flask-Migrate / Alembic entry point.

Usage:
    flask db upgrade
    flask db migrate -m "description"
    flask seed-templates
"""

from roctrack import create_app

app = create_app()
