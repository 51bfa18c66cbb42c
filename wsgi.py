"""
Flask-Migrate / Alembic entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi run-job completion_sweep
    flask --app wsgi scheduler --tick 60
"""

from panelsync import create_app

app = create_app()
