"""
Flask-Migrate / Alembic entry point.

Usage:
    flask db upgrade
    flask start-ready-projects
    flask escalate-overdue-tasks
"""

from production_hub import create_app

app = create_app()
