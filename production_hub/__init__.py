"""
Production Hub
Flask Application Factory.

Usage:
    from production_hub import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from production_hub.config import config
from production_hub.models import db
from production_hub.middleware.logging_config import configure_logging
from production_hub.middleware.timing import init_request_timing

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit, applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])
    os.makedirs(app.instance_path, exist_ok=True)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from production_hub.models import crew as _crew_models        # noqa: F401
    from production_hub.models import project as _project_models  # noqa: F401

    # ── Change feed (registers mapper + session listeners) ───────────────
    from production_hub.services import change_feed as _change_feed  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from production_hub.blueprints.crew_bp import crew_bp
    from production_hub.blueprints.projects_bp import projects_bp
    from production_hub.blueprints.tasks_bp import tasks_bp

    for bp in (projects_bp, tasks_bp, crew_bp):
        limiter.limit(app.config["API_RATE_LIMIT"])(bp)
        app.register_blueprint(bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("start-ready-projects")
    def start_ready_projects_cmd():
        """Load tasks for every project whose roles are all filled."""
        from production_hub.services.auto_progression import start_ready_projects

        results = start_ready_projects()
        started = sum(1 for r in results if r["action_taken"] == "tasks_loaded")
        for r in results:
            click.echo(f"{r['project_id']:>6}  {r['action_taken']:<12}  {r['project_name']}")
        logger.info("Started %s of %s projects.", started, len(results))

    @app.cli.command("escalate-overdue-tasks")
    def escalate_overdue_tasks_cmd():
        """Escalate pending/ongoing tasks whose deadline has passed."""
        from production_hub.services.task_lifecycle import escalate_overdue_tasks

        count = escalate_overdue_tasks()
        click.echo(f"Escalated {count} overdue task(s).")

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Production Hub"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    return app
