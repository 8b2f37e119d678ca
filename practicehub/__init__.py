"""
PracticeHub Core
Flask Application Factory.

Usage:
    from practicehub import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import importlib
import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from practicehub.config import config
from practicehub.middleware.logging_config import configure_logging
from practicehub.middleware.rate_limiter import init_rate_limits
from practicehub.middleware.timing import init_request_timing
from practicehub.models import db

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
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
    default_limits=[],                     # no global limit; applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # ProductionConfig validates its env vars on instantiation
    app.config.from_object(config[config_name]())

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
    from practicehub.models import auth as _auth_models              # noqa: F401
    from practicehub.models import audit as _audit_models            # noqa: F401
    from practicehub.models import billing as _billing_models        # noqa: F401
    from practicehub.models import checklist as _checklist_models    # noqa: F401
    from practicehub.models import customer as _customer_models      # noqa: F401
    from practicehub.models import field_definition as _field_models  # noqa: F401
    from practicehub.models import notification as _notification_models  # noqa: F401
    from practicehub.models import retainer as _retainer_models      # noqa: F401

    # ── Auto-create tables in dev/test; production runs migrations ───────
    if config_name != "production":
        with app.app_context():
            if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and ":memory:" not in \
                    app.config["SQLALCHEMY_DATABASE_URI"]:
                os.makedirs(app.instance_path, exist_ok=True)
            db.create_all()
            app.logger.info("db.create_all() completed successfully")

    # ── Blueprints ───────────────────────────────────────────────────────
    from practicehub.blueprints.checklist_bp import checklist_bp
    from practicehub.blueprints.customer_bp import customer_bp
    from practicehub.blueprints.health_bp import health_bp
    from practicehub.blueprints.prerequisite_bp import prerequisite_bp
    from practicehub.blueprints.retainer_bp import retainer_bp

    app.register_blueprint(customer_bp)
    app.register_blueprint(checklist_bp)
    app.register_blueprint(prerequisite_bp)
    app.register_blueprint(retainer_bp)
    app.register_blueprint(health_bp)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": "ERR_NOT_FOUND"}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def internal_error(e):
        db.session.rollback()
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler initialization (import jobs to register them) ──────────
    importlib.import_module("practicehub.services.scheduled_jobs")  # registers @register_job handlers
    from practicehub.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("run-job")
    @click.argument("job_name")
    def run_job_cmd(job_name):
        """Run one registered job now (e.g. dormancy_scan)."""
        result = SchedulerService.run_job(job_name)
        click.echo(result)

    return app
