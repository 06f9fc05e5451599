"""
Document Workflow Circuit
Flask Application Factory.

Usage:
    from docflow import create_app
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

from docflow.config import config
from docflow.models import db
from docflow.middleware.diagnostics import run_startup_diagnostics
from docflow.middleware.logging_config import configure_logging
from docflow.middleware.rate_limiter import init_rate_limits
from docflow.middleware.timing import init_request_timing

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
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL") or "memory://",  # Redis in production, memory for dev
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
    cfg = config[config_name]
    app.config.from_object(cfg() if config_name == "production" else cfg)

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

    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    # ── Import all models so Alembic can detect them ─────────────────────
    from docflow.models import approval as _approval_models   # noqa: F401
    from docflow.models import circuit as _circuit_models     # noqa: F401
    from docflow.models import workflow as _workflow_models   # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if config_name != "production":
        os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        db.create_all()

    # ── Workflow runtime (document store, archival gateway, monitor, sink) ──
    from docflow.services import collaborators
    collaborators.init_app(app)

    # ── Blueprints ───────────────────────────────────────────────────────
    from docflow.blueprints.approval_bp import approval_bp
    from docflow.blueprints.circuit_bp import circuit_bp
    from docflow.blueprints.health_bp import health_bp
    from docflow.blueprints.metrics_bp import metrics_bp
    from docflow.blueprints.workflow_bp import workflow_bp

    app.register_blueprint(circuit_bp)
    app.register_blueprint(workflow_bp)
    app.register_blueprint(approval_bp)
    app.register_blueprint(health_bp)
    app.register_blueprint(metrics_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("backfill-flexible-statuses")
    @click.option("--dry-run", is_flag=True, help="Report without writing.")
    def backfill_flexible_statuses_cmd(dry_run):
        """Flag legacy free-move statuses (title/key keyword) as is_flexible."""
        from docflow.services.circuit_service import backfill_flexible_statuses
        ids = backfill_flexible_statuses(dry_run=dry_run)
        click.echo(f"{'Would flag' if dry_run else 'Flagged'} {len(ids)} statuses: {ids}")

    # ── Error handlers ───────────────────────────────────────────────────
    from docflow.utils.errors import E, api_error

    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, f"No route for {request.method} {request.path}")

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, f"{request.method} not allowed on {request.path}",
                         status=405)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.VALIDATION_INVALID, "Too many requests", status=429,
                         details={"retry_after": e.description})

    @app.errorhandler(500)
    def server_error(e):
        logger.error("Unhandled server error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

    # ── Startup diagnostics ──────────────────────────────────────────────
    run_startup_diagnostics(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
