"""
DMAIC Workflow Service
Flask application factory.

Usage:
    from app import create_app
    app = create_app()           # APP_ENV, or "development"
    app = create_app("testing")
"""

import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event
from sqlalchemy.exc import SQLAlchemyError

from app.config import config
from app.middleware.logging_config import configure_logging
from app.middleware.rate_limiter import init_rate_limits
from app.middleware.timing import init_request_timing
from app.models import db

logger = logging.getLogger(__name__)

migrate = Migrate()
# No global limit; init_rate_limits applies per-blueprint limits
limiter = Limiter(key_func=get_remote_address, default_limits=[])


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """SQLite ignores ON DELETE CASCADE unless foreign keys are switched on."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: "development", "testing" or "production".
                     Defaults to the APP_ENV env var, then "development".

    Returns:
        Configured Flask application instance.
    """
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])

    configure_logging(app)
    _init_extensions(app)
    init_request_timing(app)
    _init_request_guards(app)
    _init_database(app)
    _register_blueprints(app)
    _register_cli(app)
    _register_error_handlers(app)
    init_rate_limits(app, limiter)

    return app


def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    origins = app.config.get("CORS_ORIGINS", "*")
    if origins and origins != "*":
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])
    else:
        CORS(app)


def _init_request_guards(app):
    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)

    @app.before_request
    def _require_json_body():
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            if request.data and "json" not in (request.content_type or ""):
                abort(415, description="Content-Type must be application/json")


def _init_database(app):
    """Create missing DMAIC tables; Alembic revisions remain the source of truth."""
    from app.models import dmaic as _dmaic_models  # noqa: F401

    uri = app.config["SQLALCHEMY_DATABASE_URI"]
    if uri.startswith("sqlite:///") and ":memory:" not in uri:
        os.makedirs(app.instance_path, exist_ok=True)

    with app.app_context():
        try:
            db.create_all()
        except SQLAlchemyError as exc:
            app.logger.warning("db.create_all() failed: %s", exc)


def _register_blueprints(app):
    from app.blueprints.dmaic_bp import dmaic_bp
    from app.blueprints.health_bp import health_bp
    from app.services.artifact_repository import SqlAlchemyArtifactRepository

    app.extensions["dmaic_repository"] = SqlAlchemyArtifactRepository()
    app.register_blueprint(dmaic_bp)
    app.register_blueprint(health_bp)

    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "DMAIC Workflow Service"}


def _register_cli(app):
    @app.cli.command("dmaic-recompute")
    @click.option("--project-id", default=None, help="Recompute a single project.")
    def dmaic_recompute_cmd(project_id):
        """Refresh quality score and risk level for one or all open projects."""
        from app.core.exceptions import ConcurrentTransition, ProjectCompleted
        from app.services.workflow_engine import PhaseWorkflowEngine

        engine = PhaseWorkflowEngine.from_config(app.config, app.extensions["dmaic_repository"])
        ids = [project_id] if project_id else [p["id"] for p in engine.list_projects()]
        refreshed = 0
        for pid in ids:
            try:
                updated = engine.recompute_metrics(pid)
            except ProjectCompleted:
                click.echo(f"{pid}: completed, skipped")
                continue
            except ConcurrentTransition:
                click.echo(f"{pid}: phase changed during refresh, skipped")
                continue
            refreshed += 1
            click.echo(f"{pid}: quality={updated['quality_score']} risk={updated['risk_level']}")
        logger.info("Recomputed metrics for %d project(s).", refreshed)


def _register_error_handlers(app):
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(415)
    def unsupported_media_type(e):
        return {"error": e.description, "code": "ERR_VALIDATION_INVALID"}, 415

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500
