"""
Stageflow
Flask Application Factory.

Usage:
    from stageflow import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_migrate import Migrate

from stageflow.config import config
from stageflow.models import db
from stageflow.middleware.logging_config import configure_logging
from stageflow.middleware.timing import init_request_timing
from stageflow.middleware.jwt_auth import init_jwt_middleware
from stageflow.services.broadcast_hub import BroadcastHub
from stageflow.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

# Stage-entry and dependency cascades rely on FK enforcement under SQLite too
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


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
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── JWT auth middleware ──────────────────────────────────────────────
    init_jwt_middleware(app)

    # ── Realtime hub ─────────────────────────────────────────────────────
    BroadcastHub().init_app(app)

    # ── Models must be imported before create_all / flask db migrate ─────
    from stageflow.models import auth as _auth_models           # noqa: F401
    from stageflow.models import space as _space_models         # noqa: F401
    from stageflow.models import workflow as _workflow_models   # noqa: F401
    from stageflow.models import task as _task_models           # noqa: F401

    # ── Schema ───────────────────────────────────────────────────────────
    # Migrations are authoritative in production; elsewhere create_all() is enough
    if app.config.get("AUTO_CREATE_TABLES"):
        if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and not app.testing:
            os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            db.create_all()
            app.logger.debug("db.create_all() completed")

    # ── Blueprints ───────────────────────────────────────────────────────
    from stageflow.blueprints.space_bp import space_bp
    from stageflow.blueprints.group_bp import group_bp
    from stageflow.blueprints.task_bp import task_bp
    from stageflow.blueprints.realtime_bp import realtime_bp

    app.register_blueprint(space_bp)
    app.register_blueprint(group_bp)
    app.register_blueprint(task_bp)
    app.register_blueprint(realtime_bp)

    # ── Error handlers ───────────────────────────────────────────────────
    register_error_handlers(app)

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/api/v1/health")
    def health():
        hub = app.extensions["broadcast_hub"]
        return {"status": "ok", "app": "Stageflow", "observers": hub.observer_count}

    return app
