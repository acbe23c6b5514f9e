"""
Stageflow
Configuration classes for the Flask app factory.

Usage:
    app = create_app(os.getenv("APP_ENV", "development"))
    # create_app instantiates config[name]; ProductionConfig validates its
    # environment in __init__.
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'stageflow_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Per-process key for development only
_DEV_SECRET = secrets.token_hex(32)


def _env_bool(name, default):
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


def _env_days(name, default):
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [int(d) for d in raw.split(",") if d.strip()]


def _database_url(fallback=None):
    """DATABASE_URL with the legacy ``postgres://`` scheme rewritten for SQLAlchemy 2."""
    raw = os.getenv("DATABASE_URL", "")
    if not raw:
        return fallback
    return raw.replace("postgres://", "postgresql://", 1)


class Config:
    """Settings shared by every environment."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")  # None → SECRET_KEY
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # create_all() on startup; production leaves schema changes to flask db upgrade
    AUTO_CREATE_TABLES = _env_bool("AUTO_CREATE_TABLES", True)

    # Working calendar applied to spaces created without one
    DEFAULT_WORKING_HOURS_START = os.getenv("DEFAULT_WORKING_HOURS_START", "09:00")
    DEFAULT_WORKING_HOURS_END = os.getenv("DEFAULT_WORKING_HOURS_END", "17:00")
    DEFAULT_WORKING_DAYS = _env_days("DEFAULT_WORKING_DAYS", [0, 1, 2, 3, 4])
    DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "UTC")

    # Reject sequential edges that would close a cycle
    DEPENDENCY_CYCLE_CHECK = _env_bool("DEPENDENCY_CYCLE_CHECK", True)

    # Per-observer queue bound and SSE keep-alive interval
    HUB_QUEUE_SIZE = int(os.getenv("HUB_QUEUE_SIZE", "100"))
    SSE_HEARTBEAT_SECONDS = float(os.getenv("SSE_HEARTBEAT_SECONDS", "15"))


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret-key"
    JWT_SECRET_KEY = "test-jwt-secret-key-with-at-least-32-bytes"
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    DEPENDENCY_CYCLE_CHECK = True
    SSE_HEARTBEAT_SECONDS = 0.05


class ProductionConfig(Config):
    """PostgreSQL only; SECRET_KEY and DATABASE_URL are mandatory."""

    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    AUTO_CREATE_TABLES = _env_bool("AUTO_CREATE_TABLES", False)
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "pool_size": int(os.getenv("DB_POOL_SIZE", "5")),
        "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", "10")),
        "pool_timeout": 20,
        # Row locks taken by stage moves must not be held behind a runaway query
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        missing = [
            name for name, value in (
                ("DATABASE_URL", self.SQLALCHEMY_DATABASE_URI),
                ("SECRET_KEY", os.getenv("SECRET_KEY")),
            ) if not value
        ]
        if missing:
            raise RuntimeError(f"Missing required environment variable(s): {', '.join(missing)}")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
