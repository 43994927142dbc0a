"""
DMAIC Workflow Service configuration.

One class per environment, selected by APP_ENV in create_app():

    app.config.from_object(config[os.getenv("APP_ENV", "development")])

Workflow strategies (gate policy, solution scoring) and the rate limits on
write endpoints are plain config keys so operators can switch them
without code changes.
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))


def _env_bool(name, default):
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes")


def _database_url(env_var, fallback=None):
    """Hosted Postgres URLs often use postgres://; SQLAlchemy 2 wants postgresql://."""
    url = os.getenv(env_var, "")
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url or fallback


class Config:
    """Settings shared by every environment."""

    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Logging (see app.middleware.logging_config)
    LOG_LEVEL = os.getenv("LOG_LEVEL")
    LOG_FORMAT = os.getenv("LOG_FORMAT")            # json | readable
    SLOW_REQUEST_MS = float(os.getenv("SLOW_REQUEST_MS", "1000"))

    # Workflow strategies
    DMAIC_GATE_POLICY = os.getenv("DMAIC_GATE_POLICY", "strict")            # strict | weighted
    DMAIC_WEIGHTED_GATE_THRESHOLD = float(os.getenv("DMAIC_WEIGHTED_GATE_THRESHOLD", "80"))
    DMAIC_SOLUTION_SCORING = os.getenv("DMAIC_SOLUTION_SCORING", "linear")  # linear | weighted

    # Flask-Limiter
    RATELIMIT_ENABLED = _env_bool("RATELIMIT_ENABLED", True)
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    DMAIC_WRITE_RATE_LIMIT = os.getenv("DMAIC_WRITE_RATE_LIMIT", "60/minute")
    DMAIC_ADVANCE_RATE_LIMIT = os.getenv("DMAIC_ADVANCE_RATE_LIMIT", "10/minute")


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(
        "DATABASE_URL", f"sqlite:///{os.path.join(basedir, 'instance', 'dmaic_dev.db')}",
    )


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = _database_url("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ENGINE_OPTIONS = {}
    DMAIC_GATE_POLICY = "strict"
    DMAIC_SOLUTION_SCORING = "linear"
    RATELIMIT_ENABLED = False


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url("DATABASE_URL")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    # Bounded waits so a stalled database surfaces as RepositoryUnavailable
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
