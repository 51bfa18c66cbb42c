"""
Panelsync
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'panelsync_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

_DEV_SECRET = secrets.token_hex(32)


def _env_bool(name, default):
    return os.getenv(name, "true" if default else "false").lower() == "true"


def _env_list(name, default=""):
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # Prolific (external study provider)
    PROLIFIC_API_URL = os.getenv("PROLIFIC_API_URL", "https://api.prolific.com/api/v1/")
    PROLIFIC_API_TOKEN = os.getenv("PROLIFIC_API_TOKEN", "")
    PROLIFIC_TIMEOUT_SECONDS = int(os.getenv("PROLIFIC_TIMEOUT_SECONDS", "10"))

    # Completion reconciliation
    COMPLETION_SWEEP_INTERVAL_HOURS = int(os.getenv("COMPLETION_SWEEP_INTERVAL_HOURS", "24"))
    COMPLETION_CHECK_DELAY_HOURS = int(os.getenv("COMPLETION_CHECK_DELAY_HOURS", "72"))
    # On-demand checks are off by default; the periodic sweep covers every active test
    COMPLETION_CHECK_QUEUE_ENABLED = _env_bool("COMPLETION_CHECK_QUEUE_ENABLED", False)
    SWEEP_MAX_WORKERS = int(os.getenv("SWEEP_MAX_WORKERS", "1"))
    GENERATE_INSIGHTS_ON_COMPLETE = _env_bool("GENERATE_INSIGHTS_ON_COMPLETE", True)
    SCHEDULER_TICK_SECONDS = int(os.getenv("SCHEDULER_TICK_SECONDS", "60"))

    # Reminder recipients (comma separated)
    REMINDER_RECIPIENTS = _env_list("REMINDER_RECIPIENTS", "ops@panelsync.local")

    # Email / SMTP (optional; dev mode logs without sending)
    MAIL_SERVER = os.getenv("MAIL_SERVER")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USE_TLS = _env_bool("MAIL_USE_TLS", True)
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "notifications@panelsync.local")


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = (
        _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else _SQLITE_DEV
    )


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    PROLIFIC_API_URL = "https://prolific.test/api/v1/"
    PROLIFIC_API_TOKEN = "test-token"
    COMPLETION_CHECK_QUEUE_ENABLED = True
    GENERATE_INSIGHTS_ON_COMPLETE = False
    SWEEP_MAX_WORKERS = 1
    REMINDER_RECIPIENTS = ["ops@panelsync.test"]
    MAIL_SERVER = None


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not self.PROLIFIC_API_TOKEN:
            raise RuntimeError("PROLIFIC_API_TOKEN environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
