"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name, default):
    return os.getenv(name, default).lower() in ('1', 'true', 'yes')


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')
    TESTING = False
    JSON_SORT_KEYS = False

    # Session Configuration (Production-safe defaults)
    SESSION_COOKIE_SECURE = os.getenv('SESSION_COOKIE_SECURE', 'false').lower() == 'true'
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv('SESSION_COOKIE_SAMESITE', 'Lax')

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        # Try DB_* variables (Docker style)
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'erp')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'erp')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'erp')

        DATABASE_URL = (
            f"postgresql://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = _env_bool('SQLALCHEMY_ECHO', 'false')
    DB_POOL_SIZE = int(os.getenv('DB_POOL_SIZE', '10'))
    DB_MAX_OVERFLOW = int(os.getenv('DB_MAX_OVERFLOW', '20'))

    # Orders: reserve stock automatically when an order reaches aprobado / listo_despacho
    AUTO_RESERVE_STOCK_ON_APPROVAL = _env_bool('AUTO_RESERVE_STOCK_ON_APPROVAL', 'true')

    # Logistics
    REMITO_ELIGIBLE_ORDER_STATUSES = tuple(
        s.strip() for s in os.getenv('REMITO_ELIGIBLE_ORDER_STATUSES', 'aprobado,listo_despacho').split(',')
        if s.strip()
    )
    REMITO_ESTIMATED_DELIVERY_DAYS = int(os.getenv('REMITO_ESTIMATED_DELIVERY_DAYS', '3'))
    DEFAULT_WAREHOUSE_LOCATION = os.getenv('DEFAULT_WAREHOUSE_LOCATION', 'Depósito Principal')

    # Notifications (webhook + email channels, both optional)
    NOTIFY_WEBHOOK_URL = os.getenv('NOTIFY_WEBHOOK_URL')
    NOTIFY_WEBHOOK_TIMEOUT = float(os.getenv('NOTIFY_WEBHOOK_TIMEOUT', '5'))
    NOTIFY_EMAIL_TO = os.getenv('NOTIFY_EMAIL_TO')

    # Email configuration
    MAIL_SERVER = os.getenv('SMTP_HOST', 'smtp.gmail.com')
    MAIL_PORT = int(os.getenv('SMTP_PORT', 587))
    MAIL_USE_TLS = True
    MAIL_USE_SSL = False
    MAIL_USERNAME = os.getenv('SMTP_USER') or ''
    MAIL_PASSWORD = os.getenv('SMTP_PASSWORD') or ''
    MAIL_DEFAULT_SENDER = (
        os.getenv('SMTP_FROM')
        or MAIL_USERNAME
        or 'no-reply@localhost'
    )
    MAIL_SUPPRESS_SEND = False


class TestConfig(Config):
    """Configuration used by the test suite (in-memory SQLite)."""

    DEBUG = False
    ENV = 'testing'
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ECHO = False
    AUTO_RESERVE_STOCK_ON_APPROVAL = True
    NOTIFY_WEBHOOK_URL = None
    NOTIFY_EMAIL_TO = None
    MAIL_SUPPRESS_SEND = True
