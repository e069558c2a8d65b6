import os
import secrets
from dotenv import load_dotenv
from typing import Optional

# Find the absolute path of the root directory
basedir = os.path.abspath(os.path.dirname(__file__))

# Load the .env file from the root directory
load_dotenv(os.path.join(basedir, '.env'))


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid"""
    pass


def _env_int(key: str, default: int) -> int:
    value = os.environ.get(key)
    if value in (None, ''):
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {key} must be an integer, got {value!r}")


def _env_float(key: str, default: float) -> float:
    value = os.environ.get(key)
    if value in (None, ''):
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {key} must be a number, got {value!r}")


def _sqlite_foreign_keys_off(dbapi_connection, connection_record):
    if 'sqlite' in str(type(dbapi_connection)).lower():
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=OFF")
        cursor.close()


class Config:
    """
    Base configuration class. Contains default configuration settings
    and settings applicable to all environments.
    """
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_hex(32)
    FLASK_ENV = os.environ.get('FLASK_ENV')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    @staticmethod
    def get_required_env(key: str) -> str:
        """Get required environment variable or raise error"""
        value = os.environ.get(key)
        if not value:
            raise ConfigurationError(f"Required environment variable {key} is not set")
        return value

    # Database settings
    SQLALCHEMY_DATABASE_URI = os.environ.get('POSTGRES_URI') or \
        'sqlite:///' + os.path.join(basedir, 'omnidesk.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Redis backs Celery and the realtime notification fan-out.
    REDIS_URL = os.environ.get('REDIS_URL') or 'redis://redis:6379/0'
    CELERY_BROKER_URL = os.environ.get('REDIS_URL') or 'redis://redis:6379/0'
    CELERY_RESULT_BACKEND = os.environ.get('REDIS_URL') or 'redis://redis:6379/0'

    # Realtime notifications: 'redis' publishes to pub/sub, 'log' only logs
    NOTIFICATION_TRANSPORT = os.environ.get('NOTIFICATION_TRANSPORT', 'redis')
    NOTIFICATION_CHANNEL_PREFIX = os.environ.get('NOTIFICATION_CHANNEL_PREFIX', 'omnidesk:rooms')

    # Assistant decision webhook (queues may override the URL)
    ASSISTANT_WEBHOOK_URL = os.environ.get('ASSISTANT_WEBHOOK_URL', '')
    ASSISTANT_WEBHOOK_TOKEN = os.environ.get('ASSISTANT_WEBHOOK_TOKEN', '')
    ASSISTANT_WEBHOOK_TIMEOUT = _env_float('ASSISTANT_WEBHOOK_TIMEOUT', 15.0)
    ASSISTANT_CONTEXT_MESSAGES = _env_int('ASSISTANT_CONTEXT_MESSAGES', 20)

    # Outbound channel gateway
    CHANNEL_OUTBOUND_WEBHOOK_URL = os.environ.get('CHANNEL_OUTBOUND_WEBHOOK_URL', '')
    CHANNEL_OUTBOUND_WEBHOOK_TOKEN = os.environ.get('CHANNEL_OUTBOUND_WEBHOOK_TOKEN', '')
    CHANNEL_SEND_TIMEOUT = _env_float('CHANNEL_SEND_TIMEOUT', 15.0)

    # Reconciliation engine
    ACK_BUFFER_MAX_ENTRIES = _env_int('ACK_BUFFER_MAX_ENTRIES', 10000)
    SLA_SWEEP_INTERVAL = _env_float('SLA_SWEEP_INTERVAL', 60.0)
    SCHEDULE_SWEEP_INTERVAL = _env_float('SCHEDULE_SWEEP_INTERVAL', 30.0)
    SCHEDULE_BATCH_SIZE = _env_int('SCHEDULE_BATCH_SIZE', 20)

    # Inline media received from channels is written here
    MEDIA_ROOT = os.environ.get('MEDIA_ROOT') or os.path.join(basedir, 'media')

    SENTRY_DSN = os.environ.get('SENTRY_DSN')

    JSON_SORT_KEYS = False

    @classmethod
    def init_app(cls, app):
        """Initialize application with this config"""
        import logging
        logger = logging.getLogger(__name__)

        redis_url = app.config.get('REDIS_URL', '')
        # Log the Redis URL being used (without password)
        if '@' in redis_url:
            logger.info(f"Using Redis URL: [REDACTED]@{redis_url.split('@')[1]}")
        else:
            logger.info(f"Using Redis URL: {redis_url}")


class DevelopmentConfig(Config):
    """Development environment configuration"""
    DEBUG = True
    TESTING = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DEV_DATABASE_URL') or \
        Config.SQLALCHEMY_DATABASE_URI

    # Without a running Redis, notifications are only logged in development
    NOTIFICATION_TRANSPORT = os.environ.get('NOTIFICATION_TRANSPORT', 'log')

    @classmethod
    def init_app(cls, app):
        """Development-specific initialization"""
        Config.init_app(app)

        import logging
        from logging import StreamHandler
        stream_handler = StreamHandler()
        stream_handler.setLevel(logging.DEBUG)
        app.logger.addHandler(stream_handler)


class TestingConfig(Config):
    """Testing environment configuration"""
    TESTING = True
    DEBUG = True

    # Use in-memory SQLite for tests
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'

    CELERY_BROKER_URL = 'redis://localhost:6379/1'
    CELERY_RESULT_BACKEND = 'redis://localhost:6379/1'

    NOTIFICATION_TRANSPORT = 'log'
    ASSISTANT_WEBHOOK_URL = ''
    CHANNEL_OUTBOUND_WEBHOOK_URL = 'http://channel-gateway.test/send'
    ASSISTANT_WEBHOOK_TIMEOUT = 2.0
    CHANNEL_SEND_TIMEOUT = 2.0
    ACK_BUFFER_MAX_ENTRIES = 100

    @classmethod
    def init_app(cls, app):
        """Testing-specific initialization"""
        # Do NOT call Config.init_app for testing - nothing here needs Redis
        import tempfile
        app.config['MEDIA_ROOT'] = os.path.join(tempfile.gettempdir(), 'omnidesk_test_media')

        # Keep foreign keys off for SQLite in tests so fixtures can build rows
        # in any order; constraint behaviour is covered by the Postgres schema
        from sqlalchemy import event
        from sqlalchemy.engine import Engine

        if not event.contains(Engine, "connect", _sqlite_foreign_keys_off):
            event.listen(Engine, "connect", _sqlite_foreign_keys_off)


class ProductionConfig(Config):
    """Production environment configuration"""
    DEBUG = False
    TESTING = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', '')

    REDIS_URL = os.environ.get('REDIS_URL', '')
    CELERY_BROKER_URL = os.environ.get('REDIS_URL', '')
    CELERY_RESULT_BACKEND = os.environ.get('REDIS_URL', '')

    # If using rediss:// (SSL), append required parameters
    if CELERY_BROKER_URL.startswith('rediss://'):
        if 'ssl_cert_reqs' not in CELERY_BROKER_URL:
            separator = '&' if '?' in CELERY_BROKER_URL else '?'
            ssl_params = f"{separator}ssl_cert_reqs=CERT_NONE"
            CELERY_BROKER_URL += ssl_params
            CELERY_RESULT_BACKEND += ssl_params

    @classmethod
    def init_app(cls, app):
        """Production-specific initialization"""
        Config.init_app(app)

        if not cls.SQLALCHEMY_DATABASE_URI:
            cls.SQLALCHEMY_DATABASE_URI = cls.get_required_env('POSTGRES_URI')
            app.config['SQLALCHEMY_DATABASE_URI'] = cls.SQLALCHEMY_DATABASE_URI
        if not os.environ.get('SECRET_KEY'):
            raise ConfigurationError("Required environment variable SECRET_KEY is not set")

        # Log to syslog in production
        import logging
        from logging.handlers import SysLogHandler
        syslog_handler = SysLogHandler()
        syslog_handler.setLevel(logging.WARNING)
        app.logger.addHandler(syslog_handler)


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(config_name: Optional[str] = None) -> type[Config]:
    """Get configuration class based on environment"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    return config.get(config_name, DevelopmentConfig)
