"""
Barbershop Reminders - Configuration
Application configuration management
"""
import os
import logging
import tempfile
from pathlib import Path
from urllib.parse import urlparse, parse_qs, urlencode, urlunparse


def _require_env(name: str, default: str = None, allow_default_in_dev: bool = True) -> str:
    """
    Get environment variable, failing loudly in production if not set.

    Args:
        name: Environment variable name
        default: Default value (only used in development)
        allow_default_in_dev: Whether to allow default in development mode

    Returns:
        The environment variable value

    Raises:
        RuntimeError: If variable is not set in production
    """
    value = os.getenv(name)
    is_production = os.getenv('FLASK_ENV', 'development') == 'production'

    if value:
        return value

    if is_production:
        if default is None or name in ('SECRET_KEY',):
            raise RuntimeError(
                f"SECURITY ERROR: {name} environment variable is required in production. "
                f"Set it in your deployment environment."
            )
        logging.warning(f"Using default value for {name} in production - consider setting explicitly")
        return default

    if default is not None and allow_default_in_dev:
        logging.debug(f"Using default value for {name} in development")
        return default

    raise RuntimeError(f"{name} environment variable is required")


def get_database_url():
    """
    Get and process the database URL for proper connection handling.
    - Handles URL scheme conversion (postgres:// -> postgresql://)
    - Ensures SSL is enabled for PostgreSQL connections
    """
    url = os.getenv('DATABASE_URL')

    if not url:
        # Without a database the queue still runs on its in-memory fallback,
        # so boot against a throwaway SQLite file instead of refusing to start.
        fallback = f"sqlite:///{Path(tempfile.gettempdir()) / 'reminders.db'}"
        logging.warning("DATABASE_URL not set; using fallback %s", fallback)
        return fallback

    if url.startswith('postgres://'):
        url = url.replace('postgres://', 'postgresql://', 1)

    if url.startswith('postgresql://'):
        try:
            parsed = urlparse(url)
            query_params = parse_qs(parsed.query)

            if 'sslmode' not in query_params:
                query_params['sslmode'] = ['require']

            new_query = urlencode(query_params, doseq=True)
            url = urlunparse((
                parsed.scheme,
                parsed.netloc,
                parsed.path,
                parsed.params,
                new_query,
                parsed.fragment
            ))
        except ValueError as e:
            # Special characters in the password can break urlparse
            logging.warning(f"Could not parse DATABASE_URL (special chars?): {e}")
            if 'sslmode=' not in url:
                separator = '&' if '?' in url else '?'
                url = f"{url}{separator}sslmode=require"

    return url


def get_engine_options():
    """
    Get SQLAlchemy engine options based on the database type.
    """
    db_url = get_database_url()

    options = {
        'pool_pre_ping': True,  # Verify connections before use
    }

    if db_url.startswith('postgresql://'):
        options.update({
            'pool_recycle': 180,
            'pool_timeout': 20,
            'pool_size': 2,
            'max_overflow': 4,
            'connect_args': {
                'connect_timeout': 20,
                'keepalives': 1,
                'keepalives_idle': 20,
                'keepalives_interval': 5,
                'keepalives_count': 3,
                'options': '-c statement_timeout=20000',  # 20 second query timeout
                'application_name': 'barbershop-reminders',
            }
        })

    if db_url.startswith('sqlite://'):
        from sqlalchemy.pool import NullPool
        options = {'poolclass': NullPool}

    return options


class Config:
    """Base configuration"""

    SECRET_KEY = _require_env('SECRET_KEY', 'dev-secret-key-for-local-development-only')
    DEBUG = os.getenv('DEBUG', 'False') == 'True'
    FLASK_ENV = os.getenv('FLASK_ENV', 'development')

    # Database
    SQLALCHEMY_DATABASE_URI = get_database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = DEBUG
    SQLALCHEMY_ENGINE_OPTIONS = get_engine_options()

    # Rate Limiting Configuration
    RATELIMIT_ENABLED = os.getenv('RATELIMIT_ENABLED', 'True') == 'True'
    RATELIMIT_STORAGE_URI = os.getenv('RATELIMIT_STORAGE_URI', 'memory://')
    RATELIMIT_HEADERS_ENABLED = True
    REMINDER_RUN_RATE_LIMIT = os.getenv('REMINDER_RUN_RATE_LIMIT', '30 per minute')

    # Reminder queue
    REMINDER_QUEUE_BACKEND = os.getenv('REMINDER_QUEUE_BACKEND', 'database')  # database | memory
    REMINDER_SURVEY_DELAY_HOURS = int(os.getenv('REMINDER_SURVEY_DELAY_HOURS', 24))
    REMINDER_POLL_INTERVAL_SECONDS = int(os.getenv('REMINDER_POLL_INTERVAL_SECONDS', 300))
    REMINDER_DISPLAY_TIMEZONE = os.getenv('REMINDER_DISPLAY_TIMEZONE', 'America/Sao_Paulo')
    REMINDER_DEFAULT_COUNTRY_CODE = os.getenv('REMINDER_DEFAULT_COUNTRY_CODE', '55')
    REMINDER_LOG_MEMORY_LIMIT = int(os.getenv('REMINDER_LOG_MEMORY_LIMIT', 200))

    # WhatsApp gateway
    WHATSAPP_PROVIDER = os.getenv('WHATSAPP_PROVIDER', 'disabled')  # bitsafira | console | disabled
    BITSAFIRA_BASE_URL = os.getenv('BITSAFIRA_BASE_URL', 'https://api.bitsafira.com.br')
    BITSAFIRA_TOKEN = os.getenv('BITSAFIRA_TOKEN', '')
    BITSAFIRA_INSTANCE_ID = os.getenv('BITSAFIRA_INSTANCE_ID', '')
    WHATSAPP_SEND_TIMEOUT_SECONDS = int(os.getenv('WHATSAPP_SEND_TIMEOUT_SECONDS', 15))

    APP_NAME = os.getenv('APP_NAME', 'Barbershop Reminders')

    # Dashboard URLs (for CORS)
    WEB_URL = os.getenv('WEB_URL', 'http://localhost:3000')
    ADMIN_URL = os.getenv('ADMIN_URL', '')

    @staticmethod
    def init_app(app):
        """Validate reminder settings that have a closed set of values."""
        backend = (app.config.get('REMINDER_QUEUE_BACKEND') or 'database').lower()
        if backend not in ('database', 'memory'):
            app.logger.warning("Unknown REMINDER_QUEUE_BACKEND '%s'; using 'database'", backend)
            backend = 'database'
        app.config['REMINDER_QUEUE_BACKEND'] = backend


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_ECHO = True


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_ECHO = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    WHATSAPP_PROVIDER = 'console'


config_by_name = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}


def get_config(name=None):
    """Config class for ``name`` (defaults to FLASK_ENV)."""
    return config_by_name.get(name or os.getenv('FLASK_ENV', 'default'), DevelopmentConfig)
