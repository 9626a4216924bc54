"""
Configuration loaded from the environment (and a .env file if present)
"""
import os
import re
import logging
import urllib.parse
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///chat.db"


def fix_database_url(url):
    """Normalise a database URL so SQLAlchemy accepts it.

    Hosted PostgreSQL providers hand out ``postgres://`` URLs and passwords
    with characters that must be URL encoded.
    """
    if url.startswith('postgres://'):
        url = 'postgresql://' + url[len('postgres://'):]

    match = re.match(r'(postgresql(?:\+\w+)?)://([^:]+):([^@]+)@([^/]+)/(.+)', url)
    if not match:
        return url

    scheme, username, password, host, dbname = match.groups()
    # Already encoded passwords must not be encoded twice
    encoded_password = urllib.parse.quote_plus(urllib.parse.unquote_plus(password))
    if encoded_password != password:
        logger.info(f"Encoded special characters in password for {scheme}://{username}:****@{host}/{dbname}")
    return f"{scheme}://{username}:{encoded_password}@{host}/{dbname}"


def _env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_list(name, default):
    value = os.environ.get(name)
    if value is None:
        return list(default)
    return [item.strip() for item in value.split(',') if item.strip()]


def load_config(overrides=None):
    """Build the Flask config mapping from environment variables.

    ``overrides`` wins over the environment; tests use it to point at an
    in-memory database.
    """
    load_dotenv()

    database_url = os.environ.get('DATABASE_URL')
    if not database_url and not (overrides and 'SQLALCHEMY_DATABASE_URI' in overrides):
        logger.warning(f"DATABASE_URL not set! Using {DEFAULT_DATABASE_URL} for development.")
    database_url = database_url or DEFAULT_DATABASE_URL

    config = {
        'SECRET_KEY': os.environ.get('SECRET_KEY') or os.urandom(24).hex(),
        'SQLALCHEMY_DATABASE_URI': fix_database_url(database_url),
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'HOST': os.environ.get('HOST', '0.0.0.0'),
        'PORT': int(os.environ.get('PORT', 8080)),
        'LOG_LEVEL': os.environ.get('LOG_LEVEL', 'INFO').upper(),
        'LOG_FILE': os.environ.get('LOG_FILE', 'app.log'),
        'HISTORY_LIMIT': int(os.environ.get('HISTORY_LIMIT', 400)),
        'SOCKETIO_ASYNC_MODE': os.environ.get('SOCKETIO_ASYNC_MODE', 'eventlet'),
        'SOCKETIO_LOGGER': _env_bool('SOCKETIO_LOGGER'),
        'CORS_ALLOWED_ORIGINS': os.environ.get('CORS_ALLOWED_ORIGINS', '*'),
        'PING_TIMEOUT': int(os.environ.get('PING_TIMEOUT', 60)),
        'PING_INTERVAL': int(os.environ.get('PING_INTERVAL', 25)),
        'DEFAULT_ROOMS': _env_list('DEFAULT_ROOMS', ['lobby', 'general', 'random']),
    }
    if overrides:
        config.update(overrides)
    return config
