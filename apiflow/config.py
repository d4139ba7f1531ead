import os
from dotenv import load_dotenv

load_dotenv()


def env_bool(name, default=False):
    """Parse true/false style environment values"""
    value = os.getenv(name)
    if value is None or value == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    FLASK_ENV = os.getenv('FLASK_ENV', 'development')
    DEBUG = os.getenv('FLASK_ENV') == 'development'

    # Target API
    API_BASE_URL = os.getenv('API_BASE_URL', '')

    # HTTP client
    HTTP_TIMEOUT_SECONDS = float(os.getenv('HTTP_TIMEOUT_SECONDS', '30'))
    HTTP_FAIL_ON_ERROR_STATUS = env_bool('HTTP_FAIL_ON_ERROR_STATUS', True)

    # Flow engine
    DEFAULT_DELAY_MS = int(os.getenv('DEFAULT_DELAY_MS', '1000'))
    HISTORY_MAX_ENTRIES = int(os.getenv('HISTORY_MAX_ENTRIES', '50'))

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # CORS (comma separated, added to the local dev origins)
    CORS_ORIGINS = os.getenv('CORS_ORIGINS', '')


class TestConfig(Config):
    TESTING = True
    API_BASE_URL = 'http://api.test'
    DEFAULT_DELAY_MS = 0
    LOG_LEVEL = 'DEBUG'
