# clinic_app_pkg/config.py
import os

# Environment variables are loaded from .env by run.py / the app factory.

DEFAULT_SECRET_KEY = 'you_REALLY_should_set_a_secret_key_in_env'
DEFAULT_ADMIN_PASSWORD = 'admin123'


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Base configuration settings."""
    # Application Security
    SECRET_KEY = os.environ.get('SECRET_KEY') or DEFAULT_SECRET_KEY

    # Session tokens (opaque, stored in the sessions table)
    SESSION_TOKEN_EXPIRATION_DAYS = int(os.environ.get('SESSION_TOKEN_EXPIRATION_DAYS', 7))

    # Database
    # Default to SQLite if DATABASE_URL is not set in the environment
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///clinic.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    AUTO_CREATE_TABLES = _env_bool('AUTO_CREATE_TABLES', True)

    # Seeded administrator. Must be rotated outside development.
    DEFAULT_ADMIN_EMAIL = os.environ.get('DEFAULT_ADMIN_EMAIL') or 'admin@clinic.local'
    DEFAULT_ADMIN_PASSWORD = os.environ.get('DEFAULT_ADMIN_PASSWORD') or DEFAULT_ADMIN_PASSWORD
    DEFAULT_ADMIN_NAME = os.environ.get('DEFAULT_ADMIN_NAME') or 'Administrator'

    # Appointment workflow
    ENFORCE_STATUS_TRANSITIONS = _env_bool('ENFORCE_STATUS_TRANSITIONS', True)
    UPCOMING_APPOINTMENTS_LIMIT = int(os.environ.get('UPCOMING_APPOINTMENTS_LIMIT', 10))

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # Frontend URL
    FRONTEND_URL = os.environ.get('FRONTEND_URL') or 'http://localhost:5173'

    @classmethod
    def validate(cls):
        """Hook for environment-specific sanity checks, run by create_app."""
        return None


class DevelopmentConfig(Config):
    """Development-specific configuration."""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get('DEV_DATABASE_URL') or os.environ.get('DATABASE_URL') or 'sqlite:///clinic_dev.db'
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')


class TestingConfig(Config):
    """Testing-specific configuration."""
    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get('TEST_DATABASE_URL') or 'sqlite://'
    DEFAULT_ADMIN_EMAIL = 'admin@clinic.local'
    DEFAULT_ADMIN_PASSWORD = DEFAULT_ADMIN_PASSWORD
    ENFORCE_STATUS_TRANSITIONS = True
    AUTO_CREATE_TABLES = True


class ProductionConfig(Config):
    """Production-specific configuration."""
    DEBUG = False
    TESTING = False
    AUTO_CREATE_TABLES = _env_bool('AUTO_CREATE_TABLES', False)
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'WARNING')

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///clinic.db'

    @classmethod
    def validate(cls):
        if cls.SECRET_KEY == DEFAULT_SECRET_KEY:
            raise ValueError("SECRET_KEY not set via environment variable for production")
        if cls.DEFAULT_ADMIN_PASSWORD == DEFAULT_ADMIN_PASSWORD:
            raise ValueError("DEFAULT_ADMIN_PASSWORD must be rotated for production")


CONFIG_BY_NAME = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
}


def get_config(name=None):
    """Helper function to get the correct config class based on FLASK_ENV."""
    env = (name or os.environ.get('FLASK_ENV', 'development')).lower()
    return CONFIG_BY_NAME.get(env, DevelopmentConfig)
