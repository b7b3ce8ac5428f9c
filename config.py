# Smart Class QR Scheduler Configuration

import os
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Base directory
BASE_DIR = Path(__file__).parent.absolute()


def _env_flag(name, default):
    return os.environ.get(name, default).lower() in ['true', 'on', '1']


class Config:
    """Base configuration class"""

    # Flask Configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'smart-class-secret-key-2025'
    SYSTEM_NAME = 'Smart Class Management System'

    # Database Configuration
    DATABASE_PATH = Path(os.environ.get('DATABASE_PATH') or BASE_DIR / 'database' / 'smartclass.db')

    # Scheduler Configuration
    SCHEDULER_ENABLED = _env_flag('SCHEDULER_ENABLED', 'true')
    SCHEDULER_TICK_SECONDS = int(os.environ.get('SCHEDULER_TICK_SECONDS') or 60)
    SCHEDULER_LOOKAHEAD_MINUTES = int(os.environ.get('SCHEDULER_LOOKAHEAD_MINUTES') or 10)
    SCHEDULER_SUPPRESS_DUPLICATES = _env_flag('SCHEDULER_SUPPRESS_DUPLICATES', 'true')
    SCHEDULER_WRAP_MIDNIGHT = _env_flag('SCHEDULER_WRAP_MIDNIGHT', 'false')
    SCHEDULER_MAX_WORKERS = int(os.environ.get('SCHEDULER_MAX_WORKERS') or 4)
    SCHEDULER_HISTORY_SIZE = 50
    SCHEDULER_SHUTDOWN_TIMEOUT = 30  # seconds

    # QR Code Configuration
    QR_CODE_VALIDITY_HOURS = 1
    QR_CODE_BOX_SIZE = 10
    QR_CODE_BORDER = 4
    QR_CODE_FILL_COLOR = 'black'
    QR_CODE_BACK_COLOR = 'white'

    # Email Configuration
    MAIL_SERVER = os.environ.get('MAIL_SERVER') or 'localhost'
    MAIL_PORT = int(os.environ.get('MAIL_PORT') or 587)
    MAIL_USE_TLS = _env_flag('MAIL_USE_TLS', 'true')
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_DEFAULT_SENDER = os.environ.get('MAIL_DEFAULT_SENDER') or 'noreply@smartclass.local'
    MAIL_TIMEOUT = 30  # seconds
    MAIL_SUPPRESS_SEND = _env_flag('MAIL_SUPPRESS_SEND', 'false')

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'
    LOG_FORMAT = '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
    LOG_FILE = BASE_DIR / 'logs' / 'smartclass.log'
    LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
    LOG_BACKUP_COUNT = 5

    # Development Configuration
    DEBUG = _env_flag('DEBUG', 'False')
    TESTING = False

    @classmethod
    def init_app(cls, app):
        """Initialize application configuration"""
        app.config.from_object(cls)
        logging.getLogger().setLevel(cls.LOG_LEVEL)


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False

    DATABASE_PATH = Path(os.environ.get('DATABASE_PATH') or BASE_DIR / 'database' / 'smartclass_dev.db')

    # More verbose logging
    LOG_LEVEL = 'DEBUG'

    # Email configuration for development (MailHog)
    MAIL_SERVER = 'localhost'
    MAIL_PORT = 1025
    MAIL_USE_TLS = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = True

    # Tests point DATABASE_PATH at a temporary file
    SCHEDULER_ENABLED = False
    SCHEDULER_MAX_WORKERS = 1

    # Disable email for testing
    MAIL_SUPPRESS_SEND = True


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False

    DATABASE_PATH = Path(os.environ.get('DATABASE_PATH') or BASE_DIR / 'database' / 'smartclass_prod.db')

    # Production logging
    LOG_LEVEL = 'WARNING'

    @classmethod
    def init_app(cls, app):
        super().init_app(app)

        # Setup file logging
        if not app.debug:
            cls.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                cls.LOG_FILE,
                maxBytes=cls.LOG_MAX_BYTES,
                backupCount=cls.LOG_BACKUP_COUNT
            )
            file_handler.setFormatter(logging.Formatter(cls.LOG_FORMAT))
            file_handler.setLevel(logging.INFO)
            logging.getLogger().addHandler(file_handler)
            app.logger.info('Smart Class QR Scheduler startup')


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(config_name=None):
    """Get configuration class by name, falling back to FLASK_ENV"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'default')
    return config.get(config_name, DevelopmentConfig)


def validate_config(settings):
    """
    Validate configuration settings.

    Args:
        settings: Mapping of configuration keys (e.g. app.config)

    Returns:
        list: Error messages, empty when valid
    """
    errors = []

    if settings['SCHEDULER_TICK_SECONDS'] <= 0:
        errors.append("SCHEDULER_TICK_SECONDS must be positive")
    if settings['SCHEDULER_LOOKAHEAD_MINUTES'] <= 0:
        errors.append("SCHEDULER_LOOKAHEAD_MINUTES must be positive")
    if settings['SCHEDULER_MAX_WORKERS'] < 1:
        errors.append("SCHEDULER_MAX_WORKERS must be at least 1")
    if settings['QR_CODE_VALIDITY_HOURS'] <= 0:
        errors.append("QR_CODE_VALIDITY_HOURS must be positive")

    # Check email configuration if messages are really sent
    if not settings['MAIL_SUPPRESS_SEND']:
        if not settings['MAIL_SERVER']:
            errors.append("MAIL_SERVER is required when email sending is enabled")
        if settings['MAIL_USERNAME'] and not settings['MAIL_PASSWORD']:
            errors.append("MAIL_PASSWORD is required when MAIL_USERNAME is set")

    return errors


def init_config(app, config_name=None, overrides=None):
    """
    Initialize application with configuration.

    Args:
        app: Flask application
        config_name (str): development, testing or production
        overrides (dict): Values applied on top of the configuration class

    Returns:
        The configuration class used
    """
    config_class = get_config(config_name)
    config_class.init_app(app)
    if overrides:
        app.config.update(overrides)

    errors = validate_config(app.config)
    if errors:
        for error in errors:
            app.logger.error(f"Configuration error: {error}")
        raise RuntimeError("Configuration validation failed")

    return config_class

