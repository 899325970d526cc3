# Campus Attendance System Configuration

import os
import logging
from logging.handlers import RotatingFileHandler
from datetime import timedelta
from pathlib import Path

# Base directory
BASE_DIR = Path(__file__).parent.parent.absolute()


def _env_flag(name, default='False'):
    return os.environ.get(name, default).lower() in ['true', 'on', '1']


class Config:
    """Base configuration class"""

    # Flask Configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'campus-attendance-secret-key'

    # Database Configuration
    DATABASE_PATH = Path(os.environ.get('DATABASE_PATH') or BASE_DIR / 'database' / 'attendance.db')
    DATABASE_TIMEOUT = 30.0
    SEED_DEMO_DATA = _env_flag('SEED_DEMO_DATA', 'True')

    # QR Code Configuration
    QR_SIGNING_KEY = os.environ.get('QR_SIGNING_KEY') or 'campus-attendance-qr-signing-key'
    QR_CODE_BOX_SIZE = 10
    QR_CODE_BORDER = 4

    # Session Cookie Configuration
    PERMANENT_SESSION_LIFETIME = timedelta(hours=24)
    SESSION_COOKIE_SECURE = False  # Set to True in production with HTTPS
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Strict'

    # Attendance Configuration
    ATTENDANCE_LATE_THRESHOLD_SECONDS = int(os.environ.get('ATTENDANCE_LATE_THRESHOLD_SECONDS') or 600)

    # Verification Configuration
    GEOFENCE_DEFAULT_RADIUS_METERS = float(os.environ.get('GEOFENCE_DEFAULT_RADIUS_METERS') or 100.0)
    GEOFENCE_DEFAULT_LATITUDE = float(os.environ.get('GEOFENCE_DEFAULT_LATITUDE') or 5.6037)
    GEOFENCE_DEFAULT_LONGITUDE = float(os.environ.get('GEOFENCE_DEFAULT_LONGITUDE') or -0.1870)
    FACE_MATCH_THRESHOLD = float(os.environ.get('FACE_MATCH_THRESHOLD') or 0.85)

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'
    LOG_FORMAT = '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
    LOG_FILE = BASE_DIR / 'logs' / 'attendance.log'
    LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
    LOG_BACKUP_COUNT = 5

    DEBUG = _env_flag('DEBUG')
    TESTING = False

    @classmethod
    def init_app(cls, app):
        """Initialize application configuration"""
        Path(cls.DATABASE_PATH).parent.mkdir(parents=True, exist_ok=True)

        app.config.update({
            key: getattr(cls, key) for key in dir(cls) if key.isupper()
        })


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    DATABASE_PATH = BASE_DIR / 'database' / 'attendance_dev.db'
    LOG_LEVEL = 'DEBUG'


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = True

    # Overridden per test with a temporary file; sqlite ':memory:' is per connection
    DATABASE_PATH = BASE_DIR / 'database' / 'attendance_test.db'
    SEED_DEMO_DATA = True
    QR_SIGNING_KEY = 'testing-qr-key'


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SESSION_COOKIE_SECURE = True  # Requires HTTPS
    DATABASE_PATH = BASE_DIR / 'database' / 'attendance_prod.db'
    SEED_DEMO_DATA = False
    LOG_LEVEL = 'WARNING'

    @classmethod
    def init_app(cls, app):
        super().init_app(app)

        if not app.debug:
            Path(cls.LOG_FILE).parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                cls.LOG_FILE,
                maxBytes=cls.LOG_MAX_BYTES,
                backupCount=cls.LOG_BACKUP_COUNT
            )
            file_handler.setFormatter(logging.Formatter(cls.LOG_FORMAT))
            file_handler.setLevel(logging.INFO)
            app.logger.addHandler(file_handler)

            app.logger.setLevel(logging.INFO)
            app.logger.info('Campus Attendance System startup')


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(config_name=None):
    """Get configuration based on environment variable"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'default')
    return config.get(config_name, DevelopmentConfig)


def validate_config(config_class):
    """Validate configuration settings"""
    errors = []

    if config_class.ATTENDANCE_LATE_THRESHOLD_SECONDS < 0:
        errors.append("ATTENDANCE_LATE_THRESHOLD_SECONDS must not be negative")

    if config_class.GEOFENCE_DEFAULT_RADIUS_METERS <= 0:
        errors.append("GEOFENCE_DEFAULT_RADIUS_METERS must be positive")

    if not 0.0 < config_class.FACE_MATCH_THRESHOLD <= 1.0:
        errors.append("FACE_MATCH_THRESHOLD must be in (0, 1]")

    if not config_class.QR_SIGNING_KEY:
        errors.append("QR_SIGNING_KEY is required")

    return errors
