"""
Application factory for the Campus Attendance System.

Builds the Flask application, loads configuration, configures logging and
wires the managers together. The managers are stored on
``app.extensions['campus_attendance']`` for the route handlers.
"""

import logging
from types import SimpleNamespace

from flask import Flask

from campus_attendance.config import get_config, validate_config
from campus_attendance.modules.attendance_manager import AttendanceManager
from campus_attendance.modules.auth_manager import AuthManager
from campus_attendance.modules.course_manager import CourseManager
from campus_attendance.modules.database_manager import DatabaseManager
from campus_attendance.modules.qr_generator import QRGenerator
from campus_attendance.modules.session_manager import SessionManager, utc_now
from campus_attendance.modules.student_manager import StudentManager
from campus_attendance.modules.verification import build_verifiers

logger = logging.getLogger(__name__)


def build_services(settings, clock=None):
    """
    Construct the managers from a settings mapping (``app.config`` or a dict).

    Args:
        settings: Mapping with the configuration keys
        clock: Callable returning the current aware datetime

    Returns:
        SimpleNamespace: db, courses, students, auth, qr, sessions, verifiers, attendance
    """
    clock = clock or utc_now
    default_location = (settings['GEOFENCE_DEFAULT_LATITUDE'], settings['GEOFENCE_DEFAULT_LONGITUDE'])

    db = DatabaseManager(
        settings['DATABASE_PATH'],
        timeout=settings.get('DATABASE_TIMEOUT', 30.0),
        seed_demo_data=settings.get('SEED_DEMO_DATA', False),
        default_location=default_location
    )
    courses = CourseManager(db, default_location=default_location,
                            default_radius_meters=settings['GEOFENCE_DEFAULT_RADIUS_METERS'])
    students = StudentManager(db)
    auth = AuthManager(db, courses)
    qr = QRGenerator(settings['QR_SIGNING_KEY'], clock=clock,
                     box_size=settings.get('QR_CODE_BOX_SIZE', 10),
                     border=settings.get('QR_CODE_BORDER', 4))
    sessions = SessionManager(db, clock=clock,
                              late_threshold_seconds=settings['ATTENDANCE_LATE_THRESHOLD_SECONDS'])
    verifiers = build_verifiers(qr, courses, students,
                                face_threshold=settings['FACE_MATCH_THRESHOLD'])
    attendance = AttendanceManager(db, sessions, verifiers, clock=clock)

    return SimpleNamespace(
        db=db,
        courses=courses,
        students=students,
        auth=auth,
        qr=qr,
        sessions=sessions,
        verifiers=verifiers,
        attendance=attendance
    )


def create_app(config_name=None, overrides=None, clock=None):
    """
    Create and configure the Flask application.

    Args:
        config_name (str): development, testing, production or default
        overrides (dict): Values applied on top of the configuration class
        clock: Callable returning the current aware datetime

    Returns:
        Flask: The configured application
    """
    config_class = get_config(config_name)

    errors = validate_config(config_class)
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        raise RuntimeError("Configuration validation failed")

    app = Flask(__name__)
    config_class.init_app(app)
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(
        level=getattr(logging, str(app.config['LOG_LEVEL']).upper(), logging.INFO),
        format=app.config['LOG_FORMAT']
    )

    app.extensions['campus_attendance'] = build_services(app.config, clock=clock)

    from campus_attendance.routes import api
    app.register_blueprint(api)

    logger.info(f"Campus attendance application created with {config_class.__name__}")
    return app
