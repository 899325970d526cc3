"""
HTTP routes for the Campus Attendance System.

JSON API over the session protocol. Identity is resolved from the Flask
session once per request and handed to the managers as plain values.
"""

import logging
from functools import wraps

from flask import Blueprint, current_app, jsonify, request, session

from campus_attendance.modules.auth_manager import ROLE_ADMIN, ROLE_LECTURER, ROLE_STUDENT
from campus_attendance.modules.errors import (
    AttendanceError, Forbidden, InvalidInput, NotFound, PersistenceError,
    SessionExpired, Unauthenticated
)
from campus_attendance.modules.session_manager import parse_id
from campus_attendance.modules.verification import METHOD_QR

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__, url_prefix='/api')


def services():
    return current_app.extensions['campus_attendance']


def login_required(f):
    """Decorator to require login for protected routes"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if 'user_id' not in session:
            raise Unauthenticated()
        return f(*args, **kwargs)
    return decorated_function


def roles_required(*roles):
    """Decorator to restrict a route to the given roles"""
    def decorator(f):
        @wraps(f)
        @login_required
        def decorated_function(*args, **kwargs):
            if session.get('role') not in roles:
                raise Forbidden()
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidInput('Request body must be a JSON object')
    return data


@api.errorhandler(AttendanceError)
def handle_attendance_error(error):
    return jsonify(error.to_dict()), error.http_status


@api.errorhandler(PersistenceError)
def handle_persistence_error(error):
    logger.error(f"Persistence failure on {request.path}: {str(error)}")
    return jsonify(error.to_dict()), error.http_status


# Authentication

@api.route('/auth/login', methods=['POST'])
def login():
    data = json_body()
    email = data.get('email') or ''
    password = data.get('password') or ''
    if not isinstance(email, str) or not isinstance(password, str):
        raise InvalidInput('Email and password must be strings')
    email = email.strip()

    if not email or not password:
        raise InvalidInput('Please provide both email and password')

    user = services().auth.authenticate_user(email, password)
    if not user:
        return jsonify({'success': False, 'message': 'Invalid email or password'}), 401

    session.clear()
    session['user_id'] = user['id']
    session['role'] = user['role']
    session['display_name'] = user['display_name']

    return jsonify({'success': True, 'message': 'Login successful', 'user': user})


@api.route('/auth/logout', methods=['POST'])
def logout():
    session.clear()
    return jsonify({'success': True, 'message': 'Logout successful'})


# Attendance sessions

def _authorize_course(course_id):
    return services().auth.can_manage_course(session['user_id'], session['role'], course_id)


@api.route('/attendance/sessions', methods=['POST'])
@roles_required(ROLE_LECTURER, ROLE_ADMIN)
def create_session():
    """Open an attendance session; duration is in seconds."""
    data = json_body()
    if data.get('courseId') is None:
        raise InvalidInput('courseId is required')
    course_id = parse_id(data['courseId'], 'courseId')

    course = services().courses.get_course(course_id)
    if not course:
        raise NotFound(f'Course {course_id} not found')

    duration = data.get('durationSeconds', data.get('duration'))
    if duration is None:
        raise InvalidInput('durationSeconds is required')

    attendance_session = services().sessions.create_session(
        course['id'],
        data.get('courseName') or course['name'],
        duration,
        late_threshold_seconds=data.get('lateThresholdSeconds'),
        authorized=_authorize_course(course['id'])
    )
    return jsonify(attendance_session.to_dict()), 201


@api.route('/attendance/sessions/<int:session_id>', methods=['GET'])
@login_required
def get_session(session_id):
    return jsonify(services().sessions.describe_session(session_id))


@api.route('/attendance/sessions/<int:session_id>/close', methods=['PUT', 'POST'])
@roles_required(ROLE_LECTURER, ROLE_ADMIN)
def close_session(session_id):
    attendance_session = services().sessions.get_session(session_id)
    result = services().sessions.close_session(
        session_id, authorized=_authorize_course(attendance_session.course_id)
    )
    message = ('Attendance session was already closed' if result['already_closed']
               else 'Attendance session closed successfully')
    return jsonify({'ok': True, 'alreadyClosed': result['already_closed'], 'message': message})


@api.route('/attendance/sessions/<int:session_id>/qr', methods=['GET'])
@roles_required(ROLE_LECTURER, ROLE_ADMIN)
def session_qr_code(session_id):
    attendance_session = services().sessions.get_session(session_id)
    if not _authorize_course(attendance_session.course_id):
        raise Forbidden()
    return jsonify(services().qr.generate_session_qr_code(attendance_session))


# Attendance marking

@api.route('/attendance/mark', methods=['POST'])
@roles_required(ROLE_STUDENT)
def mark_attendance():
    data = json_body()
    session_id = data.get('sessionId')
    if session_id is None:
        raise InvalidInput('sessionId is required')

    result = services().attendance.submit_attendance(
        session_id, session['user_id'], data.get('method'), data.get('data')
    )
    return jsonify(result.to_dict()), result.http_status


@api.route('/attendance/scan', methods=['POST'])
@roles_required(ROLE_STUDENT)
def scan_qr_code():
    """Decode a scanned session QR code, fail fast on expiry, then submit."""
    qr_data = json_body().get('qr_data')
    qr = services().qr

    payload = qr.decode_session_payload(qr_data)
    if qr.is_expired(payload):
        raise SessionExpired('QR code has expired')

    result = services().attendance.submit_attendance(
        payload['sessionId'], session['user_id'], METHOD_QR, {'qr_data': qr_data}
    )
    return jsonify(result.to_dict()), result.http_status


# Attendance reports

@api.route('/attendance/course/<int:course_id>', methods=['GET'])
@roles_required(ROLE_LECTURER, ROLE_ADMIN)
def course_attendance(course_id):
    if not services().courses.get_course(course_id):
        raise NotFound(f'Course {course_id} not found')
    if not _authorize_course(course_id):
        raise Forbidden()
    return jsonify(services().attendance.get_course_attendance(course_id))


@api.route('/attendance/student', methods=['GET'])
@login_required
def student_attendance():
    course_id = request.args.get('courseId', type=int)
    return jsonify(services().attendance.get_student_attendance(session['user_id'], course_id))


# Credential registry

@api.route('/credentials/nfc', methods=['POST'])
@roles_required(ROLE_ADMIN)
def register_nfc_card():
    data = json_body()
    credential = services().students.register_nfc_card(data.get('studentId'), data.get('cardId'))
    return jsonify({'success': True, 'credential': credential}), 201


@api.route('/credentials/face', methods=['POST'])
@roles_required(ROLE_ADMIN)
def register_face_reference():
    data = json_body()
    services().students.register_face_reference(data.get('studentId'), data.get('embedding'))
    return jsonify({'success': True, 'message': 'Reference face enrolled'}), 201
