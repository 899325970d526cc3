"""
Error Types Module - Campus Attendance System

Outcome taxonomy shared by the session protocol, the verification providers
and the HTTP layer. Every business outcome is a recoverable, user-facing
error carrying an ``error_type`` string and the HTTP status it maps to.
Only ``PersistenceError`` represents a server-side failure.
"""


class AttendanceError(Exception):
    """Base class for all attendance outcomes surfaced to the caller."""

    error_type = 'attendance_error'
    http_status = 400

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    default_message = 'Attendance request failed'

    def to_dict(self):
        return {
            'success': False,
            'error_type': self.error_type,
            'message': self.message
        }


class InvalidInput(AttendanceError):
    error_type = 'invalid_input'
    http_status = 400
    default_message = 'Invalid input'


class NotFound(AttendanceError):
    error_type = 'not_found'
    http_status = 404
    default_message = 'Attendance session not found'


class SessionClosed(AttendanceError):
    error_type = 'session_closed'
    http_status = 409
    default_message = 'Attendance session is closed'


class SessionExpired(AttendanceError):
    error_type = 'session_expired'
    http_status = 410
    default_message = 'Attendance session has expired'


class DuplicateSubmission(AttendanceError):
    error_type = 'duplicate_submission'
    http_status = 409
    default_message = 'Attendance already marked for this session'


class ProofRejected(AttendanceError):
    error_type = 'proof_rejected'
    http_status = 422
    default_message = 'Verification failed'


class Unauthenticated(AttendanceError):
    error_type = 'unauthenticated'
    http_status = 401
    default_message = 'Authentication required'


class Forbidden(AttendanceError):
    error_type = 'forbidden'
    http_status = 403
    default_message = 'Unauthorized'


class PersistenceError(Exception):
    """The backing store failed. Surfaced as a 500 and never retried here."""

    error_type = 'server_error'
    http_status = 500

    def to_dict(self):
        return {
            'success': False,
            'error_type': self.error_type,
            'message': 'Server error'
        }
