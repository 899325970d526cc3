# Campus Attendance System - Modules Package
"""
Core business logic modules for the Campus Attendance System.
"""

MODULES = {
    'errors': 'Outcome taxonomy shared by the core and the HTTP layer',
    'database_manager': 'SQLite persistence for sessions, records and credentials',
    'session_manager': 'Attendance session lifecycle',
    'attendance_manager': 'Submission validation and lateness classification',
    'verification': 'QR, face, geolocation and NFC verification providers',
    'qr_generator': 'Signed session QR payloads and images',
    'course_manager': 'Course and class location lookups',
    'student_manager': 'NFC card and reference face registry',
    'auth_manager': 'Authentication and course authorization'
}


def get_module_info():
    """Get information about available modules"""
    return MODULES
