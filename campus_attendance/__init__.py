# Campus Attendance System - App Package
"""
Main application package for the Campus Attendance System.
Lecturers open time-boxed attendance sessions; students mark themselves
present by QR code, face capture, geolocation or NFC tap.
"""

__version__ = "1.0.0"
__description__ = "Attendance sessions and multi-method presence verification for university courses"

from .application import create_app, build_services

__all__ = [
    'create_app',
    'build_services'
]
