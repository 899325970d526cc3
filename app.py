"""
Campus Attendance System - Main Application

Entry point for the attendance web service. Lecturers open time-boxed
attendance sessions for a course; students mark themselves present through
QR code, face capture, geolocation or NFC tap.

Run with:
    FLASK_ENV=development python app.py
"""

import logging
import os

from campus_attendance import create_app

app = create_app(os.environ.get('FLASK_ENV'))
logger = logging.getLogger(__name__)

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    logger.info(f"Starting campus attendance service on port {port}")
    app.run(debug=app.config['DEBUG'], host='0.0.0.0', port=port)
