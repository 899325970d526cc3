"""
Authentication Manager Module - Campus Attendance System

Identity collaborator for the attendance core. Authenticates users by email
and password, and answers the authorization questions the session protocol
receives as plain booleans.
"""

from werkzeug.security import check_password_hash
from typing import Any, Dict, Optional
import logging

ROLE_STUDENT = 'student'
ROLE_LECTURER = 'lecturer'
ROLE_ADMIN = 'admin'
ROLES = (ROLE_STUDENT, ROLE_LECTURER, ROLE_ADMIN)


class AuthManager:
    """
    Authentication and authorization checks.
    """

    def __init__(self, database_manager, course_manager):
        """
        Initialize the authentication manager.

        Args:
            database_manager: Database manager instance
            course_manager: Course manager used for instructor checks
        """
        self.db = database_manager
        self.courses = course_manager
        self.logger = logging.getLogger(__name__)

    def authenticate_user(self, email: str, password: str) -> Optional[Dict[str, Any]]:
        """
        Authenticate user with email and password.

        Args:
            email (str): Login email
            password (str): Password

        Returns:
            Dict[str, Any]: User information without the password hash, or None
        """
        user = self.db.execute_query(
            "SELECT * FROM users WHERE email = ?",
            (email,),
            fetch_all=False
        )

        if not user or not check_password_hash(user['password_hash'], password):
            self.logger.warning(f"Authentication failed for {email}")
            return None

        user.pop('password_hash', None)
        self.logger.info(f"User {email} authenticated")
        return user

    def can_manage_course(self, user_id, role: str, course_id) -> bool:
        """Admins manage every course; lecturers manage the courses they teach."""
        if role == ROLE_ADMIN:
            return True
        if role == ROLE_LECTURER:
            return self.courses.is_instructor(user_id, course_id)
        return False
