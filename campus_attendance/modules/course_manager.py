"""
Course Manager Module - Campus Attendance System

Read-side access to courses for the attendance core:
course metadata, who teaches a course, and where the
class meets (the geofence used by the geolocation method).
"""

from typing import Any, Dict, Optional, Tuple
import logging

from campus_attendance.modules.errors import InvalidInput


class CourseManager:
    """
    Course lookups backed by the attendance database.
    """

    def __init__(self, database_manager, default_location: Tuple[float, float] = (5.6037, -0.1870),
                 default_radius_meters: float = 100.0):
        """
        Initialize the course manager with database connection.

        Args:
            database_manager: Database manager instance
            default_location: (lat, lng) used when a course has no registered location
            default_radius_meters (float): Geofence radius used when a course sets none
        """
        self.db = database_manager
        self.default_location = default_location
        self.default_radius_meters = default_radius_meters
        self.logger = logging.getLogger(__name__)

    def get_course(self, course_id) -> Optional[Dict[str, Any]]:
        return self.db.execute_query(
            """SELECT c.*, u.display_name AS instructor
               FROM courses c
               LEFT JOIN users u ON c.instructor_id = u.id
               WHERE c.id = ?""",
            (course_id,),
            fetch_all=False
        )

    def is_instructor(self, user_id, course_id) -> bool:
        course = self.get_course(course_id)
        return course is not None and course['instructor_id'] == user_id

    def get_geofence(self, course_id) -> Tuple[float, float, float]:
        """
        Get the registered class location for a course.

        Args:
            course_id: Course ID

        Returns:
            Tuple[float, float, float]: (latitude, longitude, radius in meters)
        """
        course = self.get_course(course_id)
        lat, lng = self.default_location
        radius = self.default_radius_meters

        if course:
            if course.get('latitude') is not None and course.get('longitude') is not None:
                lat, lng = course['latitude'], course['longitude']
            if course.get('geofence_radius_meters') is not None:
                radius = course['geofence_radius_meters']
        else:
            self.logger.warning(f"Course {course_id} not found, using default class location")

        return lat, lng, radius

    def set_location(self, course_id, latitude: float, longitude: float,
                     radius_meters: float = None) -> bool:
        """Register where a course meets. Returns False for an unknown course."""
        if not -90.0 <= latitude <= 90.0 or not -180.0 <= longitude <= 180.0:
            raise InvalidInput('Course location coordinates are out of range')
        if radius_meters is not None and not radius_meters > 0:
            raise InvalidInput('Geofence radius must be greater than zero')

        affected_rows = self.db.execute_update(
            """UPDATE courses SET latitude = ?, longitude = ?, geofence_radius_meters = ?
               WHERE id = ?""",
            (latitude, longitude, radius_meters, course_id)
        )
        if affected_rows:
            self.logger.info(f"Location of course {course_id} set to ({latitude}, {longitude})")
        return affected_rows > 0
