"""
Session Manager Module - Campus Attendance System

This module owns the attendance-session lifecycle. A session is created by a
lecturer or admin for one course, stays open for a fixed duration and is
closed either explicitly or by natural expiry.

Expiry is evaluated lazily: nothing closes sessions on a timer. A session
whose expiry time has passed still reports ``active`` until someone closes
it, and every submission compares the current time with ``expiry_time``.

States:
- open: active and now < expiry_time
- expired: active but now >= expiry_time
- closed: active is false
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from campus_attendance.modules.errors import Forbidden, InvalidInput, NotFound

STATE_OPEN = 'open'
STATE_EXPIRED = 'expired'
STATE_CLOSED = 'closed'

DEFAULT_LATE_THRESHOLD_SECONDS = 600


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_instant(value) -> Optional[datetime]:
    """Parse a stored ISO-8601 instant; naive values are taken as UTC."""
    if value is None or isinstance(value, datetime):
        return value
    instant = datetime.fromisoformat(value)
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant


def parse_id(value, field: str = 'id') -> int:
    """Coerce a row id from request data; anything else is invalid input."""
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise InvalidInput(f"{field} must be an integer id")
    try:
        number = int(value)
    except ValueError:
        raise InvalidInput(f"{field} must be an integer id")
    # sqlite INTEGER range
    if not -2 ** 63 <= number < 2 ** 63:
        raise InvalidInput(f"{field} is out of range")
    return number


@dataclass
class AttendanceSession:
    """Data class for attendance session structure."""
    id: Optional[int]
    course_id: int
    course_name: str
    created_at: datetime
    expiry_time: datetime
    duration: int
    late_threshold_seconds: int
    active: bool = True
    closed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'AttendanceSession':
        return cls(
            id=row['id'],
            course_id=row['course_id'],
            course_name=row['course_name'],
            created_at=parse_instant(row['created_at']),
            expiry_time=parse_instant(row['expiry_time']),
            duration=row['duration'],
            late_threshold_seconds=row['late_threshold_seconds'],
            active=bool(row['active']),
            closed_at=parse_instant(row.get('closed_at'))
        )

    def state_at(self, now: datetime) -> str:
        if not self.active:
            return STATE_CLOSED
        if now >= self.expiry_time:
            return STATE_EXPIRED
        return STATE_OPEN

    def is_open_at(self, now: datetime) -> bool:
        return self.state_at(now) == STATE_OPEN

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ('created_at', 'expiry_time', 'closed_at'):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


class SessionManager:
    """
    Attendance session lifecycle: create, close and lookup.
    Authorization is decided by the identity and course collaborators and
    passed in as a plain boolean.
    """

    def __init__(self, database_manager, clock: Callable[[], datetime] = None,
                 late_threshold_seconds: int = DEFAULT_LATE_THRESHOLD_SECONDS):
        """
        Initialize the session manager.

        Args:
            database_manager: Database manager instance
            clock: Callable returning the current aware datetime
            late_threshold_seconds (int): Default lateness threshold for new sessions
        """
        self.db = database_manager
        self.clock = clock or utc_now
        self.late_threshold_seconds = late_threshold_seconds
        self.logger = logging.getLogger(__name__)

    def create_session(self, course_id, course_name: str, duration_seconds,
                       late_threshold_seconds=None, authorized: bool = True) -> AttendanceSession:
        """
        Open a new attendance session for a course.

        Args:
            course_id: Course identifier from the course collaborator
            course_name (str): Course name stored with the session
            duration_seconds (int): How long the session accepts submissions, > 0
            late_threshold_seconds (int): Optional override of the lateness threshold
            authorized (bool): Whether the caller may manage this course

        Returns:
            AttendanceSession: The persisted session

        Raises:
            Forbidden: caller is not authorized
            InvalidInput: bad duration, threshold or course fields
        """
        if not authorized:
            raise Forbidden('Only the course lecturer or an admin can start an attendance session')

        if course_id is None or course_id == '':
            raise InvalidInput('courseId is required')
        if not course_name or not isinstance(course_name, str):
            raise InvalidInput('courseName is required')

        duration = self._positive_int(duration_seconds, 'duration')

        if late_threshold_seconds is None:
            late_threshold = self.late_threshold_seconds
        else:
            late_threshold = self._non_negative_int(late_threshold_seconds, 'lateThresholdSeconds')

        created_at = self.clock()
        session = AttendanceSession(
            id=None,
            course_id=course_id,
            course_name=course_name,
            created_at=created_at,
            expiry_time=created_at + timedelta(seconds=duration),
            duration=duration,
            late_threshold_seconds=late_threshold
        )

        session.id = self.db.insert_session({
            'course_id': session.course_id,
            'course_name': session.course_name,
            'created_at': session.created_at.isoformat(),
            'expiry_time': session.expiry_time.isoformat(),
            'duration': session.duration,
            'late_threshold_seconds': session.late_threshold_seconds
        })

        self.logger.info(f"Attendance session {session.id} created for course {course_id}, "
                         f"expires at {session.expiry_time.isoformat()}")
        return session

    def close_session(self, session_id, authorized: bool = True) -> Dict[str, Any]:
        """
        Close a session. Closing an already closed session is a no-op.

        Returns:
            Dict[str, Any]: {'session': AttendanceSession, 'already_closed': bool}
        """
        if not authorized:
            raise Forbidden('Only the course lecturer or an admin can close an attendance session')

        session_id = self.get_session(session_id).id

        closed_now = self.db.update_session_closed(session_id, self.clock().isoformat())
        if closed_now:
            self.logger.info(f"Attendance session {session_id} closed")
        else:
            self.logger.info(f"Attendance session {session_id} was already closed")

        return {
            'session': self.get_session(session_id),
            'already_closed': not closed_now
        }

    def get_session(self, session_id) -> AttendanceSession:
        session_id = parse_id(session_id, 'sessionId')
        row = self.db.get_session(session_id)
        if row is None:
            raise NotFound(f"Attendance session {session_id} not found")
        return AttendanceSession.from_row(row)

    def describe_session(self, session_id) -> Dict[str, Any]:
        """Session fields plus its derived state at the current time."""
        session = self.get_session(session_id)
        now = self.clock()
        data = session.to_dict()
        data['state'] = session.state_at(now)
        data['seconds_remaining'] = max(0, int((session.expiry_time - now).total_seconds()))
        return data

    @staticmethod
    def _positive_int(value, field: str) -> int:
        number = SessionManager._as_int(value, field)
        if number <= 0:
            raise InvalidInput(f"{field} must be greater than zero")
        return number

    @staticmethod
    def _non_negative_int(value, field: str) -> int:
        number = SessionManager._as_int(value, field)
        if number < 0:
            raise InvalidInput(f"{field} must not be negative")
        return number

    @staticmethod
    def _as_int(value, field: str) -> int:
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise InvalidInput(f"{field} must be a whole number of seconds")
        try:
            number = float(value)
        except ValueError:
            raise InvalidInput(f"{field} must be a whole number of seconds")
        if not number.is_integer():
            raise InvalidInput(f"{field} must be a whole number of seconds")
        return int(number)
