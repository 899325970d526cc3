"""
Attendance Manager Module - Campus Attendance System

This module validates attendance submissions and records accepted ones.

A submission is checked in a fixed order and stops at the first failure:
1. the session exists                  -> not_found
2. the session is active               -> session_closed
3. the session has not expired         -> session_expired
4. no record exists for the student    -> duplicate_submission
5. the method's provider accepts proof -> proof_rejected / invalid_input

An accepted submission is ``late`` when more than the session's late
threshold has passed since the session was created, ``present`` otherwise.
Steps 4 to 6 run under a lock keyed by (session, student), and the table's
unique constraint backs the same rule across processes.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import logging
import threading

from campus_attendance.modules.errors import (
    AttendanceError, DuplicateSubmission, InvalidInput, ProofRejected,
    SessionClosed, SessionExpired
)
from campus_attendance.modules.session_manager import utc_now
from campus_attendance.modules.verification import METHODS, VerificationContext

STATUS_PRESENT = 'present'
STATUS_LATE = 'late'


@dataclass
class SubmissionResult:
    """Accepted{status} or Rejected{error_type, reason}."""
    accepted: bool
    status: Optional[str] = None
    error_type: Optional[str] = None
    reason: Optional[str] = None
    http_status: int = 200
    record: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def accept(cls, record: Dict[str, Any]) -> 'SubmissionResult':
        return cls(accepted=True, status=record['status'], record=record)

    @classmethod
    def reject(cls, error: AttendanceError) -> 'SubmissionResult':
        return cls(accepted=False, error_type=error.error_type, reason=error.message,
                   http_status=error.http_status)

    def to_dict(self) -> Dict[str, Any]:
        if self.accepted:
            message = ('Attendance marked as late' if self.status == STATUS_LATE
                       else 'Attendance marked successfully')
            return {
                'success': True,
                'status': self.status,
                'message': message,
                'record_id': self.record.get('id')
            }
        return {
            'success': False,
            'error_type': self.error_type,
            'message': self.reason
        }


class KeyedLock:
    """A mutex per key, dropped once no thread holds or waits for it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}

    @contextmanager
    def hold(self, key):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self):
        with self._guard:
            return len(self._locks)


class AttendanceManager:
    """
    Submission validation, lateness classification and attendance read
    projections.
    """

    def __init__(self, database_manager, session_manager, verifiers: Dict[str, Any],
                 clock: Callable[[], datetime] = None):
        """
        Initialize the attendance manager.

        Args:
            database_manager: Database manager instance
            session_manager: Session manager used for session lookups
            verifiers: Mapping of method name to verification provider
            clock: Callable returning the current aware datetime
        """
        self.db = database_manager
        self.sessions = session_manager
        self.verifiers = verifiers
        self.clock = clock or utc_now
        self.logger = logging.getLogger(__name__)
        self._locks = KeyedLock()

    def submit_attendance(self, session_id, student_id, method: str, proof) -> SubmissionResult:
        """
        Validate and record one attendance submission.

        Args:
            session_id: Attendance session ID
            student_id: Authenticated student's user ID
            method (str): One of qr, face, geo, nfc
            proof: Method-specific evidence

        Returns:
            SubmissionResult: accepted with status, or rejected with reason

        Raises:
            PersistenceError: the store failed; nothing is reported as recorded
        """
        try:
            record = self._validate_and_record(session_id, student_id, method, proof)
        except AttendanceError as e:
            self.logger.warning(f"Attendance rejected for student {student_id} in session "
                                f"{session_id} via {method}: {e.error_type} ({e.message})")
            return SubmissionResult.reject(e)

        self.logger.info(f"Attendance recorded: student {student_id}, session {session_id}, "
                         f"method {method}, status {record['status']}")
        return SubmissionResult.accept(record)

    def _validate_and_record(self, session_id, student_id, method, proof) -> Dict[str, Any]:
        session = self.sessions.get_session(session_id)
        now = self.clock()

        if not session.active:
            raise SessionClosed()

        if now >= session.expiry_time:
            raise SessionExpired()

        with self._locks.hold((str(session.id), str(student_id))):
            if self.db.find_attendance_record(session.id, student_id):
                raise DuplicateSubmission()

            verifier = self.verifiers.get(method) if isinstance(method, str) else None
            if verifier is None:
                raise InvalidInput(
                    f"Unsupported verification method: {method}. Use one of {', '.join(METHODS)}"
                )

            verification = verifier.verify(proof, VerificationContext(session, student_id, now))
            if not verification.accepted:
                raise ProofRejected(verification.reason)

            record = {
                'session_id': session.id,
                'student_id': student_id,
                'method': method,
                'status': self.classify(session, now),
                'data': verification.audit_data,
                'timestamp': now.isoformat()
            }
            record['id'] = self.db.insert_attendance_record(record)

        return record

    @staticmethod
    def classify(session, now: datetime) -> str:
        """Late when strictly more than the threshold has passed since creation."""
        elapsed = (now - session.created_at).total_seconds()
        return STATUS_LATE if elapsed > session.late_threshold_seconds else STATUS_PRESENT

    def get_course_attendance(self, course_id) -> List[Dict[str, Any]]:
        """
        Get every attendance record of a course joined with its session metadata.

        Args:
            course_id: Course ID

        Returns:
            List[Dict[str, Any]]: Records, newest session first
        """
        records = []
        for row in self.db.get_course_attendance(course_id):
            records.append(self._with_session(row))
        return records

    def get_student_attendance(self, student_id, course_id=None) -> List[Dict[str, Any]]:
        return [self._with_session(row) for row in self.db.get_student_attendance(student_id, course_id)]

    @staticmethod
    def _with_session(row: Dict[str, Any]) -> Dict[str, Any]:
        record = {
            'id': row['id'],
            'session_id': row['session_id'],
            'student_id': row['student_id'],
            'method': row['method'],
            'status': row['status'],
            'data': row['data'],
            'timestamp': row['timestamp'],
            'session': {
                'id': row['session_id'],
                'course_id': row['course_id'],
                'course_name': row['course_name'],
                'created_at': row['session_created_at'],
                'expiry_time': row['session_expiry_time']
            }
        }
        if 'display_name' in row:
            record['display_name'] = row['display_name']
            record['student_number'] = row['student_number']
        return record
