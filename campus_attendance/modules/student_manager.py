"""
Student Manager Module - Campus Attendance System

Credential registry for students: the NFC cards and reference face
embeddings the verification methods check evidence against.

Features:
- NFC card enrollment and lookup
- Reference face embedding enrollment and lookup
"""

from typing import Any, Dict, List, Optional, Sequence
import json
import logging

from campus_attendance.modules.errors import InvalidInput, NotFound
from campus_attendance.modules.session_manager import parse_id
from campus_attendance.modules.verification import is_embedding


class StudentManager:
    """
    Student credential management for the attendance system.
    """

    def __init__(self, database_manager):
        """
        Initialize the student manager with database connection.

        Args:
            database_manager: Database manager instance
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)

    def get_student(self, student_id) -> Optional[Dict[str, Any]]:
        return self.db.execute_query(
            """SELECT id, email, display_name, department, student_number
               FROM users WHERE id = ? AND role = 'student'""",
            (student_id,),
            fetch_all=False
        )

    def _require_student(self, student_id) -> Dict[str, Any]:
        student_id = parse_id(student_id, 'studentId')
        student = self.get_student(student_id)
        if not student:
            raise NotFound(f"Student {student_id} not found")
        return student

    def register_nfc_card(self, student_id, card_serial: str) -> Dict[str, Any]:
        """
        Enroll an NFC card for a student. Re-registering the same card for the
        same student reactivates it.

        Args:
            student_id: Student user ID
            card_serial (str): Card/tag serial number

        Returns:
            Dict[str, Any]: The credential row
        """
        if not isinstance(card_serial, str) or not card_serial.strip():
            raise InvalidInput('cardId is required')
        card_serial = card_serial.strip()
        student_id = self._require_student(student_id)['id']

        existing = self.db.execute_query(
            "SELECT * FROM nfc_credentials WHERE card_serial = ?",
            (card_serial,),
            fetch_all=False
        )
        if existing and existing['student_id'] != student_id:
            raise InvalidInput(f'Card {card_serial} is already enrolled for another student')

        if existing:
            self.db.execute_update(
                "UPDATE nfc_credentials SET is_active = 1 WHERE id = ?",
                (existing['id'],)
            )
        else:
            self.db.execute_update(
                "INSERT INTO nfc_credentials (student_id, card_serial) VALUES (?, ?)",
                (student_id, card_serial)
            )

        self.logger.info(f"NFC card {card_serial} enrolled for student {student_id}")
        return self.db.execute_query(
            "SELECT * FROM nfc_credentials WHERE card_serial = ?",
            (card_serial,),
            fetch_all=False
        )

    def revoke_nfc_card(self, card_serial: str) -> bool:
        affected_rows = self.db.execute_update(
            "UPDATE nfc_credentials SET is_active = 0 WHERE card_serial = ?",
            (card_serial,)
        )
        if affected_rows:
            self.logger.info(f"NFC card {card_serial} revoked")
        return affected_rows > 0

    def has_nfc_credential(self, student_id, card_serial: str) -> bool:
        credential = self.db.execute_query(
            """SELECT id FROM nfc_credentials
               WHERE student_id = ? AND card_serial = ? AND is_active = 1""",
            (student_id, card_serial),
            fetch_all=False
        )
        return credential is not None

    def register_face_reference(self, student_id, embedding: Sequence[float]) -> None:
        """
        Store (or replace) the reference face embedding of a student.

        Args:
            student_id: Student user ID
            embedding: Numeric face embedding produced by the capture client
        """
        if not is_embedding(embedding):
            raise InvalidInput('embedding must be a non-empty list of finite numbers')
        student_id = self._require_student(student_id)['id']

        self.db.execute_update(
            """INSERT INTO face_references (student_id, embedding) VALUES (?, ?)
               ON CONFLICT(student_id) DO UPDATE SET
                   embedding = excluded.embedding, updated_at = CURRENT_TIMESTAMP""",
            (student_id, json.dumps([float(v) for v in embedding]))
        )
        self.logger.info(f"Reference face enrolled for student {student_id}")

    def get_face_reference(self, student_id) -> Optional[List[float]]:
        row = self.db.execute_query(
            "SELECT embedding FROM face_references WHERE student_id = ?",
            (student_id,),
            fetch_all=False
        )
        return json.loads(row['embedding']) if row else None
