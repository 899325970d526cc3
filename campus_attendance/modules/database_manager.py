"""
Database Manager Module - Campus Attendance System

This module handles all database operations for the attendance system.
It provides the persistence collaborator used by the session protocol:
connection management, schema creation, the session and attendance-record
operations, and the read projections used for reporting.

Features:
- SQLite database connection management (thread-local connections)
- Idempotent schema creation and demo seed data
- Attendance session and attendance record persistence
- Uniqueness of (session, student) enforced by the schema
- Transaction support
"""

import sqlite3
import logging
import json
import os
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from werkzeug.security import generate_password_hash

from campus_attendance.modules.errors import DuplicateSubmission, PersistenceError


class DatabaseManager:
    """
    Database management class for the campus attendance system.
    Wraps every sqlite3 failure in ``PersistenceError`` so callers can tell a
    broken store apart from a business outcome.
    """

    def __init__(self, db_path, timeout: float = 30.0, seed_demo_data: bool = True,
                 default_location: tuple = (5.6037, -0.1870)):
        """
        Initialize the database manager with the specified database path.

        Args:
            db_path (str): Path to the SQLite database file
            timeout (float): Seconds to wait on a locked database
            seed_demo_data (bool): Insert demo users and courses into an empty database
            default_location (tuple): (lat, lng) given to the seeded courses
        """
        self.db_path = str(db_path)
        self.timeout = timeout
        self.seed_demo_data = seed_demo_data
        self.default_location = default_location
        self.logger = logging.getLogger(__name__)
        self._local = threading.local()

        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        self.initialize_database()

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections.
        Provides thread-local connections for thread safety.

        Yields:
            sqlite3.Connection: Database connection object
        """
        if not hasattr(self._local, 'connection'):
            try:
                connection = sqlite3.connect(
                    self.db_path,
                    check_same_thread=False,
                    timeout=self.timeout
                )
                connection.row_factory = sqlite3.Row
                connection.execute("PRAGMA foreign_keys = ON")
                connection.execute("PRAGMA journal_mode = WAL")
            except sqlite3.Error as e:
                self.logger.error(f"Database connection failed: {str(e)}")
                raise PersistenceError(str(e)) from e
            self._local.connection = connection

        try:
            yield self._local.connection
        except sqlite3.Error as e:
            self._local.connection.rollback()
            self.logger.error(f"Database operation failed: {str(e)}")
            raise PersistenceError(str(e)) from e

    @contextmanager
    def transaction(self):
        """
        Context manager for database transactions with automatic rollback on error.

        Yields:
            sqlite3.Connection: Database connection within transaction
        """
        with self.get_connection() as conn:
            try:
                yield conn
                conn.commit()
            except Exception as e:
                conn.rollback()
                self.logger.error(f"Transaction rolled back: {str(e)}")
                raise

    def initialize_database(self):
        """
        Create all necessary tables and initial data.
        This method is idempotent and can be called multiple times safely.
        """
        with self.transaction() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email VARCHAR(100) UNIQUE NOT NULL,
                    password_hash VARCHAR(255) NOT NULL,
                    display_name VARCHAR(100) NOT NULL,
                    role VARCHAR(20) NOT NULL,
                    department VARCHAR(100),
                    student_number VARCHAR(50),
                    staff_number VARCHAR(50),
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS courses (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    code VARCHAR(20) NOT NULL,
                    name VARCHAR(100) NOT NULL,
                    instructor_id INTEGER NOT NULL,
                    department VARCHAR(100) NOT NULL,
                    location VARCHAR(100),
                    latitude REAL,
                    longitude REAL,
                    geofence_radius_meters REAL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (instructor_id) REFERENCES users(id)
                );

                CREATE TABLE IF NOT EXISTS enrollments (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    course_id INTEGER NOT NULL,
                    student_id INTEGER NOT NULL,
                    status VARCHAR(20) DEFAULT 'active',
                    enrolled_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (course_id) REFERENCES courses(id),
                    FOREIGN KEY (student_id) REFERENCES users(id),
                    UNIQUE(course_id, student_id)
                );

                CREATE TABLE IF NOT EXISTS attendance_sessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    course_id INTEGER NOT NULL,
                    course_name VARCHAR(100) NOT NULL,
                    created_at TEXT NOT NULL,
                    expiry_time TEXT NOT NULL,
                    duration INTEGER NOT NULL,
                    late_threshold_seconds INTEGER NOT NULL,
                    active BOOLEAN DEFAULT 1,
                    closed_at TEXT
                );

                CREATE TABLE IF NOT EXISTS attendance (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id INTEGER NOT NULL,
                    student_id INTEGER NOT NULL,
                    method VARCHAR(10) NOT NULL,
                    status VARCHAR(10) NOT NULL,
                    data TEXT,
                    timestamp TEXT NOT NULL,
                    FOREIGN KEY (session_id) REFERENCES attendance_sessions(id),
                    UNIQUE(session_id, student_id)
                );

                CREATE TABLE IF NOT EXISTS nfc_credentials (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    student_id INTEGER NOT NULL,
                    card_serial VARCHAR(100) UNIQUE NOT NULL,
                    is_active BOOLEAN DEFAULT 1,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS face_references (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    student_id INTEGER UNIQUE NOT NULL,
                    embedding TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );

                CREATE INDEX IF NOT EXISTS idx_sessions_course ON attendance_sessions(course_id);
                CREATE INDEX IF NOT EXISTS idx_attendance_session ON attendance(session_id);
                CREATE INDEX IF NOT EXISTS idx_attendance_student ON attendance(student_id);
                CREATE INDEX IF NOT EXISTS idx_nfc_student ON nfc_credentials(student_id);
            """)

            if self.seed_demo_data:
                self._insert_default_data(conn.cursor())

        self.logger.info("Database initialized successfully")

    def _insert_default_data(self, cursor):
        """
        Insert demo users, courses and an enrollment into an empty database.

        Args:
            cursor: Database cursor object
        """
        cursor.execute("SELECT COUNT(*) FROM users")
        if cursor.fetchone()[0] > 0:
            return

        password_hash = generate_password_hash('password')
        demo_users = [
            ('student@umat.edu.gh', password_hash, 'John Doe', 'student', 'Computer Science', 'UMT/CS/2023/001', None),
            ('lecturer@umat.edu.gh', password_hash, 'Dr. Jane Smith', 'lecturer', 'Computer Science', None, 'UMT/STAFF/2020/042'),
            ('admin@umat.edu.gh', password_hash, 'Admin User', 'admin', 'Administration', None, None)
        ]
        cursor.executemany("""
            INSERT INTO users (email, password_hash, display_name, role, department, student_number, staff_number)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, demo_users)

        cursor.execute("SELECT id FROM users WHERE email = ?", ('lecturer@umat.edu.gh',))
        lecturer_id = cursor.fetchone()[0]
        cursor.execute("SELECT id FROM users WHERE email = ?", ('student@umat.edu.gh',))
        student_id = cursor.fetchone()[0]

        lat, lng = self.default_location
        demo_courses = [
            ('CS101', 'Introduction to Computer Science', lecturer_id, 'Computer Science', 'Room 101', lat, lng, None),
            ('DB201', 'Database Systems', lecturer_id, 'Computer Science', 'Room 203', lat, lng, None)
        ]
        cursor.executemany("""
            INSERT INTO courses (code, name, instructor_id, department, location, latitude, longitude, geofence_radius_meters)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, demo_courses)

        cursor.execute("SELECT id FROM courses")
        cursor.executemany(
            "INSERT INTO enrollments (course_id, student_id) VALUES (?, ?)",
            [(row[0], student_id) for row in cursor.fetchall()]
        )

        self.logger.info("Default data inserted successfully")

    def execute_query(self, query, params=None, fetch_all=True):
        """
        Execute a SELECT query and return results.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters
            fetch_all (bool): Whether to fetch all results or just one

        Returns:
            list or dict: Query results
        """
        with self.get_connection() as conn:
            cursor = conn.execute(query, params or ())

            if fetch_all:
                return [dict(row) for row in cursor.fetchall()]

            result = cursor.fetchone()
            return dict(result) if result else None

    def execute_update(self, query, params=None):
        """
        Execute an INSERT, UPDATE, or DELETE query.

        Returns:
            int: Last inserted row ID for INSERT statements, affected rows otherwise
        """
        with self.transaction() as conn:
            cursor = conn.execute(query, params or ())

            if query.strip().upper().startswith('INSERT'):
                return cursor.lastrowid
            return cursor.rowcount

    # Attendance sessions

    def get_session(self, session_id) -> Optional[Dict[str, Any]]:
        return self.execute_query(
            "SELECT * FROM attendance_sessions WHERE id = ?",
            (session_id,),
            fetch_all=False
        )

    def insert_session(self, session: Dict[str, Any]) -> int:
        return self.execute_update(
            """INSERT INTO attendance_sessions
               (course_id, course_name, created_at, expiry_time, duration, late_threshold_seconds, active)
               VALUES (?, ?, ?, ?, ?, ?, 1)""",
            (session['course_id'], session['course_name'], session['created_at'],
             session['expiry_time'], session['duration'], session['late_threshold_seconds'])
        )

    def update_session_closed(self, session_id, closed_at: str) -> bool:
        """
        Mark a session closed.

        Returns:
            bool: True if this call closed the session, False if it was already closed
        """
        affected_rows = self.execute_update(
            "UPDATE attendance_sessions SET active = 0, closed_at = ? WHERE id = ? AND active = 1",
            (closed_at, session_id)
        )
        return affected_rows > 0

    # Attendance records

    def find_attendance_record(self, session_id, student_id) -> Optional[Dict[str, Any]]:
        return self.execute_query(
            "SELECT * FROM attendance WHERE session_id = ? AND student_id = ?",
            (session_id, student_id),
            fetch_all=False
        )

    def insert_attendance_record(self, record: Dict[str, Any]) -> int:
        """
        Insert an attendance record.

        Raises:
            DuplicateSubmission: a record for (session_id, student_id) already exists
            PersistenceError: the store failed
        """
        try:
            with self.transaction() as conn:
                cursor = conn.execute(
                    """INSERT INTO attendance (session_id, student_id, method, status, data, timestamp)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (record['session_id'], record['student_id'], record['method'],
                     record['status'], json.dumps(record.get('data') or {}), record['timestamp'])
                )
                return cursor.lastrowid
        except PersistenceError as e:
            if isinstance(e.__cause__, sqlite3.IntegrityError):
                raise DuplicateSubmission() from e
            raise

    def get_course_attendance(self, course_id) -> List[Dict[str, Any]]:
        rows = self.execute_query(
            """SELECT a.*, u.display_name, u.student_number,
                      s.course_id, s.course_name, s.created_at AS session_created_at,
                      s.expiry_time AS session_expiry_time
               FROM attendance a
               JOIN attendance_sessions s ON a.session_id = s.id
               LEFT JOIN users u ON a.student_id = u.id
               WHERE s.course_id = ?
               ORDER BY s.created_at DESC, a.timestamp""",
            (course_id,)
        )
        return [self._decode_record(row) for row in rows]

    def get_student_attendance(self, student_id, course_id=None) -> List[Dict[str, Any]]:
        query = """SELECT a.*, s.course_id, s.course_name, s.created_at AS session_created_at,
                          s.expiry_time AS session_expiry_time
                   FROM attendance a
                   JOIN attendance_sessions s ON a.session_id = s.id
                   WHERE a.student_id = ?"""
        params = [student_id]

        if course_id is not None:
            query += " AND s.course_id = ?"
            params.append(course_id)

        query += " ORDER BY s.created_at DESC"
        return [self._decode_record(row) for row in self.execute_query(query, tuple(params))]

    @staticmethod
    def _decode_record(row: Dict[str, Any]) -> Dict[str, Any]:
        row['data'] = json.loads(row['data']) if row.get('data') else {}
        return row

    def close_all_connections(self):
        """Close the current thread's database connection."""
        if hasattr(self._local, 'connection'):
            self._local.connection.close()
            del self._local.connection
