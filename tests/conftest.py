from datetime import datetime, timedelta, timezone

import pytest
from werkzeug.security import generate_password_hash

from campus_attendance import build_services, create_app
from campus_attendance.config import TestingConfig

CLASS_LOCATION = {'lat': 5.6037, 'lng': -0.1870}


class FakeClock:
    """Controllable replacement for the wall clock."""

    def __init__(self, start=None):
        self.now = start or datetime(2025, 9, 1, 8, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    settings = {key: getattr(TestingConfig, key) for key in dir(TestingConfig) if key.isupper()}
    settings['DATABASE_PATH'] = tmp_path / 'attendance.db'
    return settings


@pytest.fixture
def services(settings, clock):
    services = build_services(settings, clock=clock)
    yield services
    services.db.close_all_connections()


def user_id(services, email):
    return services.db.execute_query(
        "SELECT id FROM users WHERE email = ?", (email,), fetch_all=False
    )['id']


def add_student(services, email):
    return services.db.execute_update(
        """INSERT INTO users (email, password_hash, display_name, role, department)
           VALUES (?, ?, ?, 'student', 'Computer Science')""",
        (email, generate_password_hash('password'), email.split('@')[0])
    )


@pytest.fixture
def demo(services):
    course = services.db.execute_query(
        "SELECT * FROM courses WHERE code = 'CS101'", fetch_all=False
    )
    return {
        'student_id': user_id(services, 'student@umat.edu.gh'),
        'lecturer_id': user_id(services, 'lecturer@umat.edu.gh'),
        'admin_id': user_id(services, 'admin@umat.edu.gh'),
        'course': course
    }


@pytest.fixture
def open_session(services, demo):
    return services.sessions.create_session(demo['course']['id'], demo['course']['name'], 3600)


@pytest.fixture
def app(tmp_path, clock):
    app = create_app('testing', overrides={'DATABASE_PATH': tmp_path / 'app.db'}, clock=clock)
    yield app
    app.extensions['campus_attendance'].db.close_all_connections()


@pytest.fixture
def client(app):
    return app.test_client()


def login(client, email, password='password'):
    response = client.post('/api/auth/login', json={'email': email, 'password': password})
    assert response.status_code == 200
    return response.get_json()['user']
