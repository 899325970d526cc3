import json

import pytest

from campus_attendance.modules.errors import PersistenceError

from conftest import CLASS_LOCATION, login


def services_of(app):
    return app.extensions['campus_attendance']


def course_id(app, code='CS101'):
    return services_of(app).db.execute_query(
        "SELECT id FROM courses WHERE code = ?", (code,), fetch_all=False
    )['id']


@pytest.fixture
def lecturer_session(app, client):
    login(client, 'lecturer@umat.edu.gh')
    response = client.post('/api/attendance/sessions', json={
        'courseId': course_id(app), 'durationSeconds': 1800
    })
    assert response.status_code == 201
    client.post('/api/auth/logout')
    return response.get_json()


def test_login_rejects_bad_password(client):
    response = client.post('/api/auth/login', json={
        'email': 'student@umat.edu.gh', 'password': 'wrong'
    })
    assert response.status_code == 401
    assert response.get_json()['success'] is False


def test_login_returns_user_without_password(client):
    user = login(client, 'lecturer@umat.edu.gh')
    assert user['role'] == 'lecturer'
    assert 'password_hash' not in user


def test_routes_require_login(client):
    response = client.post('/api/attendance/mark', json={'sessionId': 1, 'method': 'geo'})
    assert response.status_code == 401
    assert response.get_json()['error_type'] == 'unauthenticated'


def test_lecturer_creates_session(app, client, clock):
    login(client, 'lecturer@umat.edu.gh')
    response = client.post('/api/attendance/sessions', json={
        'courseId': course_id(app), 'duration': 900
    })

    body = response.get_json()
    assert response.status_code == 201
    assert body['course_name'] == 'Introduction to Computer Science'
    assert body['duration'] == 900
    assert body['active'] is True
    assert body['created_at'] == clock.now.isoformat()


@pytest.mark.parametrize('payload, status', [
    ({'durationSeconds': 0}, 400),
    ({'durationSeconds': -60}, 400),
    ({}, 400),
])
def test_create_session_validation(app, client, payload, status):
    login(client, 'lecturer@umat.edu.gh')
    payload['courseId'] = course_id(app)

    response = client.post('/api/attendance/sessions', json=payload)
    assert response.status_code == status
    assert response.get_json()['error_type'] == 'invalid_input'


def test_create_session_unknown_course(client):
    login(client, 'admin@umat.edu.gh')
    response = client.post('/api/attendance/sessions', json={'courseId': 999, 'durationSeconds': 60})
    assert response.status_code == 404


def test_student_cannot_create_session(app, client):
    login(client, 'student@umat.edu.gh')
    response = client.post('/api/attendance/sessions', json={
        'courseId': course_id(app), 'durationSeconds': 60
    })
    assert response.status_code == 403


def test_other_lecturer_cannot_create_session(app, client):
    db = services_of(app).db
    db.execute_update(
        """INSERT INTO users (email, password_hash, display_name, role, department)
           SELECT 'other@umat.edu.gh', password_hash, 'Dr. Other', 'lecturer', 'Mining'
           FROM users WHERE email = 'lecturer@umat.edu.gh'"""
    )
    login(client, 'other@umat.edu.gh')

    response = client.post('/api/attendance/sessions', json={
        'courseId': course_id(app), 'durationSeconds': 60
    })
    assert response.status_code == 403
    assert db.execute_query("SELECT COUNT(*) AS n FROM attendance_sessions", fetch_all=False)['n'] == 0


def test_student_marks_attendance_once(client, lecturer_session):
    login(client, 'student@umat.edu.gh')
    payload = {'sessionId': lecturer_session['id'], 'method': 'geo', 'data': CLASS_LOCATION}

    first = client.post('/api/attendance/mark', json=payload)
    second = client.post('/api/attendance/mark', json=payload)

    assert first.status_code == 200
    assert first.get_json()['status'] == 'present'
    assert second.status_code == 409
    assert second.get_json()['error_type'] == 'duplicate_submission'


def test_mark_reports_provider_reason(client, lecturer_session):
    login(client, 'student@umat.edu.gh')
    response = client.post('/api/attendance/mark', json={
        'sessionId': lecturer_session['id'], 'method': 'geo', 'data': {'lat': 5.6037, 'lng': -0.1880}
    })

    assert response.status_code == 422
    assert response.get_json()['message'] == 'too far from class location: 111m > 100m'


def test_mark_after_expiry(client, lecturer_session, clock):
    clock.advance(1800)
    login(client, 'student@umat.edu.gh')

    response = client.post('/api/attendance/mark', json={
        'sessionId': lecturer_session['id'], 'method': 'geo', 'data': CLASS_LOCATION
    })
    assert response.status_code == 410
    assert response.get_json()['error_type'] == 'session_expired'


def test_close_is_idempotent_and_blocks_marking(client, lecturer_session):
    login(client, 'lecturer@umat.edu.gh')
    url = f"/api/attendance/sessions/{lecturer_session['id']}/close"

    first = client.put(url)
    second = client.post(url)

    assert first.status_code == 200
    assert first.get_json()['alreadyClosed'] is False
    assert second.status_code == 200
    assert second.get_json() == {
        'ok': True, 'alreadyClosed': True, 'message': 'Attendance session was already closed'
    }

    client.post('/api/auth/logout')
    login(client, 'student@umat.edu.gh')
    response = client.post('/api/attendance/mark', json={
        'sessionId': lecturer_session['id'], 'method': 'geo', 'data': CLASS_LOCATION
    })
    assert response.status_code == 409
    assert response.get_json()['error_type'] == 'session_closed'


def test_close_unknown_session(client):
    login(client, 'admin@umat.edu.gh')
    assert client.put('/api/attendance/sessions/4242/close').status_code == 404


def test_session_state_endpoint(client, lecturer_session, clock):
    login(client, 'student@umat.edu.gh')
    clock.advance(2000)

    body = client.get(f"/api/attendance/sessions/{lecturer_session['id']}").get_json()
    assert body['state'] == 'expired'
    assert body['active'] is True
    assert body['seconds_remaining'] == 0


def test_qr_scan_flow(client, lecturer_session, clock):
    login(client, 'lecturer@umat.edu.gh')
    qr = client.get(f"/api/attendance/sessions/{lecturer_session['id']}/qr").get_json()
    assert json.loads(qr['qr_data'])['sessionId'] == lecturer_session['id']
    client.post('/api/auth/logout')

    login(client, 'student@umat.edu.gh')
    clock.advance(700)
    response = client.post('/api/attendance/scan', json={'qr_data': qr['qr_data']})

    assert response.status_code == 200
    assert response.get_json()['status'] == 'late'


def test_qr_scan_fast_fails_on_expired_code(client, lecturer_session, clock):
    login(client, 'lecturer@umat.edu.gh')
    qr_data = client.get(f"/api/attendance/sessions/{lecturer_session['id']}/qr").get_json()['qr_data']
    client.post('/api/auth/logout')

    clock.advance(1800)
    login(client, 'student@umat.edu.gh')
    response = client.post('/api/attendance/scan', json={'qr_data': qr_data})

    assert response.status_code == 410
    assert response.get_json()['message'] == 'QR code has expired'


def test_qr_scan_rejects_malformed_code(client, lecturer_session):
    login(client, 'student@umat.edu.gh')
    response = client.post('/api/attendance/scan', json={'qr_data': 'hello'})
    assert response.status_code == 400
    assert response.get_json()['error_type'] == 'invalid_input'


def test_nfc_enrollment_and_marking(app, client, lecturer_session):
    student = services_of(app).students
    login(client, 'admin@umat.edu.gh')
    student_id = services_of(app).db.execute_query(
        "SELECT id FROM users WHERE role = 'student'", fetch_all=False
    )['id']

    response = client.post('/api/credentials/nfc', json={'studentId': student_id, 'cardId': 'UMAT-004211'})
    assert response.status_code == 201
    assert student.has_nfc_credential(student_id, 'UMAT-004211')
    client.post('/api/auth/logout')

    login(client, 'student@umat.edu.gh')
    response = client.post('/api/attendance/mark', json={
        'sessionId': lecturer_session['id'], 'method': 'nfc', 'data': {'cardId': 'UMAT-004211'}
    })
    assert response.status_code == 200


def test_face_enrollment_and_marking(app, client, lecturer_session):
    login(client, 'admin@umat.edu.gh')
    student_id = services_of(app).db.execute_query(
        "SELECT id FROM users WHERE role = 'student'", fetch_all=False
    )['id']
    response = client.post('/api/credentials/face', json={'studentId': student_id, 'embedding': [0.2, 0.5, 0.8]})
    assert response.status_code == 201
    client.post('/api/auth/logout')

    login(client, 'student@umat.edu.gh')
    response = client.post('/api/attendance/mark', json={
        'sessionId': lecturer_session['id'], 'method': 'face', 'data': {'embedding': [0.21, 0.5, 0.79]}
    })
    assert response.status_code == 200
    assert response.get_json()['success'] is True


def test_student_cannot_register_credentials(client):
    login(client, 'student@umat.edu.gh')
    response = client.post('/api/credentials/nfc', json={'studentId': 1, 'cardId': 'X'})
    assert response.status_code == 403


def test_course_and_student_reports(app, client, lecturer_session):
    login(client, 'student@umat.edu.gh')
    client.post('/api/attendance/mark', json={
        'sessionId': lecturer_session['id'], 'method': 'geo', 'data': CLASS_LOCATION
    })

    mine = client.get(f'/api/attendance/student?courseId={course_id(app)}').get_json()
    assert len(mine) == 1
    assert mine[0]['session']['id'] == lecturer_session['id']

    assert client.get(f'/api/attendance/course/{course_id(app)}').status_code == 403
    client.post('/api/auth/logout')

    login(client, 'lecturer@umat.edu.gh')
    records = client.get(f'/api/attendance/course/{course_id(app)}').get_json()
    assert [r['method'] for r in records] == ['geo']
    assert records[0]['session']['course_name'] == 'Introduction to Computer Science'
    assert records[0]['data']['radius'] == 100.0


def test_persistence_failure_is_server_error(app, client, lecturer_session, monkeypatch):
    def broken(*args, **kwargs):
        raise PersistenceError('database is locked')

    monkeypatch.setattr(services_of(app).db, 'find_attendance_record', broken)
    login(client, 'student@umat.edu.gh')

    response = client.post('/api/attendance/mark', json={
        'sessionId': lecturer_session['id'], 'method': 'geo', 'data': CLASS_LOCATION
    })
    assert response.status_code == 500
    assert response.get_json() == {'success': False, 'error_type': 'server_error', 'message': 'Server error'}


def test_login_rejects_non_string_credentials(client):
    response = client.post('/api/auth/login', json={'email': ['student@umat.edu.gh'], 'password': 'password'})
    assert response.status_code == 400
    assert response.get_json()['error_type'] == 'invalid_input'

    response = client.post('/api/auth/login', json={'email': 'student@umat.edu.gh', 'password': 42})
    assert response.status_code == 400


def test_face_marking_rejects_nan_embedding(app, client, lecturer_session):
    services = services_of(app)
    student_id = services.db.execute_query(
        "SELECT id FROM users WHERE role = 'student'", fetch_all=False
    )['id']
    services.students.register_face_reference(student_id, [1, 0, 0])
    login(client, 'student@umat.edu.gh')

    body = '{"sessionId": %d, "method": "face", "data": {"embedding": [NaN, NaN, NaN]}}' % lecturer_session['id']
    response = client.post('/api/attendance/mark', data=body, content_type='application/json')

    assert response.status_code == 400
    assert response.get_json()['error_type'] == 'invalid_input'
    assert services.db.find_attendance_record(lecturer_session['id'], student_id) is None


def test_face_enrollment_rejects_infinite_values(app, client):
    login(client, 'admin@umat.edu.gh')
    student_id = services_of(app).db.execute_query(
        "SELECT id FROM users WHERE role = 'student'", fetch_all=False
    )['id']

    body = '{"studentId": %d, "embedding": [Infinity, 0.5]}' % student_id
    response = client.post('/api/credentials/face', data=body, content_type='application/json')

    assert response.status_code == 400
    assert services_of(app).students.get_face_reference(student_id) is None


@pytest.mark.parametrize('payload', [
    {'method': ['geo'], 'data': CLASS_LOCATION},
    {'method': {'geo': True}, 'data': CLASS_LOCATION},
])
def test_mark_rejects_malformed_method(client, lecturer_session, payload):
    login(client, 'student@umat.edu.gh')
    payload['sessionId'] = lecturer_session['id']

    response = client.post('/api/attendance/mark', json=payload)
    assert response.status_code == 400
    assert response.get_json()['error_type'] == 'invalid_input'


@pytest.mark.parametrize('session_id', [[1], {'id': 1}, 'first', 2 ** 70])
def test_mark_rejects_malformed_session_id(client, session_id):
    login(client, 'student@umat.edu.gh')

    response = client.post('/api/attendance/mark', json={
        'sessionId': session_id, 'method': 'geo', 'data': CLASS_LOCATION
    })
    assert response.status_code == 400
    assert response.get_json()['error_type'] == 'invalid_input'


@pytest.mark.parametrize('course', [[1], {'id': 1}, 'CS101', True])
def test_create_session_rejects_malformed_course_id(client, course):
    login(client, 'admin@umat.edu.gh')

    response = client.post('/api/attendance/sessions', json={'courseId': course, 'durationSeconds': 60})
    assert response.status_code == 400
    assert response.get_json()['error_type'] == 'invalid_input'


def test_create_session_rejects_non_string_course_name(app, client):
    login(client, 'admin@umat.edu.gh')

    response = client.post('/api/attendance/sessions', json={
        'courseId': course_id(app), 'durationSeconds': 60, 'courseName': ['CS101']
    })
    assert response.status_code == 400


def test_credentials_reject_malformed_student_id(client):
    login(client, 'admin@umat.edu.gh')

    response = client.post('/api/credentials/nfc', json={'studentId': [1], 'cardId': 'UMAT-9'})
    assert response.status_code == 400
    assert response.get_json()['error_type'] == 'invalid_input'
