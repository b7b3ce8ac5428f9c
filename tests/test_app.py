"""Tests for the Flask API wiring around the scheduler."""

import pytest

DELIVERY = {
    'schedule_id': 's1',
    'recipient_email': 'ada@school.edu',
    'recipient_name': 'Dr. Ada Lovelace',
    'subject': 'Algorithms',
    'classroom_name': 'Room 101',
    'start_time': '10:00',
    'end_time': '11:00',
    'day': 'Monday',
}


@pytest.fixture
def components(app):
    return app.extensions['smartclass']


@pytest.fixture
def seeded_app(components):
    manager = components['schedule_manager']
    manager.create_classroom({'id': 'c1', 'name': 'Room 101', 'capacity': 40})
    manager.create_professor({'id': 'p1', 'name': 'Dr. Ada Lovelace', 'email': 'ada@school.edu'})
    manager.create_schedule({'id': 's1', 'professor_id': 'p1', 'classroom_id': 'c1',
                             'subject': 'Algorithms', 'day': 'Monday',
                             'start_time': '10:00', 'end_time': '11:00'})
    manager.create_schedule({'id': 's2', 'professor_id': 'p-missing', 'classroom_id': 'c1',
                             'subject': 'Compilers', 'day': 'Monday',
                             'start_time': '10:01', 'end_time': '11:00'})
    return components


def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.get_json() == {'status': 'ok', 'scheduler': 'idle'}


def test_testing_app_does_not_start_scheduler(components):
    assert components['scheduler'].is_running is False
    assert components['notification_system'].suppress_send is True


def test_check_upcoming_classes_runs_one_tick(client, seeded_app):
    response = client.post('/api/check-upcoming-classes', json={'now': '2025-01-06T09:51:00'})

    assert response.status_code == 200
    body = response.get_json()
    assert body['message'] == 'Processed 2 upcoming classes'
    outcomes = {r['schedule_id']: r['outcome'] for r in body['report']['results']}
    assert outcomes == {'s1': 'sent', 's2': 'unresolved_reference'}
    assert len(seeded_app['notification_system'].get_outbox()) == 1


def test_check_upcoming_classes_rejects_bad_timestamp(client):
    response = client.post('/api/check-upcoming-classes', json={'now': 'monday morning'})
    assert response.status_code == 400


def test_scheduler_status_lists_recent_ticks(client, seeded_app):
    client.post('/api/check-upcoming-classes', json={'now': '2025-01-06T09:51:00'})
    client.post('/api/check-upcoming-classes', json={'now': '2025-01-06T09:52:00'})

    body = client.get('/api/scheduler/status').get_json()
    assert body['lookahead_minutes'] == 10
    assert body['tick_interval_seconds'] == 60
    assert body['suppress_duplicates'] is True
    assert body['wrap_midnight'] is False
    assert len(body['recent_ticks']) == 2
    assert body['recent_ticks'][1]['counts']['duplicate'] == 1


def test_send_class_qr_requires_all_fields(client):
    response = client.post('/api/send-class-qr', json={'schedule_id': 's1'})
    assert response.status_code == 400
    assert 'recipient_email' in response.get_json()['message']


def test_send_class_qr_issues_and_delivers(client, components):
    response = client.post('/api/send-class-qr', json=DELIVERY)

    assert response.status_code == 200
    body = response.get_json()
    assert body['success'] is True
    assert body['message'] == 'QR code generated and sent successfully'

    outbox = components['notification_system'].get_outbox()
    assert len(outbox) == 1
    assert outbox[0]['To'] == 'ada@school.edu'

    listed = client.get('/api/credentials?schedule_id=s1&status=active').get_json()['credentials']
    assert [c['credential_id'] for c in listed] == [body['qr_code_id']]
    assert client.get('/api/credentials?status=used').get_json()['credentials'] == []


def test_credential_listing_rejects_unknown_status(client):
    assert client.get('/api/credentials?status=stale').status_code == 400


def test_validate_and_consume_credential(client, components):
    credential = components['qr_generator'].issue_credential('s1')

    check = client.post('/api/credentials/validate', json={'payload': credential.payload})
    assert check.status_code == 200
    assert check.get_json()['credential']['used'] is False

    first = client.post('/api/credentials/validate', json={'payload': credential.payload, 'consume': True})
    assert first.status_code == 200

    second = client.post('/api/credentials/validate', json={'payload': credential.payload, 'consume': True})
    assert second.status_code == 409
    assert second.get_json()['error_type'] == 'used'


def test_validate_requires_payload(client):
    assert client.post('/api/credentials/validate', json={}).status_code == 400


def test_manual_tick_at_past_instant_emails_an_active_credential(client, seeded_app):
    client.post('/api/check-upcoming-classes', json={'now': '2025-01-06T09:51:00'})

    active = client.get('/api/credentials?status=active').get_json()['credentials']
    assert [c['schedule_id'] for c in active] == ['s1']
    assert client.get('/api/credentials?status=expired').get_json()['credentials'] == []


def test_manual_tick_accepts_utc_offset(client, seeded_app):
    response = client.post('/api/check-upcoming-classes', json={'now': '2025-01-06T09:51:00+00:00'})
    assert response.status_code == 200
    assert '+' not in response.get_json()['report']['started_at']

    client.post('/api/send-class-qr', json=DELIVERY)
    listing = client.get('/api/credentials')
    assert listing.status_code == 200
    assert listing.get_json()['credentials']


def test_credentials_include_schedule_professor_and_classroom(client, seeded_app):
    seeded_app['qr_generator'].issue_credential('s1')
    seeded_app['qr_generator'].issue_credential('deleted-schedule')

    entries = {c['schedule_id']: c for c in client.get('/api/credentials').get_json()['credentials']}

    known = entries['s1']
    assert known['schedule']['subject'] == 'Algorithms'
    assert known['professor']['name'] == 'Dr. Ada Lovelace'
    assert known['classroom']['name'] == 'Room 101'

    orphan = entries['deleted-schedule']
    assert (orphan['schedule'], orphan['professor'], orphan['classroom']) == (None, None, None)


def test_classroom_status_shows_class_in_progress(client, seeded_app):
    seeded_app['schedule_manager'].create_classroom({'id': 'c2', 'name': 'Lab 2', 'capacity': 20})

    body = client.get('/api/classrooms/status?now=2025-01-06T10:30:00').get_json()

    assert body['occupied'] == 1
    rooms = {room['classroom_id']: room for room in body['classrooms']}
    assert rooms['c1']['status'] == 'occupied'
    assert rooms['c1']['current_class']['schedule_id'] == 's1'
    assert rooms['c1']['current_class']['professor_name'] == 'Dr. Ada Lovelace'
    assert rooms['c2']['status'] == 'available'
    assert rooms['c2']['current_class'] is None


def test_classroom_is_free_at_class_end(client, seeded_app):
    body = client.get('/api/classrooms/status?now=2025-01-06T11:00:00').get_json()
    assert body['occupied'] == 0


def test_classroom_status_rejects_bad_timestamp(client):
    assert client.get('/api/classrooms/status?now=noon').status_code == 400
