"""Tests for NotificationSystem: QR email rendering and SMTP delivery."""

import smtplib
from datetime import timedelta

import pytest

from conftest import MONDAY, at
from smartclass.modules.errors import DeliveryFailed
from smartclass.modules.models import Credential, DeliveryRequest
from smartclass.modules.notification_system import NotificationSystem


class StubRenderer:
    # 1x1 transparent PNG
    PNG = ('iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII=')

    def render_qr_image(self, payload):
        return self.PNG


class RecordingSMTP:
    instances = []
    fail_with = None

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.started_tls = False
        self.logged_in = None
        self.messages = []
        RecordingSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def starttls(self, context=None):
        self.started_tls = True

    def login(self, username, password):
        self.logged_in = (username, password)

    def send_message(self, msg):
        if RecordingSMTP.fail_with is not None:
            raise RecordingSMTP.fail_with
        self.messages.append(msg)


@pytest.fixture
def recording_smtp(monkeypatch):
    RecordingSMTP.instances = []
    RecordingSMTP.fail_with = None
    monkeypatch.setattr(smtplib, 'SMTP', RecordingSMTP)
    return RecordingSMTP


def make_credential():
    now = at(MONDAY, '09:51')
    return Credential(id='cred-1', schedule_id='s1', payload='CLASS:s1:1:ab',
                      created_at=now, expires_at=now + timedelta(hours=1))


def make_request(**overrides):
    fields = dict(schedule_id='s1', recipient_email='ada@school.edu',
                  recipient_name='Dr. Ada Lovelace', subject='Algorithms',
                  classroom_name='Room 101', start_time='10:00', end_time='11:00', day='Monday')
    fields.update(overrides)
    return DeliveryRequest(**fields)


def html_body(msg):
    return msg.get_payload()[0].get_payload(decode=True).decode()


def test_suppressed_send_keeps_rendered_message_in_outbox():
    notifier = NotificationSystem(StubRenderer(), suppress_send=True)
    notifier.send_class_qr(make_credential(), make_request())

    outbox = notifier.get_outbox()
    assert len(outbox) == 1
    msg = outbox[0]
    assert msg['To'] == 'ada@school.edu'
    assert msg['Subject'] == 'Class Access QR Code - Algorithms'

    body = html_body(msg)
    for text in ('Dr. Ada Lovelace', 'Algorithms', 'Room 101', 'Monday', '10:00 - 11:00',
                 'valid for 1 hour and is for single use only', 'cid:class-qr-code'):
        assert text in body

    image = msg.get_payload()[1]
    assert image.get_content_type() == 'image/png'
    assert image['Content-ID'] == '<class-qr-code>'


def test_message_fields_are_html_escaped():
    notifier = NotificationSystem(StubRenderer(), suppress_send=True)
    notifier.send_class_qr(make_credential(), make_request(subject='<script>x</script>'))
    body = html_body(notifier.get_outbox()[0])
    assert '<script>' not in body
    assert '&lt;script&gt;' in body


def test_validity_window_is_quoted_in_message():
    notifier = NotificationSystem(StubRenderer(), suppress_send=True, validity_hours=2)
    notifier.send_class_qr(make_credential(), make_request())
    assert 'valid for 2 hours' in html_body(notifier.get_outbox()[0])


def test_send_uses_smtp_with_tls_and_login(recording_smtp):
    notifier = NotificationSystem(StubRenderer(), email_config={
        'smtp_server': 'smtp.school.edu', 'smtp_port': 2525,
        'username': 'mailer', 'password': 'secret', 'use_tls': True,
        'sender': 'qr@school.edu'
    })
    notifier.send_class_qr(make_credential(), make_request())

    server = recording_smtp.instances[0]
    assert (server.host, server.port) == ('smtp.school.edu', 2525)
    assert server.started_tls is True
    assert server.logged_in == ('mailer', 'secret')
    assert server.messages[0]['From'] == 'qr@school.edu'
    assert notifier.get_outbox() == []


def test_send_without_username_skips_login(recording_smtp):
    notifier = NotificationSystem(StubRenderer(), email_config={'use_tls': False})
    notifier.send_class_qr(make_credential(), make_request())

    server = recording_smtp.instances[0]
    assert server.started_tls is False
    assert server.logged_in is None
    assert len(server.messages) == 1


def test_transport_failure_raises_delivery_failed(recording_smtp):
    recording_smtp.fail_with = smtplib.SMTPRecipientsRefused({'ada@school.edu': (550, b'no')})
    notifier = NotificationSystem(StubRenderer())
    with pytest.raises(DeliveryFailed):
        notifier.send_class_qr(make_credential(), make_request())


def test_connection_failure_raises_delivery_failed(recording_smtp):
    recording_smtp.fail_with = ConnectionRefusedError('connection refused')
    notifier = NotificationSystem(StubRenderer())
    with pytest.raises(DeliveryFailed):
        notifier.send_class_qr(make_credential(), make_request())


def test_missing_recipient_raises_delivery_failed():
    notifier = NotificationSystem(StubRenderer(), suppress_send=True)
    with pytest.raises(DeliveryFailed):
        notifier.send_class_qr(make_credential(), make_request(recipient_email=''))
    assert notifier.get_outbox() == []
