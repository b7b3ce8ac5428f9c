"""Tests for QRGenerator: credential issuance, rendering, validation and consumption."""

import base64
import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from conftest import MONDAY, at
from smartclass.modules.errors import IssuanceFailed
from smartclass.modules.qr_generator import QRGenerator


class FailingStore:
    def insert_credential(self, credential):
        raise sqlite3.OperationalError("database is locked")


@pytest.fixture
def generator(db):
    return QRGenerator(db)


def test_issue_credential_persists_with_one_hour_expiry(generator, db):
    now = at(MONDAY, '09:51')
    credential = generator.issue_credential('s1', now=now)

    assert credential.schedule_id == 's1'
    assert credential.created_at == now
    assert credential.expires_at == now + timedelta(hours=1)
    assert credential.used is False
    assert credential.payload.startswith('CLASS:s1:')

    stored = db.get_credential_by_payload(credential.payload)
    assert stored == credential


def test_issue_twice_gives_two_distinct_credentials(generator, db):
    now = at(MONDAY, '09:51')
    first = generator.issue_credential('s1', now=now)
    second = generator.issue_credential('s1', now=now)

    assert first.id != second.id
    assert first.payload != second.payload
    assert len(db.list_credentials('s1')) == 2


def test_validity_window_is_configurable(db):
    generator = QRGenerator(db, validity=timedelta(minutes=30))
    now = at(MONDAY, '09:51')
    assert generator.issue_credential('s1', now=now).expires_at == now + timedelta(minutes=30)


def test_offset_timestamp_is_stored_as_local_time(generator, db):
    issued_at = datetime(2025, 1, 6, 9, 51, tzinfo=timezone.utc)
    credential = generator.issue_credential('s1', now=issued_at)

    assert credential.created_at.tzinfo is None
    assert credential.created_at == issued_at.astimezone().replace(tzinfo=None)

    stored = db.list_credentials('s1')[0]
    assert stored.created_at.tzinfo is None
    assert stored.is_expired(datetime.now()) is True


def test_persistence_failure_raises_issuance_failed():
    generator = QRGenerator(FailingStore())
    with pytest.raises(IssuanceFailed):
        generator.issue_credential('s1')


def test_missing_schedule_id_raises_issuance_failed(generator, db):
    with pytest.raises(IssuanceFailed):
        generator.issue_credential('')
    assert db.count_rows('class_qr_codes') == 0


def test_render_qr_image_returns_png(generator):
    image = base64.b64decode(generator.render_qr_image('CLASS:s1:1700000000000:abcd1234'))
    assert image.startswith(b'\x89PNG')


def test_validate_unknown_and_malformed_payloads(generator):
    assert generator.validate_credential('not-a-class-code')['error_type'] == 'format_error'
    assert generator.validate_credential('CLASS:s1:0:0')['error_type'] == 'not_found'


def test_validate_active_credential(generator):
    now = at(MONDAY, '09:51')
    credential = generator.issue_credential('s1', now=now)

    result = generator.validate_credential(credential.payload, now=now + timedelta(minutes=59))
    assert result['valid'] is True
    assert result['schedule_id'] == 's1'


def test_validate_expired_credential(generator):
    now = at(MONDAY, '09:51')
    credential = generator.issue_credential('s1', now=now)

    result = generator.validate_credential(credential.payload, now=now + timedelta(hours=1))
    assert result['valid'] is False
    assert result['error_type'] == 'expired'


def test_consume_is_single_use(generator, db):
    now = at(MONDAY, '09:51')
    credential = generator.issue_credential('s1', now=now)

    assert generator.consume_credential(credential.payload, now=now)['valid'] is True
    second = generator.consume_credential(credential.payload, now=now)
    assert second['valid'] is False
    assert second['error_type'] == 'used'
    assert db.get_credential_by_payload(credential.payload).used is True
