"""Shared fixtures: temporary database, seeded records, fake issuer and notifier."""

import threading
from datetime import datetime, timedelta

import pytest

from app import create_app
from smartclass.modules.database_manager import DatabaseManager
from smartclass.modules.errors import DeliveryFailed, IssuanceFailed
from smartclass.modules.models import ClassSchedule, Classroom, Credential, Professor, ScheduleSnapshot
from smartclass.modules.schedule_manager import ScheduleManager

# 2025-01-06 is a Monday
MONDAY = datetime(2025, 1, 6)
SATURDAY = datetime(2025, 1, 11)
SUNDAY = datetime(2025, 1, 12)


def at(day, hhmm, second=0):
    hours, minutes = (int(part) for part in hhmm.split(':'))
    return day.replace(hour=hours, minute=minutes, second=second)


def make_schedule(schedule_id='s1', day='Monday', start='10:00', end='11:00',
                  classroom_id='c1', professor_id='p1', subject='Algorithms'):
    return ClassSchedule(id=schedule_id, day=day, start_time=start, end_time=end,
                         classroom_id=classroom_id, professor_id=professor_id, subject=subject)


def make_snapshot(schedules, professors=None, classrooms=None):
    if professors is None:
        professors = [Professor(id='p1', name='Dr. Ada Lovelace', email='ada@school.edu',
                                department='Computer Science')]
    if classrooms is None:
        classrooms = [Classroom(id='c1', name='Room 101', capacity=40)]
    return ScheduleSnapshot.build(schedules, professors, classrooms)


class FakeIssuer:
    """Records issuance calls; fails for the schedule ids in fail_for."""

    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.issued = []
        self.attempts = []
        self.states_seen = []
        self.scheduler = None
        self._lock = threading.Lock()

    def issue_credential(self, schedule_id, now=None):
        now = now or datetime.now()
        with self._lock:
            self.attempts.append(schedule_id)
            if self.scheduler is not None:
                self.states_seen.append(self.scheduler.state)
            if schedule_id in self.fail_for:
                raise IssuanceFailed(f"store rejected credential for {schedule_id}")
            credential = Credential(
                id=f"cred-{len(self.issued) + 1}",
                schedule_id=schedule_id,
                payload=f"CLASS:{schedule_id}:{len(self.issued) + 1}",
                created_at=now,
                expires_at=now + timedelta(hours=1),
            )
            self.issued.append(credential)
            return credential


class FakeNotifier:
    """Records deliveries; fails for the schedule ids in fail_for."""

    def __init__(self, fail_for=(), error=None):
        self.fail_for = set(fail_for)
        self.error = error
        self.sent = []
        self._lock = threading.Lock()

    def send_class_qr(self, credential, request):
        if request.schedule_id in self.fail_for:
            raise self.error or DeliveryFailed(f"provider rejected message for {request.schedule_id}")
        with self._lock:
            self.sent.append((credential, request))


@pytest.fixture
def db(tmp_path):
    manager = DatabaseManager(tmp_path / 'smartclass_test.db')
    yield manager
    manager.close_all_connections()


@pytest.fixture
def schedule_manager(db):
    return ScheduleManager(db)


@pytest.fixture
def seeded(schedule_manager):
    schedule_manager.create_classroom({'id': 'c1', 'name': 'Room 101', 'capacity': 40})
    schedule_manager.create_professor({'id': 'p1', 'name': 'Dr. Ada Lovelace',
                                       'email': 'ada@school.edu', 'department': 'Computer Science'})
    schedule_manager.create_schedule({'id': 's1', 'professor_id': 'p1', 'classroom_id': 'c1',
                                      'subject': 'Algorithms', 'day': 'Monday',
                                      'start_time': '10:00', 'end_time': '11:00'})
    return schedule_manager


@pytest.fixture
def app(tmp_path):
    application = create_app(
        'testing',
        overrides={'DATABASE_PATH': tmp_path / 'smartclass_app.db'},
        start_scheduler=False
    )
    yield application
    application.extensions['smartclass']['db_manager'].close_all_connections()


@pytest.fixture
def client(app):
    return app.test_client()
