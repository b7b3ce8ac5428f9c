"""
Record types shared by the scheduler modules.

Schedules, professors and classrooms are owned by the CRUD surface and are
read-only here. Credentials are created by the QR generator and never
mutated by the scheduler afterwards.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

# Index matches datetime.weekday() (0 = Monday)
DAYS_OF_WEEK = ('Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday')


@dataclass(frozen=True)
class Classroom:
    """A room classes are held in."""
    id: str
    name: str
    capacity: int = 0

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Classroom':
        return cls(id=row['id'], name=row['name'], capacity=row.get('capacity') or 0)


@dataclass(frozen=True)
class Professor:
    """A professor and the address their QR codes are mailed to."""
    id: str
    name: str
    email: str
    department: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Professor':
        return cls(
            id=row['id'],
            name=row['name'],
            email=row['email'],
            department=row.get('department'),
        )


@dataclass(frozen=True)
class ClassSchedule:
    """
    A weekly recurring class.

    start_time and end_time are zero-padded "HH:MM" wall-clock strings with no
    timezone. start_time < end_time is expected but not enforced.
    """
    id: str
    day: str
    start_time: str
    end_time: str
    classroom_id: str
    professor_id: str
    subject: str

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'ClassSchedule':
        return cls(
            id=row['id'],
            day=row['day'],
            start_time=row['start_time'],
            end_time=row['end_time'],
            classroom_id=row['classroom_id'],
            professor_id=row['professor_id'],
            subject=row['subject'],
        )


@dataclass(frozen=True)
class Credential:
    """A single-use QR credential issued for one class occurrence."""
    id: str
    schedule_id: str
    payload: str
    created_at: datetime
    expires_at: datetime
    used: bool = False

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Credential':
        return cls(
            id=row['id'],
            schedule_id=row['schedule_id'],
            payload=row['qr_code_data'],
            created_at=datetime.fromisoformat(row['created_at']),
            expires_at=datetime.fromisoformat(row['expires_at']),
            used=bool(row['used']),
        )

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            'credential_id': self.id,
            'schedule_id': self.schedule_id,
            'payload': self.payload,
            'created_at': self.created_at.isoformat(),
            'expires_at': self.expires_at.isoformat(),
            'used': self.used,
        }


@dataclass(frozen=True)
class DeliveryRequest:
    """Everything the notifier needs to render one class QR email."""
    schedule_id: str
    recipient_email: str
    recipient_name: str
    subject: str
    classroom_name: str
    start_time: str
    end_time: str
    day: str

    @classmethod
    def for_schedule(cls, schedule: ClassSchedule, professor: Professor,
                     classroom: Classroom) -> 'DeliveryRequest':
        return cls(
            schedule_id=schedule.id,
            recipient_email=professor.email,
            recipient_name=professor.name,
            subject=schedule.subject,
            classroom_name=classroom.name,
            start_time=schedule.start_time,
            end_time=schedule.end_time,
            day=schedule.day,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ScheduleSnapshot:
    """Immutable view of all records, taken once per tick."""
    schedules: Tuple[ClassSchedule, ...] = ()
    professors: Mapping[str, Professor] = field(default_factory=dict)
    classrooms: Mapping[str, Classroom] = field(default_factory=dict)
    taken_at: Optional[datetime] = None

    @classmethod
    def build(cls, schedules, professors, classrooms,
              taken_at: Optional[datetime] = None) -> 'ScheduleSnapshot':
        return cls(
            schedules=tuple(schedules),
            professors=MappingProxyType({p.id: p for p in professors}),
            classrooms=MappingProxyType({c.id: c for c in classrooms}),
            taken_at=taken_at,
        )

    def professor(self, professor_id: str) -> Optional[Professor]:
        return self.professors.get(professor_id)

    def classroom(self, classroom_id: str) -> Optional[Classroom]:
        return self.classrooms.get(classroom_id)


@dataclass(frozen=True)
class ClassroomStatus:
    """
    Occupancy of one classroom at an instant.

    A classroom whose current class points at a missing professor is still
    occupied; only the professor is unknown.
    """
    classroom: Classroom
    schedule: Optional[ClassSchedule] = None
    professor: Optional[Professor] = None

    @property
    def is_occupied(self) -> bool:
        return self.schedule is not None

    def to_dict(self) -> Dict[str, Any]:
        current_class = None
        if self.schedule is not None:
            current_class = {
                'schedule_id': self.schedule.id,
                'subject': self.schedule.subject,
                'start_time': self.schedule.start_time,
                'end_time': self.schedule.end_time,
                'professor_id': self.schedule.professor_id,
                'professor_name': self.professor.name if self.professor else None,
            }
        return {
            'classroom_id': self.classroom.id,
            'classroom_name': self.classroom.name,
            'capacity': self.classroom.capacity,
            'status': 'occupied' if self.is_occupied else 'available',
            'current_class': current_class,
        }
