"""
Schedule Manager Module - Smart Class QR Scheduler

This module provides the create/read/update/delete operations over the three
record types the scheduler reads: classrooms, professors and weekly class
schedules. Validation is limited to required fields, plus a recognized day
name and "HH:MM" times on schedules.

Deleting a professor or classroom does not touch the schedules that point at
it; the scheduler skips such schedules when it meets them.
"""

import logging
import sqlite3
import uuid
from typing import Any, Dict, List, Optional

from smartclass.modules.errors import ValidationError
from smartclass.modules.models import DAYS_OF_WEEK, ClassSchedule, Classroom, Professor
from smartclass.modules.window_matcher import parse_time_of_day


class ScheduleManager:
    """
    CRUD surface for classrooms, professors and schedules.
    Create and update calls return a result dict, as the rest of the UI layer expects.
    """

    # table -> (required fields, optional fields)
    TABLES = {
        'classrooms': (('name',), ('capacity',)),
        'professors': (('name', 'email'), ('department',)),
        'schedules': (('professor_id', 'classroom_id', 'subject', 'day', 'start_time', 'end_time'), ()),
    }

    def __init__(self, database_manager):
        """
        Initialize the schedule manager with database connection.

        Args:
            database_manager: Database manager instance
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)

    def _validate(self, table: str, data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
        required, optional = self.TABLES[table]
        allowed = required + optional
        record = {key: data[key] for key in allowed if key in data}

        for key in required:
            if partial and key not in data:
                continue
            value = record.get(key)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise ValidationError(f"Missing required field: {key}")

        if table == 'schedules':
            if 'day' in record and record['day'] not in DAYS_OF_WEEK:
                raise ValidationError(f"Invalid day: {record['day']}")
            for key in ('start_time', 'end_time'):
                if key in record and parse_time_of_day(record[key]) is None:
                    raise ValidationError(f"Invalid time for {key}: {record[key]} (expected HH:MM)")

        if table == 'classrooms' and 'capacity' in record:
            try:
                record['capacity'] = int(record['capacity'] or 0)
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid capacity: {record['capacity']}")

        return record

    def _create(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            record = self._validate(table, data)
        except ValidationError as e:
            return {'success': False, 'error': str(e)}

        record_id = str(data.get('id') or uuid.uuid4().hex)
        columns = ['id'] + list(record)
        placeholders = ', '.join('?' for _ in columns)

        try:
            self.db.execute_update(
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
                tuple([record_id] + list(record.values()))
            )
        except sqlite3.IntegrityError as e:
            self.logger.error(f"Insert into {table} rejected: {str(e)}")
            return {'success': False, 'error': f"Record {record_id} already exists"}

        self.logger.info(f"Created {table} record {record_id}")
        return {'success': True, 'id': record_id}

    def _update(self, table: str, record_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            record = self._validate(table, data, partial=True)
        except ValidationError as e:
            return {'success': False, 'error': str(e)}

        if not record:
            return {'success': False, 'error': 'No valid fields to update'}

        assignments = ', '.join(f"{key} = ?" for key in record)
        changed = self.db.execute_update(
            f"UPDATE {table} SET {assignments} WHERE id = ?",
            tuple(record.values()) + (record_id,)
        )
        if not changed:
            return {'success': False, 'error': f"Record {record_id} not found"}

        self.logger.info(f"Updated {table} record {record_id}: {', '.join(record)}")
        return {'success': True, 'id': record_id}

    def _delete(self, table: str, record_id: str) -> bool:
        changed = self.db.execute_update(f"DELETE FROM {table} WHERE id = ?", (record_id,))
        if changed:
            self.logger.info(f"Deleted {table} record {record_id}")
        return bool(changed)

    def _get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        return self.db.execute_query(
            f"SELECT * FROM {table} WHERE id = ?", (record_id,), fetch_all=False
        )

    # Classrooms

    def create_classroom(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._create('classrooms', data)

    def update_classroom(self, classroom_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._update('classrooms', classroom_id, data)

    def delete_classroom(self, classroom_id: str) -> bool:
        return self._delete('classrooms', classroom_id)

    def get_classroom(self, classroom_id: str) -> Optional[Classroom]:
        row = self._get('classrooms', classroom_id)
        return Classroom.from_row(row) if row else None

    def get_all_classrooms(self) -> List[Classroom]:
        rows = self.db.execute_query("SELECT * FROM classrooms ORDER BY name")
        return [Classroom.from_row(row) for row in rows]

    # Professors

    def create_professor(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._create('professors', data)

    def update_professor(self, professor_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._update('professors', professor_id, data)

    def delete_professor(self, professor_id: str) -> bool:
        return self._delete('professors', professor_id)

    def get_professor(self, professor_id: str) -> Optional[Professor]:
        row = self._get('professors', professor_id)
        return Professor.from_row(row) if row else None

    def get_all_professors(self) -> List[Professor]:
        rows = self.db.execute_query("SELECT * FROM professors ORDER BY name")
        return [Professor.from_row(row) for row in rows]

    # Schedules

    def create_schedule(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._create('schedules', data)

    def update_schedule(self, schedule_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._update('schedules', schedule_id, data)

    def delete_schedule(self, schedule_id: str) -> bool:
        return self._delete('schedules', schedule_id)

    def get_schedule(self, schedule_id: str) -> Optional[ClassSchedule]:
        row = self._get('schedules', schedule_id)
        return ClassSchedule.from_row(row) if row else None

    def get_all_schedules(self, day: Optional[str] = None) -> List[ClassSchedule]:
        """
        Get schedules in insertion order.

        Args:
            day (str): Only schedules held on this day

        Returns:
            List[ClassSchedule]: Schedules
        """
        if day:
            rows = self.db.execute_query(
                "SELECT * FROM schedules WHERE day = ? ORDER BY rowid", (day,)
            )
        else:
            rows = self.db.execute_query("SELECT * FROM schedules ORDER BY rowid")
        return [ClassSchedule.from_row(row) for row in rows]
