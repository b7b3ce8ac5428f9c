"""
Database Manager Module - Smart Class QR Scheduler

This module handles all database operations for the class scheduler.
It manages SQLite connections, creates the schema for classrooms, professors,
schedules and issued QR credentials, and exposes the read-only snapshot the
scheduler takes on every tick.

Features:
- SQLite connection management (one connection per thread)
- Idempotent schema creation
- Generic query/update helpers and transactions
- Per-tick immutable snapshot of schedules, professors and classrooms
- Credential persistence and lookup
"""

import sqlite3
import logging
import os
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from smartclass.modules.errors import SnapshotUnavailable
from smartclass.modules.models import (
    ClassSchedule, Classroom, Credential, Professor, ScheduleSnapshot
)


class DatabaseManager:
    """
    SQLite-backed store for the class scheduler.

    Connections are thread-local, so the scheduler thread and its delivery
    workers each read through their own connection. A file path is required;
    an in-memory database would be private to each thread.
    """

    def __init__(self, db_path):
        """
        Initialize the database manager with the specified database path.

        Args:
            db_path (str): Path to the SQLite database file
        """
        self.db_path = str(db_path)
        self.logger = logging.getLogger(__name__)
        self._local = threading.local()
        self._connections = []
        self._connections_lock = threading.Lock()

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
            connection = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                timeout=30.0
            )
            connection.row_factory = sqlite3.Row
            self._local.connection = connection
            with self._connections_lock:
                self._connections.append(connection)

        try:
            yield self._local.connection
        except Exception as e:
            self._local.connection.rollback()
            self.logger.error(f"Database operation failed: {str(e)}")
            raise

    def initialize_database(self):
        """
        Create all tables used by the scheduler.
        This method is idempotent and can be called multiple times safely.
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS classrooms (
                        id TEXT PRIMARY KEY,
                        name VARCHAR(100) NOT NULL,
                        capacity INTEGER DEFAULT 0,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS professors (
                        id TEXT PRIMARY KEY,
                        name VARCHAR(100) NOT NULL,
                        email VARCHAR(100) NOT NULL,
                        department VARCHAR(100),
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                # No foreign keys: the scheduler tolerates dangling references
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS schedules (
                        id TEXT PRIMARY KEY,
                        professor_id TEXT NOT NULL,
                        classroom_id TEXT NOT NULL,
                        subject VARCHAR(100) NOT NULL,
                        day VARCHAR(10) NOT NULL,
                        start_time VARCHAR(5) NOT NULL,
                        end_time VARCHAR(5) NOT NULL,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS class_qr_codes (
                        id TEXT PRIMARY KEY,
                        schedule_id TEXT NOT NULL,
                        qr_code_data TEXT UNIQUE NOT NULL,
                        created_at TIMESTAMP NOT NULL,
                        expires_at TIMESTAMP NOT NULL,
                        used BOOLEAN DEFAULT 0
                    )
                """)

                cursor.execute("CREATE INDEX IF NOT EXISTS idx_schedules_day ON schedules(day)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_qr_codes_schedule ON class_qr_codes(schedule_id)")

                conn.commit()
                self.logger.info("Database initialized successfully")

        except Exception as e:
            self.logger.error(f"Failed to initialize database: {str(e)}")
            raise

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
            cursor = conn.cursor()
            cursor.execute(query, params or ())

            if fetch_all:
                return [dict(row) for row in cursor.fetchall()]
            result = cursor.fetchone()
            return dict(result) if result else None

    def execute_update(self, query, params=None):
        """
        Execute an INSERT, UPDATE, or DELETE query.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters

        Returns:
            int: Number of affected rows
        """
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params or ())
            conn.commit()
            return cursor.rowcount

    @contextmanager
    def transaction(self):
        """
        Context manager for database transactions.

        Commits on success. On error get_connection rolls back and logs.

        Yields:
            sqlite3.Connection: Database connection within transaction
        """
        with self.get_connection() as conn:
            yield conn
            conn.commit()

    def get_snapshot(self, taken_at: Optional[datetime] = None) -> ScheduleSnapshot:
        """
        Read every schedule, professor and classroom in one pass.

        Schedules keep insertion order so matches are processed in a stable
        order from tick to tick.

        Raises:
            SnapshotUnavailable: If any of the reads fails
        """
        try:
            schedules = self.execute_query("SELECT * FROM schedules ORDER BY rowid")
            professors = self.execute_query("SELECT * FROM professors")
            classrooms = self.execute_query("SELECT * FROM classrooms ORDER BY rowid")
        except sqlite3.Error as e:
            raise SnapshotUnavailable(f"Failed to read schedule snapshot: {e}") from e

        return ScheduleSnapshot.build(
            schedules=[ClassSchedule.from_row(row) for row in schedules],
            professors=[Professor.from_row(row) for row in professors],
            classrooms=[Classroom.from_row(row) for row in classrooms],
            taken_at=taken_at,
        )

    def insert_credential(self, credential: Credential) -> None:
        """
        Persist a newly issued credential.

        Raises:
            sqlite3.Error: If the insert fails (including a duplicate payload)
        """
        with self.transaction() as conn:
            conn.execute(
                """INSERT INTO class_qr_codes (id, schedule_id, qr_code_data,
                                               created_at, expires_at, used)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (credential.id, credential.schedule_id, credential.payload,
                 credential.created_at.isoformat(), credential.expires_at.isoformat(),
                 int(credential.used))
            )

    def get_credential_by_payload(self, payload: str) -> Optional[Credential]:
        row = self.execute_query(
            "SELECT * FROM class_qr_codes WHERE qr_code_data = ?",
            (payload,),
            fetch_all=False
        )
        return Credential.from_row(row) if row else None

    def mark_credential_used(self, credential_id: str) -> bool:
        """
        Set the single-use flag. Only an unused credential can be marked.

        Returns:
            bool: True if the flag changed
        """
        changed = self.execute_update(
            "UPDATE class_qr_codes SET used = 1 WHERE id = ? AND used = 0",
            (credential_id,)
        )
        return changed == 1

    def list_credentials(self, schedule_id: Optional[str] = None,
                         limit: int = 100) -> List[Credential]:
        """
        Get issued credentials, newest first.

        Args:
            schedule_id (str): Only credentials issued for this schedule
            limit (int): Maximum number of rows

        Returns:
            List[Credential]: Credentials
        """
        if schedule_id:
            rows = self.execute_query(
                """SELECT * FROM class_qr_codes WHERE schedule_id = ?
                   ORDER BY created_at DESC LIMIT ?""",
                (schedule_id, limit)
            )
        else:
            rows = self.execute_query(
                "SELECT * FROM class_qr_codes ORDER BY created_at DESC LIMIT ?",
                (limit,)
            )
        return [Credential.from_row(row) for row in rows]

    def count_rows(self, table: str) -> int:
        if table not in ('classrooms', 'professors', 'schedules', 'class_qr_codes'):
            raise ValueError(f"Unknown table: {table}")
        result = self.execute_query(f"SELECT COUNT(*) AS total FROM {table}", fetch_all=False)
        return result['total']

    def close_all_connections(self):
        """Close the connections opened by every thread."""
        with self._connections_lock:
            connections, self._connections = self._connections, []
        for connection in connections:
            try:
                connection.close()
            except sqlite3.Error as e:
                self.logger.error(f"Error closing connection: {str(e)}")
        if hasattr(self._local, 'connection'):
            del self._local.connection
