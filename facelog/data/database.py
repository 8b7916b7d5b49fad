# facelog/data/database.py
"""
SQLite attendance store.

Append-only attendance log plus person and schedule lookup.
Thread-safe for multi-threaded access (dispatcher worker + web server):
a NEW connection per call (SQLite supports multiple readers) and a module
lock around every write.

Every sqlite3 error is re-raised as StorageError.
"""
import csv
import os
import sqlite3
import logging
import threading
from contextlib import contextmanager
from datetime import date, datetime
from typing import List, Optional

from ..errors import StorageError
from .models import (
    AttendanceEvent,
    AttendanceSummary,
    EventType,
    Person,
    Role,
    ScheduleEntry,
    day_name,
    parse_clock,
    parse_day,
)

logger = logging.getLogger(__name__)

DB_PATH = "attendance.db"

# Serializes writes across every store instance in the process
_db_lock = threading.Lock()

CSV_HEADER = ["Log ID", "Person ID", "Name", "Event Time", "Event Type",
              "Source", "Confidence", "Activity"]


def _parse_datetime(dt_str):
    """Parse a stored timestamp with or without microseconds."""
    if '.' in dt_str:
        return datetime.strptime(dt_str, "%Y-%m-%d %H:%M:%S.%f")
    return datetime.strptime(dt_str, "%Y-%m-%d %H:%M:%S")


def _format_datetime(value: datetime) -> str:
    return value.isoformat(sep=' ')


def _as_date(value) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return date.fromisoformat(str(value)).isoformat()


class SQLiteAttendanceStore:
    """AttendanceStore backed by a single SQLite file."""

    def __init__(self, db_path: str = DB_PATH):
        self.db_path = db_path
        directory = os.path.dirname(os.path.abspath(db_path))
        os.makedirs(directory, exist_ok=True)
        self.init_db()

    def get_connection(self):
        """
        Open a NEW connection. Rows come back as sqlite3.Row.
        Close it after use (or use _connection()).
        """
        conn = sqlite3.connect(self.db_path, timeout=10.0)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _connection(self, write: bool = False):
        lock = _db_lock if write else None
        if lock:
            lock.acquire()
        conn = None
        try:
            conn = self.get_connection()
            yield conn
            if write:
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"[Database] {e}")
            raise StorageError(str(e)) from e
        finally:
            if conn is not None:
                conn.close()
            if lock:
                lock.release()

    def init_db(self):
        """Create tables if missing."""
        with self._connection(write=True) as conn:
            cursor = conn.cursor()
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS persons (
                    id INTEGER PRIMARY KEY,
                    code TEXT UNIQUE NOT NULL,
                    display_name TEXT NOT NULL,
                    department TEXT DEFAULT '',
                    role TEXT DEFAULT 'STUDENT',
                    active INTEGER DEFAULT 1,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            ''')
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS schedules (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    person_id INTEGER NOT NULL,
                    day TEXT NOT NULL,
                    start_time TIME NOT NULL,
                    end_time TIME NOT NULL,
                    activity TEXT NOT NULL
                )
            ''')
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS attendance (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    person_id INTEGER NOT NULL,
                    timestamp DATETIME NOT NULL,
                    date DATE NOT NULL,
                    time TIME NOT NULL,
                    event_type TEXT NOT NULL,
                    activity TEXT NOT NULL,
                    confidence REAL DEFAULT 0,
                    source_id TEXT
                )
            ''')
            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_attendance_day_key
                ON attendance (person_id, activity, date)
            ''')

    # === ROW MAPPING ===

    @staticmethod
    def _person_from_row(row) -> Person:
        return Person(
            id=row['id'],
            code=row['code'],
            display_name=row['display_name'],
            department=row['department'] or "",
            role=Role[row['role']],
            active=bool(row['active'])
        )

    @staticmethod
    def _schedule_from_row(row) -> ScheduleEntry:
        return ScheduleEntry(
            id=row['id'],
            person_id=row['person_id'],
            day_of_week=parse_day(row['day']),
            start_time=parse_clock(row['start_time']),
            end_time=parse_clock(row['end_time']),
            activity=row['activity']
        )

    @staticmethod
    def _event_from_row(row) -> AttendanceEvent:
        return AttendanceEvent(
            id=row['id'],
            person_id=row['person_id'],
            timestamp=_parse_datetime(row['timestamp']),
            event_type=EventType(row['event_type']),
            activity=row['activity'],
            confidence=row['confidence'],
            source_id=row['source_id']
        )

    # === ATTENDANCE (core contract) ===

    def append(self, event: AttendanceEvent) -> int:
        """Insert an event. Returns its new id."""
        with self._connection(write=True) as conn:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT INTO attendance
                    (person_id, timestamp, date, time, event_type, activity, confidence, source_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ''', (
                event.person_id,
                _format_datetime(event.timestamp),
                event.timestamp.strftime("%Y-%m-%d"),
                event.timestamp.strftime("%H:%M:%S"),
                event.event_type.value,
                event.activity,
                float(event.confidence),
                event.source_id
            ))
            return cursor.lastrowid

    def most_recent_today(self, person_id: int, activity: str, today=None) -> Optional[AttendanceEvent]:
        """Latest event of `today` (default: current date) for (person_id, activity)."""
        day = _as_date(today or date.today())
        with self._connection() as conn:
            row = conn.execute('''
                SELECT * FROM attendance
                WHERE person_id = ? AND activity = ? AND date = ?
                ORDER BY timestamp DESC, id DESC LIMIT 1
            ''', (person_id, activity, day)).fetchone()
        return self._event_from_row(row) if row else None

    def find_schedule(self, person_id: int) -> List[ScheduleEntry]:
        """All schedule entries of a person, in insertion order."""
        with self._connection() as conn:
            rows = conn.execute(
                'SELECT * FROM schedules WHERE person_id = ? ORDER BY id', (person_id,)
            ).fetchall()
        return [self._schedule_from_row(row) for row in rows]

    def find_person(self, person_id: int) -> Optional[Person]:
        with self._connection() as conn:
            row = conn.execute('SELECT * FROM persons WHERE id = ?', (person_id,)).fetchone()
        return self._person_from_row(row) if row else None

    # === MANAGEMENT ===

    def add_person(self, person: Person) -> Person:
        """Insert or replace a person by id."""
        with self._connection(write=True) as conn:
            conn.execute('''
                INSERT OR REPLACE INTO persons (id, code, display_name, department, role, active)
                VALUES (?, ?, ?, ?, ?, ?)
            ''', (person.id, person.code, person.display_name, person.department,
                  person.role.name, 1 if person.active else 0))
        logger.info(f"[Database] Person saved: {person.id} {person.display_name}")
        return person

    def list_persons(self, active_only: bool = False) -> List[Person]:
        query = 'SELECT * FROM persons'
        if active_only:
            query += ' WHERE active = 1'
        query += ' ORDER BY display_name'
        with self._connection() as conn:
            rows = conn.execute(query).fetchall()
        return [self._person_from_row(row) for row in rows]

    def add_schedule(self, entry: ScheduleEntry) -> ScheduleEntry:
        """Insert a schedule entry. Overlaps with existing entries are only warned about."""
        for existing in self.find_schedule(entry.person_id):
            if existing.overlaps(entry):
                logger.warning(
                    f"[Database] Schedule for person {entry.person_id} overlaps: "
                    f"'{entry}' vs '{existing}'"
                )

        with self._connection(write=True) as conn:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT INTO schedules (person_id, day, start_time, end_time, activity)
                VALUES (?, ?, ?, ?, ?)
            ''', (entry.person_id, day_name(entry.day_of_week),
                  entry.start_time.strftime("%H:%M:%S"),
                  entry.end_time.strftime("%H:%M:%S"),
                  entry.activity))
            entry_id = cursor.lastrowid
        return ScheduleEntry(entry.person_id, entry.day_of_week, entry.start_time,
                             entry.end_time, entry.activity, id=entry_id)

    def remove_schedule(self, schedule_id: int) -> bool:
        with self._connection(write=True) as conn:
            cursor = conn.execute('DELETE FROM schedules WHERE id = ?', (schedule_id,))
            return cursor.rowcount > 0

    # === REPORTING ===

    def events_for_day(self, day=None) -> List[AttendanceEvent]:
        day = _as_date(day or date.today())
        with self._connection() as conn:
            rows = conn.execute('''
                SELECT * FROM attendance WHERE date = ?
                ORDER BY timestamp DESC, id DESC
            ''', (day,)).fetchall()
        return [self._event_from_row(row) for row in rows]

    def events_between(self, start, end, activity: str = None) -> List[AttendanceEvent]:
        query = 'SELECT * FROM attendance WHERE date BETWEEN ? AND ?'
        params = [_as_date(start), _as_date(end)]
        if activity:
            query += ' AND activity = ?'
            params.append(activity)
        query += ' ORDER BY timestamp DESC, id DESC'
        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._event_from_row(row) for row in rows]

    def events_for_person(self, person_id: int, limit: int = 100) -> List[AttendanceEvent]:
        with self._connection() as conn:
            rows = conn.execute('''
                SELECT * FROM attendance WHERE person_id = ?
                ORDER BY timestamp DESC, id DESC LIMIT ?
            ''', (person_id, limit)).fetchall()
        return [self._event_from_row(row) for row in rows]

    def summary_for_person(self, person_id: int, start, end) -> AttendanceSummary:
        with self._connection() as conn:
            row = conn.execute('''
                SELECT
                    COUNT(DISTINCT date) AS total_days,
                    SUM(CASE WHEN event_type = ? THEN 1 ELSE 0 END) AS time_in_count,
                    SUM(CASE WHEN event_type = ? THEN 1 ELSE 0 END) AS time_out_count
                FROM attendance
                WHERE person_id = ? AND date BETWEEN ? AND ?
            ''', (EventType.TIME_IN.value, EventType.TIME_OUT.value,
                  person_id, _as_date(start), _as_date(end))).fetchone()
        return AttendanceSummary(
            total_days=row['total_days'] or 0,
            time_in_count=row['time_in_count'] or 0,
            time_out_count=row['time_out_count'] or 0
        )

    def export_to_csv(self, output_path: str, start, end, activity: str = None) -> str:
        """Write events between start and end (inclusive) to a CSV file. Returns its path."""
        events = self.events_between(start, end, activity)
        names = {person.id: person.display_name for person in self.list_persons()}

        directory = os.path.dirname(os.path.abspath(output_path))
        os.makedirs(directory, exist_ok=True)
        with open(output_path, 'w', newline='', encoding='utf-8-sig') as f:
            writer = csv.writer(f)
            writer.writerow(CSV_HEADER)
            for event in events:
                writer.writerow([
                    event.id,
                    event.person_id,
                    names.get(event.person_id, "Unknown"),
                    event.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                    event.event_type.value,
                    event.source_id or "N/A",
                    f"{event.confidence:.2f}",
                    event.activity
                ])

        logger.info(f"[Database] Exported {len(events)} records to: {output_path}")
        return output_path
