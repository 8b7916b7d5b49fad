"""
Data layer - records and SQLite storage.
"""
from .models import (
    AttendanceEvent,
    AttendanceSummary,
    EventType,
    Person,
    Role,
    ScheduleEntry,
    parse_clock,
    parse_day,
)
from .database import SQLiteAttendanceStore

__all__ = [
    'AttendanceEvent',
    'AttendanceSummary',
    'EventType',
    'Person',
    'Role',
    'ScheduleEntry',
    'parse_clock',
    'parse_day',
    'SQLiteAttendanceStore',
]
