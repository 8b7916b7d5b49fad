"""
Processing modules.

- attendance: schedule-aware Time In / Time Out clock
- dispatcher: single-worker attendance recording
- pipeline: camera -> recognition -> attendance wiring
"""

from .attendance import (
    AttendanceClock,
    AttendanceOutcome,
    OutcomeStatus,
    DayKeyState,
)
from .dispatcher import AttendanceDispatcher
from .pipeline import AttendancePipeline

__all__ = [
    'AttendanceClock',
    'AttendanceOutcome',
    'OutcomeStatus',
    'DayKeyState',
    'AttendanceDispatcher',
    'AttendancePipeline',
]
