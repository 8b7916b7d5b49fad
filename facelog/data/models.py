# facelog/data/models.py
"""
Plain data records exchanged between the core and the attendance store.

Usage:
    from facelog.data.models import ScheduleEntry, parse_day

    entry = ScheduleEntry(person_id=7, day_of_week=parse_day("Mon"),
                          start_time=time(8, 0), end_time=time(12, 0),
                          activity="Lecture")
"""
import calendar
from dataclasses import dataclass, replace
from datetime import datetime, time
from enum import Enum
from typing import Optional, Union

DAY_NAMES = [name.upper() for name in calendar.day_name]  # MONDAY .. SUNDAY


class Role(Enum):
    ADMIN = "Administrator"
    STAFF = "Staff Member"
    STUDENT = "Student"


class EventType(Enum):
    """Attendance event type. Values are the strings persisted in the store."""
    TIME_IN = "Time In"
    TIME_OUT = "Time Out"

    @property
    def opposite(self) -> "EventType":
        return EventType.TIME_OUT if self is EventType.TIME_IN else EventType.TIME_IN


def parse_day(value: Union[int, str]) -> int:
    """
    Parse a day of week into Python weekday numbering (Monday = 0).

    Accepts an int 0-6, a full day name or an unambiguous prefix
    ("mon", "Tuesday", "THU"), case-insensitive.

    Raises:
        ValueError: unknown or ambiguous day
    """
    if isinstance(value, int):
        if 0 <= value <= 6:
            return value
        raise ValueError(f"Day of week out of range: {value}")

    text = str(value).strip().upper()
    if text.isdigit():
        return parse_day(int(text))
    if text in DAY_NAMES:
        return DAY_NAMES.index(text)

    matches = [i for i, name in enumerate(DAY_NAMES) if text and name.startswith(text)]
    if len(matches) == 1:
        return matches[0]
    raise ValueError(f"Unknown day of week: {value!r}")


def day_name(weekday: int) -> str:
    return DAY_NAMES[weekday]


def parse_clock(value: Union[str, time]) -> time:
    """Parse 'HH:MM', 'HH:MM:SS' or 'hh:mm AM' into a time."""
    if isinstance(value, time):
        return value
    text = value.strip()
    for fmt in ("%H:%M:%S", "%H:%M", "%I:%M %p", "%I:%M:%S %p"):
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    raise ValueError(f"Invalid time of day: {value!r}")


@dataclass(frozen=True)
class Person:
    """Known person. `id` is also the label used by the identity matcher."""
    id: int
    code: str
    display_name: str
    department: str = ""
    role: Role = Role.STUDENT
    active: bool = True


@dataclass(frozen=True)
class ScheduleEntry:
    """One weekly window: person_id is expected at `activity` on day_of_week."""
    person_id: int
    day_of_week: int
    start_time: time
    end_time: time
    activity: str
    id: Optional[int] = None

    def contains(self, weekday: int, clock_time: time) -> bool:
        """Inclusive on both ends: [start_time, end_time]."""
        return (
            self.day_of_week == weekday
            and self.start_time <= clock_time <= self.end_time
        )

    def overlaps(self, other: "ScheduleEntry") -> bool:
        return (
            self.day_of_week == other.day_of_week
            and self.start_time <= other.end_time
            and other.start_time <= self.end_time
        )

    def __str__(self):
        return (f"{day_name(self.day_of_week).title()} "
                f"{self.start_time:%H:%M}-{self.end_time:%H:%M}: {self.activity}")


@dataclass(frozen=True)
class AttendanceEvent:
    """Append-only attendance record."""
    person_id: int
    timestamp: datetime
    event_type: EventType
    activity: str
    confidence: float
    source_id: str
    id: Optional[int] = None

    def with_id(self, event_id: int) -> "AttendanceEvent":
        return replace(self, id=event_id)

    def __str__(self):
        return (f"person={self.person_id} {self.event_type.value} [{self.activity}] "
                f"at {self.timestamp:%Y-%m-%d %H:%M:%S}")


@dataclass(frozen=True)
class AttendanceSummary:
    total_days: int = 0
    time_in_count: int = 0
    time_out_count: int = 0
