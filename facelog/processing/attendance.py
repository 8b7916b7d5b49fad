# facelog/processing/attendance.py
"""
Attendance clock.

Decides, for a RECOGNIZED person, whether an attendance event is logged and
whether it is a Time In or a Time Out.

State per day-key (person_id, activity, date), derived from the most recent
stored event of that day:
    NO_EVENT_YET -> AWAITING_OUT -> AWAITING_IN -> AWAITING_OUT ...

Rules:
- The person must have a schedule window containing the current time
  (first match in store order, both ends inclusive).
- Time Out needs at least `minimum_dwell_minutes` since the Time In.
- Time In after a Time Out is not gated.

Usage:
    clock = AttendanceClock(store, minimum_dwell_minutes=10, source_id="CAM1")
    outcome = clock.record(person_id=7, confidence=42.0)
    if outcome.is_logged:
        print(outcome.event)
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable, List, Optional

from ..data.models import AttendanceEvent, EventType, ScheduleEntry
from ..errors import StorageError

logger = logging.getLogger(__name__)

DEFAULT_MINIMUM_DWELL_MINUTES = 10
DEFAULT_SOURCE_ID = "CAM1"


class OutcomeStatus(Enum):
    LOGGED = "logged"
    NO_ACTIVE_SCHEDULE = "no_active_schedule"
    DWELL_TOO_SHORT = "dwell_too_short"
    DUPLICATE_EVENT_TYPE = "duplicate_event_type"
    ERROR = "error"


class DayKeyState(Enum):
    NO_EVENT_YET = "no_event_yet"
    AWAITING_OUT = "awaiting_out"
    AWAITING_IN = "awaiting_in"


@dataclass(frozen=True)
class AttendanceOutcome:
    """Result of one attendance decision. Only LOGGED carries an event."""
    status: OutcomeStatus
    message: str
    person_id: Optional[int]
    decided_at: datetime
    activity: Optional[str] = None
    event: Optional[AttendanceEvent] = None

    @property
    def is_logged(self) -> bool:
        return self.status is OutcomeStatus.LOGGED

    @property
    def is_error(self) -> bool:
        return self.status is OutcomeStatus.ERROR

    def __str__(self):
        return self.message


OutcomeCallback = Callable[[AttendanceOutcome], None]


class AttendanceClock:
    """
    Schedule-aware Time In / Time Out state machine on top of an AttendanceStore.

    The store must provide find_schedule(person_id), most_recent_today(person_id,
    activity, today) and append(event) -> id.
    """

    def __init__(
        self,
        store,
        minimum_dwell_minutes: int = DEFAULT_MINIMUM_DWELL_MINUTES,
        source_id: str = DEFAULT_SOURCE_ID,
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Args:
            store: AttendanceStore
            minimum_dwell_minutes: minimum time between Time In and Time Out
            source_id: camera id written on every event
            clock: wall clock used when the caller passes no time
        """
        self.store = store
        self.minimum_dwell = timedelta(minutes=minimum_dwell_minutes)
        self.minimum_dwell_minutes = minimum_dwell_minutes
        self.source_id = source_id
        self._clock = clock
        self._subscribers: List[OutcomeCallback] = []

    def subscribe(self, callback: OutcomeCallback):
        self._subscribers.append(callback)

    def handle(self, result, now: datetime = None) -> Optional[AttendanceOutcome]:
        """Record a RecognitionResult. Returns None for anything but RECOGNIZED."""
        if not result.should_log_attendance:
            return None
        return self.record(result.person_id, result.confidence, now)

    def record(self, person_id: int, confidence: float, now: datetime = None) -> AttendanceOutcome:
        """
        Decide and (maybe) log one attendance event.

        Args:
            person_id: recognized person
            confidence: matcher distance, stored on the event
            now: detection time; fixed for the whole decision (default: clock())
        """
        if now is None:
            now = self._clock()
        outcome = self._decide(person_id, confidence, now)
        self._notify(outcome)
        return outcome

    def _decide(self, person_id: int, confidence: float, now: datetime) -> AttendanceOutcome:
        today = now.date()
        stage = "find_schedule"
        try:
            entry = self._active_entry(person_id, self.store.find_schedule(person_id), now)
            if entry is None:
                logger.info(f"Person {person_id}: no active schedule at {now:%A %H:%M}")
                return AttendanceOutcome(OutcomeStatus.NO_ACTIVE_SCHEDULE,
                                         "No active schedule at this time", person_id, now)

            activity = entry.activity
            stage = "most_recent_today"
            prior = self.store.most_recent_today(person_id, activity, today)

            if prior is None or prior.event_type is EventType.TIME_OUT:
                event_type = EventType.TIME_IN
            else:
                elapsed = now - prior.timestamp
                if elapsed < self.minimum_dwell:
                    logger.info(
                        f"Person {person_id} [{activity}]: dwell "
                        f"{elapsed.total_seconds() / 60:.1f} < {self.minimum_dwell_minutes} min"
                    )
                    return AttendanceOutcome(
                        OutcomeStatus.DWELL_TOO_SHORT,
                        f"You must wait at least {self.minimum_dwell_minutes} minutes before Time Out",
                        person_id, now, activity
                    )
                event_type = EventType.TIME_OUT

            if prior is not None and prior.event_type is event_type:
                logger.warning(f"Person {person_id} [{activity}]: duplicate {event_type.value}")
                return AttendanceOutcome(
                    OutcomeStatus.DUPLICATE_EVENT_TYPE,
                    f"Already logged {event_type.value} for this activity today",
                    person_id, now, activity
                )

            stage = "append"
            event = AttendanceEvent(
                person_id=person_id,
                timestamp=now,
                event_type=event_type,
                activity=activity,
                confidence=float(confidence),
                source_id=self.source_id
            )
            event = event.with_id(self.store.append(event))

        except StorageError as e:
            logger.error(
                f"Attendance store failed at stage '{stage}' "
                f"(person_id={person_id}, at={now:%Y-%m-%d %H:%M:%S}): {e}"
            )
            return AttendanceOutcome(OutcomeStatus.ERROR, f"Error: {e}", person_id, now)

        logger.info(f"✅ {event_type.value} logged: person {person_id} [{activity}] at {now:%H:%M:%S}")
        return AttendanceOutcome(OutcomeStatus.LOGGED,
                                 f"{event_type.value} recorded for {activity}",
                                 person_id, now, activity, event)

    @staticmethod
    def _active_entry(person_id: int, schedule: List[ScheduleEntry], now: datetime) -> Optional[ScheduleEntry]:
        """First entry containing `now`; overlapping matches are warned about."""
        weekday = now.weekday()
        clock_time = now.time()
        matches = [entry for entry in schedule if entry.contains(weekday, clock_time)]
        if not matches:
            return None
        if len(matches) > 1:
            logger.warning(
                f"Person {person_id}: overlapping schedule windows "
                f"{[str(m) for m in matches]}, using '{matches[0]}'"
            )
        return matches[0]

    def state_for(self, person_id: int, activity: str, day: date = None) -> DayKeyState:
        """State of the day-key derived from its most recent stored event."""
        if day is None:
            day = self._clock().date()
        prior = self.store.most_recent_today(person_id, activity, day)
        if prior is None:
            return DayKeyState.NO_EVENT_YET
        if prior.event_type is EventType.TIME_IN:
            return DayKeyState.AWAITING_OUT
        return DayKeyState.AWAITING_IN

    def _notify(self, outcome: AttendanceOutcome):
        for callback in list(self._subscribers):
            try:
                callback(outcome)
            except Exception:
                logger.exception("Attendance subscriber failed")
