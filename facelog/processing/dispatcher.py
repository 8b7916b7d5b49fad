# facelog/processing/dispatcher.py
"""
Runs attendance decisions off the capture thread.

A single worker thread executes AttendanceClock.record() in submission order,
so a slow store never stalls frame capture.
"""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Optional

from .attendance import AttendanceClock, AttendanceOutcome, OutcomeStatus

logger = logging.getLogger(__name__)


class AttendanceDispatcher:
    """Fire-and-forget attendance recording with an optional outcome callback."""

    def __init__(self, clock: AttendanceClock,
                 on_outcome: Optional[Callable[[AttendanceOutcome], None]] = None):
        self.clock = clock
        self.on_outcome = on_outcome
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="attendance")
        self._lock = threading.Lock()
        self._closed = False

    def submit(self, person_id: int, confidence: float, detected_at: datetime = None) -> "Future[AttendanceOutcome]":
        """
        Queue one decision. `detected_at` should be taken on the capture thread.

        After shutdown() nothing is queued: the returned future already holds
        an ERROR outcome.
        """
        if detected_at is None:
            detected_at = datetime.now()

        with self._lock:
            if not self._closed:
                return self._executor.submit(self._run, person_id, confidence, detected_at)

        logger.warning(f"Dispatcher closed, dropping attendance for person {person_id}")
        future: "Future[AttendanceOutcome]" = Future()
        future.set_result(AttendanceOutcome(
            OutcomeStatus.ERROR, "Error: attendance dispatcher is shut down",
            person_id, detected_at
        ))
        return future

    def _run(self, person_id: int, confidence: float, detected_at: datetime) -> AttendanceOutcome:
        try:
            outcome = self.clock.record(person_id, confidence, detected_at)
        except Exception as e:
            logger.exception(f"Attendance worker failed (person_id={person_id})")
            outcome = AttendanceOutcome(OutcomeStatus.ERROR, f"Error: {e}", person_id, detected_at)

        if self.on_outcome is not None:
            try:
                self.on_outcome(outcome)
            except Exception:
                logger.exception("Outcome callback failed")
        return outcome

    def shutdown(self, wait: bool = True):
        """Stop accepting work. With wait=True, pending decisions finish first."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=wait)
        logger.info("Attendance dispatcher stopped")

    @property
    def is_closed(self) -> bool:
        return self._closed
