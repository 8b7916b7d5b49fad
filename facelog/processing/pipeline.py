# facelog/processing/pipeline.py
"""
FrameSource -> RecognitionEngine -> AttendanceDispatcher wiring.

Recognition runs synchronously on the capture thread, in grab order.
RECOGNIZED results are handed to the dispatcher together with the wall-clock
time of detection; the attendance decision and the store write run on the
dispatcher's worker.
"""
import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from ..core.camera import FrameSource
from ..recognition.engine import RecognitionEngine, RecognitionResult
from .attendance import AttendanceClock, AttendanceOutcome
from .dispatcher import AttendanceDispatcher

logger = logging.getLogger(__name__)


class AttendancePipeline:

    def __init__(
        self,
        source: FrameSource,
        engine: RecognitionEngine,
        clock: AttendanceClock,
        wall_clock: Callable[[], datetime] = datetime.now
    ):
        self.source = source
        self.engine = engine
        self.clock = clock
        self._wall_clock = wall_clock
        self._lock = threading.Lock()
        self._dispatcher: Optional[AttendanceDispatcher] = None

        self.last_result: Optional[RecognitionResult] = None
        self.last_outcome: Optional[AttendanceOutcome] = None

        self.source.on_frame(self._on_frame)

    @property
    def dispatcher(self) -> Optional[AttendanceDispatcher]:
        return self._dispatcher

    def start(self) -> bool:
        with self._lock:
            if self._dispatcher is None or self._dispatcher.is_closed:
                self._dispatcher = AttendanceDispatcher(self.clock, on_outcome=self._on_outcome)
        started = self.source.start()
        if started:
            logger.info("🚀 Attendance pipeline started")
        return started

    def stop(self):
        """Stop the camera, clear debounce state and drain pending decisions."""
        self.source.stop()
        self.engine.clear_all_debounce()
        with self._lock:
            dispatcher = self._dispatcher
        if dispatcher is not None:
            dispatcher.shutdown(wait=True)
        logger.info("Attendance pipeline stopped")

    def process_frame(self, frame) -> RecognitionResult:
        """Classify one frame and dispatch it if RECOGNIZED."""
        result = self.engine.process(frame)
        self.last_result = result
        if result.should_log_attendance:
            detected_at = self._wall_clock()
            dispatcher = self._dispatcher
            if dispatcher is None:
                logger.warning("Pipeline not started, attendance not dispatched")
            else:
                dispatcher.submit(result.person_id, result.confidence, detected_at)
        return result

    def _on_frame(self, frame):
        self.process_frame(frame)

    def _on_outcome(self, outcome: AttendanceOutcome):
        self.last_outcome = outcome
