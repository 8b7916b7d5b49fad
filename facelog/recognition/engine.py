# facelog/recognition/engine.py
"""
Recognition decision engine.

Turns detector + matcher output into exactly one RecognitionResult per frame,
applying a distance threshold and a per-person debounce window.

Usage:
    engine = RecognitionEngine(localizer, matcher, store.find_person)
    engine.subscribe(lambda result: print(result))
    result = engine.process(frame)
    if result.should_log_attendance:
        clock.handle(result)
"""
import time
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..data.models import Person
from ..detect.detect import Box, crop_box, largest_box
from ..errors import ClassifierError
from .matcher import preprocess_face

logger = logging.getLogger(__name__)

# LBPH distance ceiling: lower is stricter
DEFAULT_CONFIDENCE_THRESHOLD = 80.0
# Distances within this margin above the threshold are LOW_CONFIDENCE, beyond it UNKNOWN
DEFAULT_LOW_CONFIDENCE_MARGIN = 10.0
# Minimum time between two RECOGNIZED results for the same person
DEFAULT_DEBOUNCE_WINDOW_SECONDS = 3.0


class RecognitionStatus(Enum):
    RECOGNIZED = "recognized"
    UNKNOWN = "unknown"
    LOW_CONFIDENCE = "low_confidence"
    DEBOUNCED = "debounced"
    NO_FACE = "no_face"
    ERROR = "error"


@dataclass(frozen=True)
class RecognitionResult:
    """
    Outcome of one frame. `confidence` is the matcher distance (lower is better),
    0.0 when no prediction was made.
    """
    status: RecognitionStatus
    person_id: Optional[int] = None
    display_name: Optional[str] = None
    confidence: float = 0.0
    message: str = ""
    box: Optional[Box] = None

    @classmethod
    def recognized(cls, person: Person, confidence: float, box: Box = None) -> "RecognitionResult":
        return cls(RecognitionStatus.RECOGNIZED, person.id, person.display_name, confidence,
                   f"Recognized: {person.display_name} ({confidence:.1f})", box)

    @classmethod
    def unknown(cls, confidence: float, box: Box = None) -> "RecognitionResult":
        return cls(RecognitionStatus.UNKNOWN, confidence=confidence,
                   message=f"Unknown person (distance: {confidence:.1f})", box=box)

    @classmethod
    def low_confidence(cls, confidence: float, box: Box = None) -> "RecognitionResult":
        return cls(RecognitionStatus.LOW_CONFIDENCE, confidence=confidence,
                   message=f"Low confidence: {confidence:.1f}", box=box)

    @classmethod
    def debounced(cls, person: Person, confidence: float, box: Box = None) -> "RecognitionResult":
        return cls(RecognitionStatus.DEBOUNCED, person.id, person.display_name, confidence,
                   f"{person.display_name} recognized recently - skipping", box)

    @classmethod
    def no_face(cls) -> "RecognitionResult":
        return cls(RecognitionStatus.NO_FACE, message="No face detected")

    @classmethod
    def error(cls, message: str, person_id: int = None, box: Box = None) -> "RecognitionResult":
        return cls(RecognitionStatus.ERROR, person_id=person_id,
                   message=f"Error: {message}", box=box)

    @property
    def should_log_attendance(self) -> bool:
        return self.status is RecognitionStatus.RECOGNIZED

    def __str__(self):
        return self.message


class DebounceCache:
    """
    person_id -> last RECOGNIZED time, TTL-bounded by `window` seconds.

    Thread-safe. Expired entries are purged lazily on access.
    """

    def __init__(self, window: float = DEFAULT_DEBOUNCE_WINDOW_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.window = window
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[int, float] = {}

    def check_and_mark(self, person_id: int) -> bool:
        """
        Atomically stamp `person_id` unless it was stamped less than `window` ago.

        Returns:
            True if stamped (caller may report RECOGNIZED), False if debounced.
        """
        with self._lock:
            now = self._clock()
            last = self._entries.get(person_id)
            if last is not None and now - last < self.window:
                return False
            self._entries[person_id] = now
            self._purge_locked(now)
            return True

    def is_debounced(self, person_id: int) -> bool:
        with self._lock:
            last = self._entries.get(person_id)
            return last is not None and self._clock() - last < self.window

    def clear(self, person_id: int = None):
        with self._lock:
            if person_id is None:
                self._entries.clear()
            else:
                self._entries.pop(person_id, None)

    def purge(self):
        with self._lock:
            self._purge_locked(self._clock())

    def _purge_locked(self, now: float):
        expired = [pid for pid, stamp in self._entries.items() if now - stamp >= self.window]
        for pid in expired:
            del self._entries[pid]

    def __len__(self):
        with self._lock:
            return len(self._entries)


ResultCallback = Callable[[RecognitionResult], None]


class RecognitionEngine:
    """
    Classifies frames. Detector, matcher and person lookup are injected.

    Every exception raised by a collaborator is caught and returned as an
    ERROR result so the capture loop never stalls.
    """

    def __init__(
        self,
        localizer,
        matcher,
        person_lookup: Callable[[int], Optional[Person]],
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        debounce_window: float = DEFAULT_DEBOUNCE_WINDOW_SECONDS,
        low_confidence_margin: float = DEFAULT_LOW_CONFIDENCE_MARGIN,
        clock: Callable[[], float] = time.monotonic,
        debounce_cache: DebounceCache = None
    ):
        """
        Args:
            localizer: object with detect(image) -> list of (x, y, w, h)
            matcher: object with is_trained and predict(face) -> (label, distance)
            person_lookup: person_id -> Person or None
            confidence_threshold: distance ceiling for RECOGNIZED
            debounce_window: seconds between two RECOGNIZED results per person
            low_confidence_margin: width of the LOW_CONFIDENCE band above the threshold
            clock: monotonic seconds for the debounce cache
            debounce_cache: replaces the default DebounceCache
        """
        self.localizer = localizer
        self.matcher = matcher
        self.person_lookup = person_lookup
        self.confidence_threshold = confidence_threshold
        self.low_confidence_margin = low_confidence_margin
        self.debounce = debounce_cache or DebounceCache(debounce_window, clock)

        self.last_result: Optional[RecognitionResult] = None
        self._subscribers: List[ResultCallback] = []

        logger.info(
            f"Recognition engine ready (threshold={confidence_threshold}, "
            f"debounce={self.debounce.window}s, margin={low_confidence_margin})"
        )

    @property
    def debounce_window(self) -> float:
        return self.debounce.window

    def subscribe(self, callback: ResultCallback):
        self._subscribers.append(callback)

    def process(self, frame) -> RecognitionResult:
        """Classify the best face in `frame` and notify subscribers."""
        result = self._classify(frame)
        self.last_result = result
        for callback in list(self._subscribers):
            try:
                callback(result)
            except Exception:
                logger.exception("Recognition subscriber failed")
        return result

    def _classify(self, frame) -> RecognitionResult:
        if frame is None or getattr(frame, "size", 0) == 0:
            return RecognitionResult.no_face()

        stage = "detect"
        box = None
        candidate_id = None
        try:
            boxes = self.localizer.detect(frame)
            if not boxes:
                return RecognitionResult.no_face()

            stage = "preprocess"
            box = largest_box(boxes)
            crop = crop_box(frame, box)
            if crop.size == 0:
                return RecognitionResult.no_face()
            face = preprocess_face(crop)

            if not self.matcher.is_trained:
                logger.warning("Recognizer not trained yet")
                return RecognitionResult.error("Recognizer not trained", box=box)

            stage = "predict"
            candidate_id, distance = self.matcher.predict(face)
            logger.debug(f"Recognition result: person_id={candidate_id}, distance={distance:.2f}")

            if distance > self.confidence_threshold:
                if distance <= self.confidence_threshold + self.low_confidence_margin:
                    return RecognitionResult.low_confidence(distance, box)
                return RecognitionResult.unknown(distance, box)

            if candidate_id is None:
                return RecognitionResult.unknown(distance, box)

            stage = "lookup"
            person = self.person_lookup(candidate_id)
            if person is None:
                logger.warning(f"Person {candidate_id} not found in store")
                return RecognitionResult.unknown(distance, box)

        except Exception as e:
            error = ClassifierError(str(e), stage=stage, person_id=candidate_id)
            logger.error(
                f"Recognition failed at stage '{error.stage}' "
                f"(person_id={error.person_id}, at={time.strftime('%H:%M:%S')}): {e}"
            )
            return RecognitionResult.error(str(error), person_id=candidate_id, box=box)

        if not self.debounce.check_and_mark(person.id):
            logger.debug(f"{person.display_name} debounced (recognized recently)")
            return RecognitionResult.debounced(person, distance, box)

        logger.info(f"✅ Recognized: {person.display_name} (distance={distance:.1f})")
        return RecognitionResult.recognized(person, distance, box)

    def clear_debounce(self, person_id: int):
        self.debounce.clear(person_id)

    def clear_all_debounce(self):
        self.debounce.clear()

    def reset(self):
        """Clear debounce state and the last result."""
        self.debounce.clear()
        self.last_result = None
