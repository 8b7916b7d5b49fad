from facelog.core.camera import CameraConfig, FrameSource
from facelog.processing.attendance import AttendanceClock
from facelog.processing.pipeline import AttendancePipeline
from facelog.recognition.engine import RecognitionEngine, RecognitionStatus

from conftest import MONDAY, FakeCapture, FakeLocalizer, FakeMatcher, at, wait_until


def build_pipeline(store, capture, debounce_window=60.0):
    source = FrameSource(
        CameraConfig(fps=200, read_backoff=0.001, join_timeout=0.2),
        capture_factory=lambda index: capture
    )
    engine = RecognitionEngine(
        FakeLocalizer(),
        FakeMatcher(label=1, distance=20.0),
        store.find_person,
        debounce_window=debounce_window
    )
    clock = AttendanceClock(store, minimum_dwell_minutes=10)
    return AttendancePipeline(source, engine, clock, wall_clock=lambda: at(9, 0))


def test_continuous_recognition_logs_one_event(lecture_store):
    capture = FakeCapture(shape=(120, 160, 3))
    pipeline = build_pipeline(lecture_store, capture)

    assert pipeline.start() is True
    assert wait_until(lambda: pipeline.last_outcome is not None)
    assert wait_until(lambda: capture.reads > 20)
    pipeline.stop()

    events = lecture_store.events_for_day(MONDAY)
    assert len(events) == 1
    assert events[0].timestamp == at(9, 0)
    assert pipeline.last_outcome.is_logged
    assert pipeline.last_result.status is RecognitionStatus.DEBOUNCED


def test_restart_after_stop(lecture_store):
    capture = FakeCapture(shape=(120, 160, 3))
    pipeline = build_pipeline(lecture_store, capture)

    pipeline.start()
    assert wait_until(lambda: pipeline.last_outcome is not None)
    pipeline.stop()
    first_dispatcher = pipeline.dispatcher
    assert first_dispatcher.is_closed

    pipeline.last_outcome = None
    pipeline.start()
    # debounce was cleared on stop; the second Time In attempt is a dwell rejection
    assert wait_until(lambda: pipeline.last_outcome is not None)
    pipeline.stop()

    assert pipeline.dispatcher is not first_dispatcher
    assert not pipeline.last_outcome.is_logged
    assert len(lecture_store.events_for_day(MONDAY)) == 1


def test_process_frame_without_start_does_not_dispatch(lecture_store, frame):
    pipeline = build_pipeline(lecture_store, FakeCapture())
    result = pipeline.process_frame(frame)
    assert result.status is RecognitionStatus.RECOGNIZED
    assert pipeline.dispatcher is None
    assert lecture_store.events_for_day(MONDAY) == []
