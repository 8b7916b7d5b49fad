import numpy as np
import pytest

from facelog.recognition.engine import (
    DebounceCache,
    RecognitionEngine,
    RecognitionResult,
    RecognitionStatus,
)

from conftest import FakeClock, FakeLocalizer, FakeMatcher


@pytest.fixture
def clock():
    return FakeClock()


def make_engine(ana, clock, localizer=None, matcher=None, lookup=None, **kwargs):
    people = {ana.id: ana}
    return RecognitionEngine(
        localizer or FakeLocalizer(),
        matcher or FakeMatcher(label=ana.id, distance=20.0),
        lookup or people.get,
        confidence_threshold=kwargs.pop("confidence_threshold", 80.0),
        debounce_window=kwargs.pop("debounce_window", 3.0),
        low_confidence_margin=kwargs.pop("low_confidence_margin", 10.0),
        clock=clock,
        **kwargs
    )


def test_no_boxes_is_no_face(ana, clock, frame):
    engine = make_engine(ana, clock, localizer=FakeLocalizer(boxes=[]))
    assert engine.process(frame).status is RecognitionStatus.NO_FACE


def test_missing_frame_is_no_face(ana, clock):
    engine = make_engine(ana, clock)
    assert engine.process(None).status is RecognitionStatus.NO_FACE


def test_box_outside_frame_is_no_face(ana, clock, frame):
    engine = make_engine(ana, clock, localizer=FakeLocalizer(boxes=[(500, 500, 20, 20)]))
    assert engine.process(frame).status is RecognitionStatus.NO_FACE


def test_untrained_matcher_is_error(ana, clock, frame):
    engine = make_engine(ana, clock, matcher=FakeMatcher(trained=False))
    result = engine.process(frame)
    assert result.status is RecognitionStatus.ERROR
    assert "Recognizer not trained" in result.message


def test_recognized_then_debounced_then_recognized_after_window(ana, clock, frame):
    engine = make_engine(ana, clock)

    first = engine.process(frame)
    assert first.status is RecognitionStatus.RECOGNIZED
    assert first.person_id == ana.id
    assert first.display_name == "Ana Cruz"
    assert first.confidence == 20.0
    assert first.should_log_attendance

    clock.advance(2.9)
    second = engine.process(frame)
    assert second.status is RecognitionStatus.DEBOUNCED
    assert second.person_id == ana.id
    assert second.confidence == 20.0
    assert not second.should_log_attendance

    clock.advance(0.2)
    assert engine.process(frame).status is RecognitionStatus.RECOGNIZED


def test_debounced_result_does_not_extend_window(ana, clock, frame):
    engine = make_engine(ana, clock)
    engine.process(frame)
    clock.advance(2.0)
    assert engine.process(frame).status is RecognitionStatus.DEBOUNCED
    clock.advance(1.0)
    assert engine.process(frame).status is RecognitionStatus.RECOGNIZED


@pytest.mark.parametrize("distance, status", [
    (80.0, RecognitionStatus.RECOGNIZED),
    (80.01, RecognitionStatus.LOW_CONFIDENCE),
    (90.0, RecognitionStatus.LOW_CONFIDENCE),
    (90.01, RecognitionStatus.UNKNOWN),
    (250.0, RecognitionStatus.UNKNOWN),
])
def test_threshold_and_low_confidence_band(ana, clock, frame, distance, status):
    engine = make_engine(ana, clock, matcher=FakeMatcher(label=ana.id, distance=distance))
    result = engine.process(frame)
    assert result.status is status
    if distance > 80.0:
        assert not result.should_log_attendance
        assert result.person_id is None


def test_unknown_person_id_is_unknown(ana, clock, frame):
    engine = make_engine(ana, clock, matcher=FakeMatcher(label=99, distance=10.0))
    assert engine.process(frame).status is RecognitionStatus.UNKNOWN


@pytest.mark.parametrize("stage, kwargs", [
    ("detect", {"localizer": FakeLocalizer(error=RuntimeError("cascade crashed"))}),
    ("lookup", {"lookup": lambda person_id: (_ for _ in ()).throw(RuntimeError("db down"))}),
])
def test_collaborator_errors_become_error_results(ana, clock, frame, stage, kwargs):
    engine = make_engine(ana, clock, **kwargs)
    result = engine.process(frame)
    assert result.status is RecognitionStatus.ERROR
    assert result.message.startswith("Error:")


def test_matcher_error_carries_no_identity(ana, clock, frame):
    class BrokenMatcher(FakeMatcher):
        def predict(self, face):
            raise ValueError("bad input")

    engine = make_engine(ana, clock, matcher=BrokenMatcher())
    result = engine.process(frame)
    assert result.status is RecognitionStatus.ERROR
    assert "bad input" in result.message
    assert result.person_id is None


def test_largest_box_is_classified(ana, clock, frame):
    localizer = FakeLocalizer(boxes=[(0, 0, 10, 10), (20, 20, 60, 50), (5, 5, 30, 30)])
    engine = make_engine(ana, clock, localizer=localizer)
    result = engine.process(frame)
    assert result.box == (20, 20, 60, 50)


def test_matcher_receives_normalized_face(ana, clock, frame):
    matcher = FakeMatcher(label=ana.id)
    engine = make_engine(ana, clock, matcher=matcher)
    engine.process(frame)
    face = matcher.faces[0]
    assert face.shape == (100, 100)
    assert face.dtype == np.uint8


def test_clear_debounce_allows_immediate_recognition(ana, clock, frame):
    engine = make_engine(ana, clock)
    engine.process(frame)
    engine.clear_debounce(ana.id)
    assert engine.process(frame).status is RecognitionStatus.RECOGNIZED

    engine.clear_all_debounce()
    assert engine.process(frame).status is RecognitionStatus.RECOGNIZED

    engine.reset()
    assert engine.last_result is None
    assert engine.process(frame).status is RecognitionStatus.RECOGNIZED


def test_subscribers_see_every_result(ana, clock, frame):
    engine = make_engine(ana, clock)
    seen = []

    def broken(result):
        raise RuntimeError("ui gone")

    engine.subscribe(broken)
    engine.subscribe(seen.append)
    engine.process(frame)
    engine.process(frame)
    engine.process(None)

    assert [r.status for r in seen] == [
        RecognitionStatus.RECOGNIZED,
        RecognitionStatus.DEBOUNCED,
        RecognitionStatus.NO_FACE,
    ]
    assert engine.last_result is seen[-1]


def test_result_messages():
    assert str(RecognitionResult.no_face()) == "No face detected"
    assert str(RecognitionResult.low_confidence(85.0)) == "Low confidence: 85.0"
    assert str(RecognitionResult.error("x")) == "Error: x"


class TestDebounceCache:

    def test_check_and_mark(self):
        clock = FakeClock()
        cache = DebounceCache(window=3.0, clock=clock)
        assert cache.check_and_mark(1) is True
        assert cache.check_and_mark(1) is False
        assert cache.check_and_mark(2) is True
        assert cache.is_debounced(1)

        clock.advance(3.0)
        assert not cache.is_debounced(1)
        assert cache.check_and_mark(1) is True

    def test_expired_entries_are_purged(self):
        clock = FakeClock()
        cache = DebounceCache(window=1.0, clock=clock)
        cache.check_and_mark(1)
        cache.check_and_mark(2)
        assert len(cache) == 2

        clock.advance(5.0)
        cache.purge()
        assert len(cache) == 0

    def test_clear(self):
        cache = DebounceCache(window=10.0, clock=FakeClock())
        cache.check_and_mark(1)
        cache.check_and_mark(2)
        cache.clear(1)
        assert not cache.is_debounced(1)
        assert cache.is_debounced(2)
        cache.clear()
        assert len(cache) == 0

    def test_zero_window_never_debounces(self):
        cache = DebounceCache(window=0.0, clock=FakeClock())
        assert cache.check_and_mark(1)
        assert cache.check_and_mark(1)
