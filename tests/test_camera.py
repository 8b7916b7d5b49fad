import threading
import time

import cv2
import numpy as np

from facelog.core.camera import CameraConfig, FrameSource, SourceStatus

from conftest import BlockingCapture, FakeCapture, wait_until


def make_source(capture, **overrides):
    config = CameraConfig(fps=200, read_backoff=0.001, join_timeout=0.2, **overrides)
    return FrameSource(config, capture_factory=lambda index: capture)


def test_start_publishes_frames_and_stop_clears_state():
    capture = FakeCapture()
    source = make_source(capture)
    statuses = []
    source.on_status(lambda status, message: statuses.append(status))

    assert source.start() is True
    assert wait_until(lambda: source.latest_frame() is not None)
    assert source.status is SourceStatus.RUNNING

    assert source.stop() is True
    assert source.latest_frame() is None
    assert source.status is SourceStatus.DISCONNECTED
    assert source.fps == 0.0
    assert capture.released.is_set()
    assert statuses[:2] == [SourceStatus.STARTING, SourceStatus.RUNNING]
    assert statuses[-2:] == [SourceStatus.STOPPING, SourceStatus.DISCONNECTED]


def test_start_and_stop_are_idempotent():
    source = make_source(FakeCapture())
    assert source.stop() is False

    assert source.start() is True
    assert source.start() is False
    assert source.stop() is True
    assert source.stop() is False


def test_configures_device():
    capture = FakeCapture()
    source = make_source(capture, width=320, height=240)
    source.start()
    assert wait_until(source.is_running)
    source.stop()

    assert capture.props[cv2.CAP_PROP_FRAME_WIDTH] == 320
    assert capture.props[cv2.CAP_PROP_FRAME_HEIGHT] == 240
    assert capture.props[cv2.CAP_PROP_BUFFERSIZE] == 1


def test_open_failure_is_terminal_error_with_diagnostic():
    source = make_source(FakeCapture(opened=False))
    messages = []
    source.on_status(lambda status, message: messages.append((status, message)))

    source.start()
    assert wait_until(lambda: source.status is SourceStatus.ERROR)
    assert "Failed to open camera 0" in source.last_error
    status, message = messages[-1]
    assert status is SourceStatus.ERROR
    assert "Troubleshooting" in message

    source.stop()
    assert source.status is SourceStatus.DISCONNECTED


def test_factory_exception_becomes_device_error():
    def broken_factory(index):
        raise RuntimeError("no backend")

    source = FrameSource(CameraConfig(), capture_factory=broken_factory)
    source.start()
    assert wait_until(lambda: source.status is SourceStatus.ERROR)
    assert "no backend" in source.last_error
    source.stop()


def test_consecutive_empty_reads_end_in_error():
    capture = FakeCapture(empty=True)
    source = make_source(capture, max_empty_reads=5)

    source.start()
    assert wait_until(lambda: source.status is SourceStatus.ERROR)
    assert "5 empty frames" in source.last_error
    assert capture.released.wait(1.0)
    source.stop()


def test_stop_is_bounded_when_read_blocks():
    capture = BlockingCapture()
    source = make_source(capture)

    source.start()
    assert capture.read_started.wait(1.0)

    started = time.monotonic()
    source.stop()
    elapsed = time.monotonic() - started

    assert elapsed < 1.0
    assert capture.released.is_set()
    assert source.status is SourceStatus.DISCONNECTED


def test_paused_source_grabs_but_does_not_publish():
    capture = FakeCapture()
    source = make_source(capture)
    received = []
    source.on_frame(received.append)

    source.pause()
    source.start()
    assert wait_until(lambda: capture.reads > 5)
    assert received == []
    assert source.latest_frame() is None

    source.resume()
    assert wait_until(lambda: len(received) > 0)
    source.stop()


def test_mirror_flips_frames_horizontally():
    capture = FakeCapture()
    source = make_source(capture, mirror=True)
    received = []
    source.on_frame(received.append)

    source.start()
    assert wait_until(lambda: len(received) > 0)
    source.stop()

    frame = received[0]
    # the marker pixel written at column 0 ends up in the last column
    assert frame[0, -1, 0] == np.max(frame)


def test_listener_errors_do_not_stop_the_loop():
    source = make_source(FakeCapture())
    received = []

    def broken(frame):
        raise ValueError("boom")

    source.on_frame(broken)
    source.on_frame(received.append)
    source.start()
    assert wait_until(lambda: len(received) >= 3)
    assert source.status is SourceStatus.RUNNING
    source.stop()


def test_stop_from_frame_listener_does_not_deadlock():
    capture = FakeCapture()
    source = make_source(capture)
    stopped = threading.Event()

    def stop_once(frame):
        if not stopped.is_set():
            stopped.set()
            source.stop()

    source.on_frame(stop_once)
    source.start()
    assert stopped.wait(1.0)
    assert wait_until(lambda: source.status is SourceStatus.DISCONNECTED)
    assert capture.released.is_set()


def test_context_manager_stops_on_exit():
    capture = FakeCapture()
    with make_source(capture) as source:
        assert wait_until(source.is_running)
    assert capture.released.is_set()
    assert source.status is SourceStatus.DISCONNECTED


def test_restart_after_stop_timed_out_while_opening():
    gate = threading.Event()
    first, second = FakeCapture(), FakeCapture()
    opened = []

    def factory(index):
        if not opened:
            opened.append(first)
            gate.wait(timeout=5.0)
            return first
        opened.append(second)
        return second

    source = FrameSource(
        CameraConfig(fps=200, read_backoff=0.001, join_timeout=0.1, max_empty_reads=5),
        capture_factory=factory
    )

    source.start()
    assert wait_until(lambda: len(opened) == 1)
    source.stop()

    source.start()
    assert wait_until(lambda: source.status is SourceStatus.RUNNING)

    # the abandoned run finishes opening after the restart
    gate.set()
    assert first.released.wait(1.0)
    time.sleep(0.3)

    assert source.status is SourceStatus.RUNNING
    assert source.last_error is None
    assert not second.released.is_set()

    source.stop()
    assert second.released.is_set()


def test_stop_clears_pause():
    source = make_source(FakeCapture())
    received = []
    source.on_frame(received.append)

    source.start()
    source.pause()
    source.stop()
    assert not source.is_paused()

    source.start()
    assert wait_until(lambda: len(received) > 0)
    source.stop()


def test_status_listener_may_stop_the_source():
    source = make_source(FakeCapture())
    restarts = []

    def stop_while_starting(status, message):
        if status is SourceStatus.STARTING and not restarts:
            restarts.append(status)
            source.stop()

    source.on_status(stop_while_starting)

    caller = threading.Thread(target=source.start, daemon=True)
    caller.start()
    caller.join(timeout=2.0)
    assert not caller.is_alive()
    assert source.status is SourceStatus.DISCONNECTED

    assert source.start() is True
    assert wait_until(source.is_running)
    source.stop()
