# facelog/core/camera.py
"""
Camera capture on a dedicated thread.

FrameSource owns the capture device and runs the grab loop on its own thread.
Consumers never block on the camera: `latest_frame()` reads a single-slot
mailbox that every new frame overwrites, so a slow consumer sees dropped
frames instead of a growing backlog.

Usage:
    from facelog.core.camera import FrameSource, CameraConfig

    source = FrameSource(CameraConfig(device_index=0, fps=30))
    source.on_frame(lambda frame: print(frame.shape))
    source.start()
    ...
    source.stop()
"""
import cv2
import time
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional

from ..errors import DeviceError

logger = logging.getLogger(__name__)


class SourceStatus(Enum):
    """Lifecycle of a FrameSource."""
    DISCONNECTED = "Disconnected"
    STARTING = "Starting..."
    RUNNING = "Running"
    STOPPING = "Stopping..."
    ERROR = "Camera Error"


@dataclass
class CameraConfig:
    """Capture device settings."""
    device_index: int = 0
    width: int = 640
    height: int = 480
    fps: int = 30
    buffer_size: int = 1
    mirror: bool = True
    max_empty_reads: int = 30
    read_backoff: float = 0.1
    join_timeout: float = 2.0

    @property
    def frame_interval(self) -> float:
        return 1.0 / self.fps if self.fps > 0 else 0.0


FrameCallback = Callable[[Any], None]
StatusCallback = Callable[[SourceStatus, str], None]
FpsCallback = Callable[[float], None]


class FrameSource:
    """
    Threaded frame grabber with drop-old-frame semantics.

    All public methods are safe to call from any thread. Frame listeners run
    synchronously on the capture thread, in grab order.
    """

    def __init__(
        self,
        config: Optional[CameraConfig] = None,
        capture_factory: Optional[Callable[[int], Any]] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            config: CameraConfig (defaults if None)
            capture_factory: device_index -> object with the cv2.VideoCapture
                interface (isOpened/read/set/release). Defaults to cv2.VideoCapture.
            clock: monotonic seconds, used for the FPS estimate
        """
        self.config = config or CameraConfig()
        self._capture_factory = capture_factory or cv2.VideoCapture
        self._clock = clock

        self._lifecycle_lock = threading.Lock()
        self._device_lock = threading.Lock()
        self._frame_lock = threading.Lock()

        self._stop_event = threading.Event()
        self._paused = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._cap = None

        self._latest_frame = None
        self._status = SourceStatus.DISCONNECTED
        self._fps = 0.0
        self._frames_published = 0
        self.last_error: Optional[str] = None

        self._frame_listeners: List[FrameCallback] = []
        self._status_listeners: List[StatusCallback] = []
        self._fps_listeners: List[FpsCallback] = []

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------
    def on_frame(self, callback: FrameCallback):
        self._frame_listeners.append(callback)

    def on_status(self, callback: StatusCallback):
        self._status_listeners.append(callback)

    def on_fps(self, callback: FpsCallback):
        self._fps_listeners.append(callback)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> bool:
        """
        Start capturing on a background thread. Returns immediately.

        Status listeners are notified after the lifecycle lock is released,
        so a listener may call start() or stop() itself.

        Returns:
            False if already running, True if a capture thread was started.
        """
        with self._lifecycle_lock:
            if self._thread is not None and (self._thread.is_alive() or self._thread.ident is None):
                logger.warning("Camera already running")
                return False

            # A fresh event per run: a thread abandoned by a timed-out stop()
            # must never see the flag cleared again.
            stop_event = threading.Event()
            self._stop_event = stop_event
            self.last_error = None
            self._status = SourceStatus.STARTING
            thread = threading.Thread(
                target=self._run,
                args=(stop_event,),
                name=f"FrameSource-{self.config.device_index}",
                daemon=True
            )
            self._thread = thread

        self._notify_status(SourceStatus.STARTING)

        with self._lifecycle_lock:
            if stop_event.is_set() or self._thread is not thread:
                logger.info("Camera stopped before the capture thread started")
                return False
            thread.start()
            return True

    def stop(self) -> bool:
        """
        Stop capturing, release the device and clear the published frame.

        Waits at most `config.join_timeout` for the capture thread; if the
        device is stuck in a read the device is released from this thread.
        A paused source is resumed, so the next start() publishes again.

        Returns:
            False if the source was already stopped.
        """
        transitions = []
        with self._lifecycle_lock:
            thread = self._thread
            if thread is None and self._cap is None:
                if self._status is not SourceStatus.DISCONNECTED:
                    self._status = SourceStatus.DISCONNECTED
                    transitions.append(SourceStatus.DISCONNECTED)
                logger.debug("Camera not running")
                stopped = False
            else:
                if self._status is not SourceStatus.ERROR:
                    self._status = SourceStatus.STOPPING
                    transitions.append(SourceStatus.STOPPING)
                self._stop_event.set()

                if thread is not None and thread.is_alive() and thread is not threading.current_thread():
                    thread.join(timeout=self.config.join_timeout)
                    if thread.is_alive():
                        logger.warning(
                            f"Capture thread did not exit within {self.config.join_timeout}s, "
                            f"forcing device release"
                        )

                self._release_device()
                self._thread = None
                self._paused.clear()
                with self._frame_lock:
                    self._latest_frame = None
                self._fps = 0.0
                self._status = SourceStatus.DISCONNECTED
                transitions.append(SourceStatus.DISCONNECTED)
                stopped = True

        if stopped:
            self._update_fps(0.0)
        for status in transitions:
            self._notify_status(status)
        return stopped

    def pause(self):
        """Keep grabbing but stop publishing frames."""
        self._paused.set()
        logger.info("Camera paused")

    def resume(self):
        self._paused.clear()
        logger.info("Camera resumed")

    # ------------------------------------------------------------------
    # Consumers
    # ------------------------------------------------------------------
    def latest_frame(self):
        """Most recent frame or None. Never waits on the device."""
        with self._frame_lock:
            return self._latest_frame

    @property
    def status(self) -> SourceStatus:
        return self._status

    @property
    def fps(self) -> float:
        return self._fps

    @property
    def frames_published(self) -> int:
        return self._frames_published

    def is_running(self) -> bool:
        return self._status is SourceStatus.RUNNING

    def is_paused(self) -> bool:
        return self._paused.is_set()

    # ------------------------------------------------------------------
    # Capture thread
    # ------------------------------------------------------------------
    def _run(self, stop_event: threading.Event):
        try:
            cap = self._open_device(stop_event)
        except DeviceError as e:
            self._fail(stop_event, e)
            return

        if cap is None:
            # stop() ran while the device was opening
            return
        if stop_event.is_set():
            self._release_device(cap)
            return

        self._set_status(SourceStatus.RUNNING)
        try:
            self._capture_loop(stop_event)
        except DeviceError as e:
            self._fail(stop_event, e)
        finally:
            self._release_device(cap)

    def _fail(self, stop_event: threading.Event, error: DeviceError):
        logger.error(f"❌ {error}")
        if stop_event.is_set():
            # An abandoned run must not overwrite the state of a newer one
            return
        self.last_error = str(error)
        self._set_status(SourceStatus.ERROR, self._diagnostic(str(error)))

    def _open_device(self, stop_event: threading.Event):
        """Open and configure the device. Returns None if the run was stopped meanwhile."""
        index = self.config.device_index
        logger.info(f"Initializing camera {index} ...")
        try:
            cap = self._capture_factory(index)
        except Exception as e:
            raise DeviceError(f"Failed to open camera {index}: {e}", index) from e

        if cap is None or not cap.isOpened():
            if cap is not None:
                cap.release()
            raise DeviceError(f"Failed to open camera {index}", index)

        self._configure(cap)
        with self._device_lock:
            if stop_event.is_set():
                abandoned = True
            else:
                abandoned = False
                self._cap = cap
        if abandoned:
            cap.release()
            logger.info(f"📹 Camera {index} opened after stop, released")
            return None
        logger.info(f"📹 Camera {index} opened")
        return cap

    def _configure(self, cap):
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.config.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.config.height)
        cap.set(cv2.CAP_PROP_BUFFERSIZE, self.config.buffer_size)
        cap.set(cv2.CAP_PROP_FPS, self.config.fps)

    def _capture_loop(self, stop_event: threading.Event):
        empty_reads = 0
        window_start = self._clock()
        window_frames = 0

        while not stop_event.is_set():
            frame = self._read()
            if stop_event.is_set():
                break
            if frame is None:
                empty_reads += 1
                if empty_reads >= self.config.max_empty_reads:
                    raise DeviceError(
                        f"Camera {self.config.device_index} returned "
                        f"{empty_reads} empty frames in a row",
                        self.config.device_index
                    )
                logger.warning(f"Received empty frame ({empty_reads}/{self.config.max_empty_reads})")
                stop_event.wait(self.config.read_backoff)
                continue
            empty_reads = 0

            if not self._paused.is_set():
                if self.config.mirror:
                    frame = cv2.flip(frame, 1)
                self._publish(frame)
                window_frames += 1

            now = self._clock()
            if now - window_start >= 1.0:
                self._update_fps(window_frames / (now - window_start))
                logger.debug(f"FPS: {self._fps:.1f}")
                window_start = now
                window_frames = 0

            stop_event.wait(self.config.frame_interval)

    def _read(self):
        with self._device_lock:
            cap = self._cap
        if cap is None:
            return None
        try:
            ok, frame = cap.read()
        except Exception as e:
            logger.warning(f"Camera read failed: {e}")
            return None
        if not ok or frame is None or getattr(frame, "size", 1) == 0:
            return None
        return frame

    def _publish(self, frame):
        with self._frame_lock:
            self._latest_frame = frame
            self._frames_published += 1
        for callback in list(self._frame_listeners):
            try:
                callback(frame)
            except Exception:
                logger.exception("Frame listener failed")

    def _release_device(self, owned=None):
        """
        Release the current device, or only `owned` if given.

        A capture thread abandoned by a timed-out stop() passes its own
        handle so it can never release a device opened by a later start().
        """
        with self._device_lock:
            if owned is None or self._cap is owned:
                cap, self._cap = self._cap, None
            else:
                cap = None
        if cap is None:
            return
        try:
            cap.release()
            logger.info("📹 Camera released")
        except Exception:
            logger.exception("Error releasing camera")

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------
    def _set_status(self, status: SourceStatus, message: str = ""):
        self._status = status
        self._notify_status(status, message)

    def _notify_status(self, status: SourceStatus, message: str = ""):
        for callback in list(self._status_listeners):
            try:
                callback(status, message or status.value)
            except Exception:
                logger.exception("Status listener failed")

    def _update_fps(self, fps: float):
        self._fps = fps
        for callback in list(self._fps_listeners):
            try:
                callback(fps)
            except Exception:
                logger.exception("FPS listener failed")

    @staticmethod
    def _diagnostic(message: str) -> str:
        return (
            f"{message}\n\n"
            "Troubleshooting:\n"
            "• Check if camera is connected\n"
            "• Close other apps using the camera\n"
            "• Check camera permissions\n"
            "• Restart the camera once the problem is fixed"
        )

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False


def create_frame_source(settings) -> FrameSource:
    """Build a FrameSource from a Settings object."""
    config = CameraConfig(
        device_index=settings.CAMERA_DEVICE_INDEX,
        width=settings.CAMERA_WIDTH,
        height=settings.CAMERA_HEIGHT,
        fps=settings.TARGET_FPS,
        mirror=settings.MIRROR_CAMERA,
        max_empty_reads=settings.MAX_EMPTY_READS,
        read_backoff=settings.READ_BACKOFF_SECONDS,
        join_timeout=settings.STOP_JOIN_TIMEOUT
    )
    return FrameSource(config)
