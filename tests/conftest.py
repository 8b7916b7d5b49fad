import threading
import time
from datetime import datetime, time as clock_time

import numpy as np
import pytest

from facelog.data.database import SQLiteAttendanceStore
from facelog.data.models import Person, Role, ScheduleEntry

# 2024-01-01 is a Monday
MONDAY = datetime(2024, 1, 1)


def wait_until(predicate, timeout=2.0, interval=0.005):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def at(hour, minute=0, second=0, day=MONDAY):
    return day.replace(hour=hour, minute=minute, second=second)


class FakeCapture:
    """cv2.VideoCapture stand-in that yields numbered frames."""

    def __init__(self, opened=True, empty=False, shape=(4, 6, 3)):
        self.opened = opened
        self.empty = empty
        self.shape = shape
        self.reads = 0
        self.released = threading.Event()
        self.props = {}

    def isOpened(self):
        return self.opened

    def set(self, prop, value):
        self.props[prop] = value
        return True

    def read(self):
        self.reads += 1
        if self.empty:
            return False, None
        frame = np.zeros(self.shape, dtype=np.uint8)
        frame[0, 0, 0] = self.reads % 256
        return True, frame

    def release(self):
        self.released.set()


class BlockingCapture(FakeCapture):
    """Read blocks until the device is released, like a hung driver."""

    def __init__(self):
        super().__init__()
        self.read_started = threading.Event()

    def read(self):
        self.read_started.set()
        self.released.wait(timeout=5.0)
        return False, None


class FakeLocalizer:
    def __init__(self, boxes=None, error=None):
        self.boxes = boxes if boxes is not None else [(10, 10, 40, 40)]
        self.error = error
        self.calls = 0

    def detect(self, image):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.boxes)


class FakeMatcher:
    def __init__(self, label=1, distance=20.0, trained=True):
        self.label = label
        self.distance = distance
        self.is_trained = trained
        self.trained_with = None
        self.faces = []

    def train(self, images, labels):
        self.trained_with = (list(images), list(labels))
        self.is_trained = True

    def predict(self, face):
        self.faces.append(face)
        return self.label, self.distance


class FakeClock:
    """Monotonic seconds that only move when told to."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def frame():
    rng = np.random.default_rng(0)
    return rng.integers(0, 255, size=(120, 160, 3), dtype=np.uint8)


@pytest.fixture
def store(tmp_path):
    return SQLiteAttendanceStore(str(tmp_path / "attendance.db"))


@pytest.fixture
def ana():
    return Person(id=1, code="S-001", display_name="Ana Cruz", department="CS", role=Role.STUDENT)


@pytest.fixture
def lecture_store(store, ana):
    """Ana has Monday 08:00-12:00 'Lecture'."""
    store.add_person(ana)
    store.add_schedule(ScheduleEntry(ana.id, 0, clock_time(8, 0), clock_time(12, 0), "Lecture"))
    return store
