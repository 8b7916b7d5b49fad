# facelog/errors.py
"""
Technical error taxonomy.

Business rejections (no schedule, dwell too short, duplicate event type) are
NOT exceptions: they are returned as AttendanceOutcome statuses.
"""


class FaceLogError(Exception):
    """Base class for all technical errors raised by facelog."""


class DeviceError(FaceLogError):
    """Camera could not be opened or stopped delivering frames."""

    def __init__(self, message: str, device_index: int = None):
        super().__init__(message)
        self.device_index = device_index


class ClassifierError(FaceLogError):
    """Face detector or identity matcher failed on a frame."""

    def __init__(self, message: str, stage: str = "", person_id: int = None):
        super().__init__(message)
        self.stage = stage
        self.person_id = person_id


class StorageError(FaceLogError):
    """Attendance store read or write failed."""
