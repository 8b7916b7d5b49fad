# facelog/detect/detect.py
"""
Face localization - OpenCV Haar cascade.

A localizer returns zero or more boxes `(x, y, width, height)` in image pixel
coordinates. An empty list is a normal result, not an error.

Thread-safe: CascadeClassifier is guarded by a lock.
"""
import os
import logging
import threading
from typing import List, Sequence, Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)

Box = Tuple[int, int, int, int]

DEFAULT_CASCADE = "haarcascade_frontalface_default.xml"

# detectMultiScale parameters used by the attendance camera
SCALE_FACTOR = 1.1
MIN_NEIGHBORS = 3
MIN_FACE_SIZE = (30, 30)


def default_cascade_path() -> str:
    return os.path.join(cv2.data.haarcascades, DEFAULT_CASCADE)


def to_gray(image: np.ndarray) -> np.ndarray:
    if image.ndim == 3 and image.shape[2] == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    if image.ndim == 3 and image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    return image


def largest_box(boxes: Sequence[Box]) -> Box:
    """Largest box by area; the first one wins ties."""
    best = boxes[0]
    for box in boxes[1:]:
        if box[2] * box[3] > best[2] * best[3]:
            best = box
    return best


def crop_box(image: np.ndarray, box: Box) -> np.ndarray:
    """Crop `box` clipped to the image bounds (may return an empty array)."""
    h_img, w_img = image.shape[:2]
    x, y, w, h = box
    x0 = max(0, int(x))
    y0 = max(0, int(y))
    x1 = min(w_img, int(x) + int(w))
    y1 = min(h_img, int(y) + int(h))
    return image[y0:y1, x0:x1]


class HaarFaceLocalizer:
    """Frontal face detector backed by cv2.CascadeClassifier."""

    def __init__(self, cascade_path: str = None, scale_factor: float = SCALE_FACTOR,
                 min_neighbors: int = MIN_NEIGHBORS, min_size: Tuple[int, int] = MIN_FACE_SIZE):
        if cascade_path is None:
            cascade_path = default_cascade_path()

        self._lock = threading.Lock()
        self.cascade_path = cascade_path
        self.scale_factor = scale_factor
        self.min_neighbors = min_neighbors
        self.min_size = min_size

        self._classifier = cv2.CascadeClassifier(cascade_path)
        if self._classifier.empty():
            raise IOError(f"Failed to load cascade classifier from: {cascade_path}")

        logger.info(f"[Detector] Haar cascade: {cascade_path}")

    def detect(self, image: np.ndarray) -> List[Box]:
        gray = to_gray(image)
        with self._lock:
            faces = self._classifier.detectMultiScale(
                gray,
                scaleFactor=self.scale_factor,
                minNeighbors=self.min_neighbors,
                minSize=self.min_size
            )
        return [tuple(int(v) for v in face) for face in faces]
