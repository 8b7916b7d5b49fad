# facelog/recognition/trainer.py
"""
Training and enrollment from a face-sample directory.

Layout:
    faces/
    ├── 1/            # person id
    │   ├── 1.png
    │   └── 2.png
    └── 7/
        └── 1.jpg
"""
import os
import re
import logging
from typing import List, Optional, Tuple

import cv2
import numpy as np

from ..detect.detect import crop_box, largest_box
from .matcher import preprocess_face

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = (".png", ".jpg")


def load_training_set(faces_dir: str) -> Tuple[List[np.ndarray], List[int]]:
    """
    Read every faces/<person_id>/*.png|*.jpg as a normalized face.

    Directories whose name is not an integer and unreadable images are skipped.
    """
    images: List[np.ndarray] = []
    labels: List[int] = []

    if not os.path.isdir(faces_dir):
        logger.error(f"Faces directory does not exist: {faces_dir}")
        return images, labels

    for entry in sorted(os.listdir(faces_dir)):
        person_dir = os.path.join(faces_dir, entry)
        if not os.path.isdir(person_dir):
            continue
        try:
            person_id = int(entry)
        except ValueError:
            logger.warning(f"Invalid person directory name: {entry}")
            continue

        for filename in sorted(os.listdir(person_dir)):
            if not filename.lower().endswith(IMAGE_EXTENSIONS):
                continue
            path = os.path.join(person_dir, filename)
            face = cv2.imread(path, cv2.IMREAD_GRAYSCALE)
            if face is None or face.size == 0:
                logger.warning(f"Failed to load image: {path}")
                continue
            images.append(preprocess_face(face))
            labels.append(person_id)

    return images, labels


def train_from_directory(matcher, faces_dir: str) -> int:
    """
    Train `matcher` on every sample under `faces_dir`.

    Returns:
        Number of images trained on (0 if none were found).
    """
    logger.info(f"Training recognizer from directory: {faces_dir}")
    images, labels = load_training_set(faces_dir)
    if not images:
        logger.warning("No face images found for training")
        return 0

    matcher.train(images, labels)
    logger.info(f"✅ Training complete! {len(images)} images, {len(set(labels))} people")
    return len(images)


def _next_sample_index(person_dir: str) -> int:
    highest = 0
    for filename in os.listdir(person_dir):
        match = re.fullmatch(r"(\d+)\.(png|jpg)", filename.lower())
        if match:
            highest = max(highest, int(match.group(1)))
    return highest + 1


def save_face_sample(frame: np.ndarray, person_id: int, faces_dir: str, localizer) -> Optional[str]:
    """
    Crop the largest face in `frame`, normalize it and store it as the next
    numbered PNG under faces_dir/<person_id>/.

    Returns:
        Path of the written sample, or None if no face was found.
    """
    boxes = localizer.detect(frame)
    if not boxes:
        logger.info("No face detected, sample not saved")
        return None

    crop = crop_box(frame, largest_box(boxes))
    if crop.size == 0:
        return None

    person_dir = os.path.join(faces_dir, str(person_id))
    os.makedirs(person_dir, exist_ok=True)
    path = os.path.join(person_dir, f"{_next_sample_index(person_dir)}.png")

    if not cv2.imwrite(path, preprocess_face(crop)):
        logger.error(f"Failed to write sample: {path}")
        return None

    logger.info(f"📸 Saved face sample: {path}")
    return path
