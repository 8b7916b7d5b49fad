import numpy as np
import pytest

from facelog.detect.detect import HaarFaceLocalizer, crop_box, largest_box, to_gray


def test_largest_box_first_wins_ties():
    assert largest_box([(0, 0, 10, 10), (5, 5, 10, 10)]) == (0, 0, 10, 10)
    assert largest_box([(0, 0, 10, 10), (5, 5, 20, 5), (1, 1, 12, 12)]) == (1, 1, 12, 12)


def test_crop_box_clips_to_image():
    image = np.arange(100, dtype=np.uint8).reshape(10, 10)
    assert crop_box(image, (-5, -5, 8, 8)).shape == (3, 3)
    assert crop_box(image, (8, 8, 10, 10)).shape == (2, 2)
    assert crop_box(image, (20, 20, 5, 5)).size == 0


def test_to_gray():
    assert to_gray(np.zeros((4, 4, 3), dtype=np.uint8)).shape == (4, 4)
    assert to_gray(np.zeros((4, 4, 4), dtype=np.uint8)).shape == (4, 4)
    assert to_gray(np.zeros((4, 4), dtype=np.uint8)).shape == (4, 4)


def test_haar_finds_nothing_on_blank_image():
    localizer = HaarFaceLocalizer()
    assert localizer.detect(np.zeros((240, 320, 3), dtype=np.uint8)) == []


def test_missing_cascade_raises(tmp_path):
    with pytest.raises(IOError):
        HaarFaceLocalizer(str(tmp_path / "missing.xml"))
