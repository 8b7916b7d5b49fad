"""
Face localization.

Exports:
- HaarFaceLocalizer: OpenCV Haar cascade detector
- largest_box / crop_box: helpers shared by recognition and enrollment
"""

from .detect import HaarFaceLocalizer, Box, largest_box, crop_box, to_gray

__all__ = [
    'HaarFaceLocalizer',
    'Box',
    'largest_box',
    'crop_box',
    'to_gray',
]
