"""
Core modules - Infrastructure & Configuration.

- settings: Unified configuration
- camera: Threaded frame source
- tflite_helper: TFLite interpreter helper
- model_factory: Factory for localizer/matcher
"""

from .settings import settings, Settings
from .camera import FrameSource, CameraConfig, SourceStatus, create_frame_source
from .tflite_helper import get_interpreter
from .model_factory import create_localizer, create_matcher

__all__ = [
    'settings',
    'Settings',
    'FrameSource',
    'CameraConfig',
    'SourceStatus',
    'create_frame_source',
    'get_interpreter',
    'create_localizer',
    'create_matcher',
]
