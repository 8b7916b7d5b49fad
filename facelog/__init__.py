# facelog package
"""
facelog - Face recognition attendance (Time In / Time Out against weekly schedules)

Structure:
    facelog/
    ├── core/                     # Core infrastructure
    │   ├── settings.py           # Configuration
    │   ├── camera.py             # Threaded frame source
    │   ├── tflite_helper.py      # TFLite interpreter helper
    │   └── model_factory.py      # Factory for localizer/matcher
    ├── data/                     # Data layer
    │   ├── models.py             # Person, ScheduleEntry, AttendanceEvent
    │   ├── database.py           # SQLite attendance store
    │   └── roster.py             # JSON roster import
    ├── detect/                   # Face localization (Haar cascade)
    ├── recognition/              # Matchers, decision engine, training
    ├── processing/               # Attendance clock, dispatcher, pipeline
    ├── web/                      # Read-only Flask API
    ├── errors.py                 # Technical error taxonomy
    └── main.py                   # Main application

Usage:
    from facelog import create_localizer, create_matcher

    localizer = create_localizer()
    matcher = create_matcher()
"""

from .core.model_factory import create_localizer, create_matcher
from .core.settings import settings
from .detect import HaarFaceLocalizer
from .recognition import LBPHIdentityMatcher, EmbeddingIdentityMatcher, RecognitionEngine
from .processing import AttendanceClock, AttendancePipeline

__all__ = [
    'settings',
    'create_localizer',
    'create_matcher',
    'HaarFaceLocalizer',
    'LBPHIdentityMatcher',
    'EmbeddingIdentityMatcher',
    'RecognitionEngine',
    'AttendanceClock',
    'AttendancePipeline',
]
