# facelog/core/settings.py
"""
Configuration for facelog.

Defaults live here; `config/config.json` (if present) overrides them, and the
command line (facelog.main) overrides both.
"""
import os
import json
import logging
import platform
from dataclasses import dataclass, field, fields
from typing import Optional

logger = logging.getLogger(__name__)


# === PLATFORM DETECTION ===
IS_WINDOWS = platform.system() == "Windows"
IS_PI = platform.system() == "Linux" and os.path.exists("/proc/device-tree/model")

# === PATHS ===
BASE_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
CONFIG_PATH = os.path.join(BASE_DIR, 'config', 'config.json')

# Distance ceilings differ per matcher: LBPH histogram distance vs L2 on
# normalized embeddings.
DEFAULT_THRESHOLDS = {"lbph": 80.0, "embedding": 0.55}
DEFAULT_LOW_CONFIDENCE_MARGINS = {"lbph": 10.0, "embedding": 0.1}


def _load_json_config(path: str) -> dict:
    """Load config from a JSON file, {} if missing or invalid."""
    if not os.path.exists(path):
        return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring invalid config file {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring config file {path}: top level must be an object")
        return {}
    return data


@dataclass
class Settings:
    """Runtime settings. Upper-case fields are the externally settable surface."""

    # === PLATFORM (read-only) ===
    IS_WINDOWS: bool = field(default_factory=lambda: IS_WINDOWS)
    IS_PI: bool = field(default_factory=lambda: IS_PI)
    BASE_DIR: str = field(default_factory=lambda: BASE_DIR)

    # === CAMERA ===
    CAMERA_DEVICE_INDEX: int = 0
    CAMERA_WIDTH: int = 640
    CAMERA_HEIGHT: int = 480
    TARGET_FPS: int = 30
    MIRROR_CAMERA: bool = True
    MAX_EMPTY_READS: int = 30             # consecutive empty reads before ERROR
    READ_BACKOFF_SECONDS: float = 0.1
    STOP_JOIN_TIMEOUT: float = 2.0

    # === RECOGNITION ===
    MATCHER: str = "lbph"                  # lbph | embedding
    CONFIDENCE_THRESHOLD: Optional[float] = None   # None = per-matcher default
    LOW_CONFIDENCE_MARGIN: Optional[float] = None  # None = per-matcher default
    DEBOUNCE_WINDOW_MILLIS: int = 3000

    # === ATTENDANCE ===
    MINIMUM_DWELL_MINUTES: int = 10
    SOURCE_ID: str = "CAM1"

    # === STORAGE / MODELS ===
    DB_PATH: str = "attendance.db"
    FACES_DIR: str = "faces"
    MODEL_PATH: str = "models/lbph_model.yml"
    EMBEDDING_MODEL_PATH: str = "models/recognition/MobileFaceNet_int8.tflite"
    EMBEDDING_DB_PATH: str = "face_db.pkl"
    TFLITE_NUM_THREADS: Optional[int] = None

    # === WEB SERVER ===
    ENABLE_WEB_SERVER: bool = True
    WEB_PORT: int = 5000

    # === LOGGING ===
    LOG_FILE: Optional[str] = None

    config_path: Optional[str] = field(default=None, repr=False)

    def __post_init__(self):
        """Overlay JSON config, compute derived defaults, validate."""
        self._load_from_json(self.config_path or CONFIG_PATH)
        self._compute_defaults()
        self.validate()

    def _load_from_json(self, path: str):
        config = _load_json_config(path)
        self.update(**config)

    def update(self, **values):
        """Set known upper-case fields; unknown keys are logged and skipped."""
        known = {f.name for f in fields(self) if f.name.isupper()}
        for key, value in values.items():
            if key in known and value is not None:
                setattr(self, key, value)
            elif key not in known:
                logger.warning(f"Unknown config key: {key}")

    def set_matcher(self, matcher: str):
        """Switch matcher and reset threshold/margin to its defaults."""
        self.MATCHER = matcher
        self.CONFIDENCE_THRESHOLD = None
        self.LOW_CONFIDENCE_MARGIN = None
        self._compute_defaults()

    def _compute_defaults(self):
        """Fill values that depend on the platform or on the chosen matcher."""
        self.MATCHER = str(self.MATCHER).lower()
        if self.CONFIDENCE_THRESHOLD is None:
            self.CONFIDENCE_THRESHOLD = DEFAULT_THRESHOLDS.get(self.MATCHER, DEFAULT_THRESHOLDS["lbph"])
        if self.LOW_CONFIDENCE_MARGIN is None:
            self.LOW_CONFIDENCE_MARGIN = DEFAULT_LOW_CONFIDENCE_MARGINS.get(
                self.MATCHER, DEFAULT_LOW_CONFIDENCE_MARGINS["lbph"])
        if self.TFLITE_NUM_THREADS is None:
            self.TFLITE_NUM_THREADS = 2 if self.IS_PI else 4

        # Smaller capture on the Pi
        if self.IS_PI:
            self.CAMERA_WIDTH = min(self.CAMERA_WIDTH, 320)
            self.CAMERA_HEIGHT = min(self.CAMERA_HEIGHT, 240)
            self.TARGET_FPS = min(self.TARGET_FPS, 15)

    def validate(self):
        """Raise ValueError listing every invalid value."""
        errors = []
        if self.CAMERA_DEVICE_INDEX < 0:
            errors.append("CAMERA_DEVICE_INDEX must be non-negative")
        if self.CAMERA_WIDTH <= 0 or self.CAMERA_HEIGHT <= 0:
            errors.append("Camera resolution must have positive width and height")
        if self.TARGET_FPS <= 0:
            errors.append("TARGET_FPS must be positive")
        if self.MAX_EMPTY_READS < 1:
            errors.append("MAX_EMPTY_READS must be at least 1")
        if self.READ_BACKOFF_SECONDS < 0:
            errors.append("READ_BACKOFF_SECONDS must be non-negative")
        if self.STOP_JOIN_TIMEOUT <= 0:
            errors.append("STOP_JOIN_TIMEOUT must be positive")
        if self.MATCHER not in DEFAULT_THRESHOLDS:
            errors.append(f"MATCHER must be one of {sorted(DEFAULT_THRESHOLDS)}")
        if self.CONFIDENCE_THRESHOLD is not None and self.CONFIDENCE_THRESHOLD < 0:
            errors.append("CONFIDENCE_THRESHOLD must be non-negative")
        if self.LOW_CONFIDENCE_MARGIN is not None and self.LOW_CONFIDENCE_MARGIN < 0:
            errors.append("LOW_CONFIDENCE_MARGIN must be non-negative")
        if self.DEBOUNCE_WINDOW_MILLIS < 0:
            errors.append("DEBOUNCE_WINDOW_MILLIS must be non-negative")
        if self.MINIMUM_DWELL_MINUTES < 0:
            errors.append("MINIMUM_DWELL_MINUTES must be non-negative")
        if not 0 < self.WEB_PORT < 65536:
            errors.append("WEB_PORT must be between 1 and 65535")

        if errors:
            raise ValueError(
                "Configuration validation errors:\n" + "\n".join(f"- {e}" for e in errors)
            )

    # === PROPERTY ALIASES ===
    @property
    def confidence_threshold(self) -> float:
        return self.CONFIDENCE_THRESHOLD

    @property
    def low_confidence_margin(self) -> float:
        return self.LOW_CONFIDENCE_MARGIN

    @property
    def debounce_window_seconds(self) -> float:
        return self.DEBOUNCE_WINDOW_MILLIS / 1000.0

    @property
    def minimum_dwell_minutes(self) -> int:
        return self.MINIMUM_DWELL_MINUTES

    @property
    def target_fps(self) -> int:
        return self.TARGET_FPS

    @property
    def camera_device_index(self) -> int:
        return self.CAMERA_DEVICE_INDEX

    @property
    def web_port(self) -> int:
        return self.WEB_PORT


# === SINGLETON ===
settings = Settings()
