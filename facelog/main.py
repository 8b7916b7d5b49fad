# facelog/main.py
"""
facelog - Main Entry Point.

Connects the modules:
- core/: settings, camera, model factory
- recognition/: matcher, decision engine, training
- processing/: attendance clock, dispatcher, pipeline
- data/: SQLite store, roster import
- web/: read-only dashboard API

Usage:
    python -m facelog.main                         # Run with defaults
    python -m facelog.main --train                 # Train from faces/ and exit
    python -m facelog.main --enroll 7              # Capture face samples for person 7
    python -m facelog.main --roster roster.json    # Import persons/schedules and exit
    python -m facelog.main --threshold 70 --dwell-minutes 15 --no-web
"""
import sys
import time
import logging
import argparse
import threading
from typing import List, Optional

import cv2

from .core import settings
from .core.camera import SourceStatus, create_frame_source
from .core.model_factory import create_localizer, create_matcher, matcher_model_path
from .data.database import SQLiteAttendanceStore
from .data.models import EventType
from .data.roster import load_roster
from .errors import FaceLogError
from .processing import AttendanceClock, AttendancePipeline, OutcomeStatus
from .recognition import RecognitionEngine, save_face_sample, train_from_directory

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging(log_file: Optional[str] = None, verbose: bool = False):
    """Console logging, plus a UTF-8 log file if configured."""
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True
    )

    # One OpenCV thread on the Pi, the capture thread is already busy
    if settings.IS_PI:
        cv2.setNumThreads(1)


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='facelog - Face Recognition Attendance',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m facelog.main                      # Run with defaults
  python -m facelog.main --threshold 70       # Stricter LBPH threshold
  python -m facelog.main --train              # Train and exit
        """
    )

    # Recognition
    parser.add_argument(
        '--threshold', '-t',
        type=float,
        metavar='VALUE',
        help=f'Distance threshold, lower is stricter (default: {settings.CONFIDENCE_THRESHOLD})'
    )
    parser.add_argument(
        '--debounce-ms',
        type=int,
        metavar='MS',
        help=f'Debounce window per person (default: {settings.DEBOUNCE_WINDOW_MILLIS}ms)'
    )
    parser.add_argument(
        '--matcher',
        choices=['lbph', 'embedding'],
        help=f'Identity matcher (default: {settings.MATCHER})'
    )
    parser.add_argument(
        '--model',
        metavar='PATH',
        help=f'Saved matcher model (default: {settings.MODEL_PATH})'
    )
    parser.add_argument(
        '--faces-dir',
        metavar='DIR',
        help=f'Face samples directory (default: {settings.FACES_DIR})'
    )

    # Attendance
    parser.add_argument(
        '--dwell-minutes',
        type=int,
        metavar='MIN',
        help=f'Minimum time between Time In and Time Out (default: {settings.MINIMUM_DWELL_MINUTES})'
    )
    parser.add_argument(
        '--source-id',
        metavar='ID',
        help=f'Camera id written on events (default: {settings.SOURCE_ID})'
    )
    parser.add_argument(
        '--db',
        metavar='PATH',
        help=f'SQLite database (default: {settings.DB_PATH})'
    )

    # Camera
    parser.add_argument(
        '--camera', '-c',
        type=int,
        metavar='ID',
        help=f'Camera device ID (default: {settings.CAMERA_DEVICE_INDEX})'
    )
    parser.add_argument(
        '--resolution', '-r',
        type=str,
        metavar='WxH',
        help=f'Camera resolution (default: {settings.CAMERA_WIDTH}x{settings.CAMERA_HEIGHT})'
    )
    parser.add_argument(
        '--fps',
        type=int,
        metavar='FPS',
        help=f'Target capture rate (default: {settings.TARGET_FPS})'
    )

    # Web server
    parser.add_argument(
        '--no-web',
        action='store_true',
        help='Disable web server'
    )
    parser.add_argument(
        '--port', '-p',
        type=int,
        metavar='PORT',
        help=f'Web server port (default: {settings.WEB_PORT})'
    )

    # One-shot commands
    parser.add_argument(
        '--train',
        action='store_true',
        help='Train the matcher from the faces directory and exit'
    )
    parser.add_argument(
        '--enroll',
        type=int,
        metavar='PERSON_ID',
        help='Capture face samples for a person and exit'
    )
    parser.add_argument(
        '--samples',
        type=int,
        default=20,
        metavar='N',
        help='Samples to capture with --enroll (default: 20)'
    )
    parser.add_argument(
        '--roster',
        metavar='PATH',
        help='Import persons and schedules from a JSON roster and exit'
    )

    # Debug
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Verbose logging'
    )

    return parser.parse_args(argv)


def apply_arguments(args, config=None) -> List[str]:
    """
    Apply command line arguments to settings.

    Raises:
        ValueError: invalid resolution or an override that fails validation
    """
    config = config or settings
    changes = []

    if args.matcher:
        config.set_matcher(args.matcher)
        changes.append(f"Matcher: {args.matcher}")
    if args.threshold is not None:
        config.CONFIDENCE_THRESHOLD = args.threshold
        changes.append(f"Threshold: {args.threshold}")
    if args.debounce_ms is not None:
        config.DEBOUNCE_WINDOW_MILLIS = args.debounce_ms
        changes.append(f"Debounce: {args.debounce_ms}ms")
    if args.model:
        if config.MATCHER == "embedding":
            config.EMBEDDING_DB_PATH = args.model
        else:
            config.MODEL_PATH = args.model
        changes.append(f"Model: {args.model}")
    if args.faces_dir:
        config.FACES_DIR = args.faces_dir
        changes.append(f"Faces: {args.faces_dir}")

    if args.dwell_minutes is not None:
        config.MINIMUM_DWELL_MINUTES = args.dwell_minutes
        changes.append(f"Dwell: {args.dwell_minutes}min")
    if args.source_id:
        config.SOURCE_ID = args.source_id
        changes.append(f"Source: {args.source_id}")
    if args.db:
        config.DB_PATH = args.db
        changes.append(f"Database: {args.db}")

    if args.camera is not None:
        config.CAMERA_DEVICE_INDEX = args.camera
        changes.append(f"Camera: {args.camera}")
    if args.resolution:
        try:
            w, h = map(int, args.resolution.lower().split('x'))
        except ValueError:
            raise ValueError(f"Invalid resolution format: {args.resolution} (use WxH, e.g., 640x480)") from None
        config.CAMERA_WIDTH = w
        config.CAMERA_HEIGHT = h
        changes.append(f"Resolution: {w}x{h}")
    if args.fps is not None:
        config.TARGET_FPS = args.fps
        changes.append(f"FPS: {args.fps}")

    if args.no_web:
        config.ENABLE_WEB_SERVER = False
        changes.append("Web: disabled")
    if args.port:
        config.WEB_PORT = args.port
        changes.append(f"Port: {args.port}")

    if args.verbose:
        changes.append("Verbose: ON")

    config.validate()
    return changes


def run_training() -> int:
    """Train the configured matcher from FACES_DIR and save it."""
    matcher = create_matcher(settings, load=False)
    count = train_from_directory(matcher, settings.FACES_DIR)
    if count:
        matcher.save(matcher_model_path(settings))
    return count


def run_enrollment(person_id: int, samples: int) -> int:
    """Capture up to `samples` face samples for a person from the camera."""
    localizer = create_localizer()
    source = create_frame_source(settings)
    saved = 0

    logger.info(f"📸 Enrolling person {person_id}: look at the camera ({samples} samples)")
    source.start()
    try:
        while saved < samples:
            if source.status is SourceStatus.ERROR:
                logger.error(source.last_error)
                break
            frame = source.latest_frame()
            if frame is not None and save_face_sample(frame, person_id, settings.FACES_DIR, localizer):
                saved += 1
            time.sleep(0.3)
    except KeyboardInterrupt:
        logger.info("Enrollment interrupted")
    finally:
        source.stop()

    logger.info(f"Saved {saved} samples, run with --train to update the model")
    return saved


def start_web_server(store, source, pipeline):
    """Run the web server in a daemon thread."""
    from .web.server import create_app, run_server

    app = create_app(store, source, pipeline)
    thread = threading.Thread(
        target=run_server,
        args=(app,),
        kwargs={'port': settings.WEB_PORT},
        name="web",
        daemon=True
    )
    thread.start()
    return thread


def _log_outcome(outcome):
    if outcome.status is OutcomeStatus.LOGGED:
        symbol = "🟢" if outcome.event.event_type is EventType.TIME_IN else "🔴"
        logger.info(f"{symbol} {outcome.message} (person {outcome.person_id})")
    elif outcome.status is OutcomeStatus.ERROR:
        logger.error(f"❌ Person {outcome.person_id}: {outcome.message}")
    else:
        logger.info(f"⏸️ Person {outcome.person_id}: {outcome.message}")


def print_startup_info(store):
    persons = store.list_persons(active_only=True)
    logger.info("=" * 50)
    logger.info("🕐 FACELOG ATTENDANCE")
    logger.info("=" * 50)
    logger.info(f"👥 Persons: {len(persons)}")
    logger.info(f"🧠 Matcher: {settings.MATCHER} (threshold={settings.CONFIDENCE_THRESHOLD})")
    logger.info(f"⏱️ Debounce: {settings.DEBOUNCE_WINDOW_MILLIS}ms, dwell: {settings.MINIMUM_DWELL_MINUTES}min")
    logger.info(f"📹 Camera {settings.CAMERA_DEVICE_INDEX}: "
                f"{settings.CAMERA_WIDTH}x{settings.CAMERA_HEIGHT} @ {settings.TARGET_FPS}fps")
    if settings.ENABLE_WEB_SERVER:
        logger.info(f"🌐 Web: port {settings.WEB_PORT}")
    logger.info("⌨️  Ctrl+C to quit")
    logger.info("=" * 50)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""

    # === 0. ARGUMENTS & LOGGING ===
    args = parse_arguments(argv)
    try:
        changes = apply_arguments(args)
    except ValueError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2
    setup_logging(settings.LOG_FILE, args.verbose)
    for change in changes:
        logger.info(f"🔧 Override: {change}")

    try:
        # === 1. DATABASE ===
        store = SQLiteAttendanceStore(settings.DB_PATH)

        # === 2. ONE-SHOT COMMANDS ===
        if args.roster:
            load_roster(store, args.roster)
            return 0
        if args.train:
            return 0 if run_training() else 1
        if args.enroll is not None:
            return 0 if run_enrollment(args.enroll, args.samples) else 1

        # === 3. MODELS ===
        localizer = create_localizer()
        matcher = create_matcher(settings)
    except (FaceLogError, ImportError, OSError, ValueError) as e:
        logger.error(f"Initialization failed: {e}")
        return 1

    # === 4. COMPONENTS ===
    engine = RecognitionEngine(
        localizer,
        matcher,
        store.find_person,
        confidence_threshold=settings.confidence_threshold,
        debounce_window=settings.debounce_window_seconds,
        low_confidence_margin=settings.low_confidence_margin
    )
    clock = AttendanceClock(
        store,
        minimum_dwell_minutes=settings.minimum_dwell_minutes,
        source_id=settings.SOURCE_ID
    )
    clock.subscribe(_log_outcome)
    source = create_frame_source(settings)
    pipeline = AttendancePipeline(source, engine, clock)

    print_startup_info(store)

    # === 5. WEB SERVER (background) ===
    if settings.ENABLE_WEB_SERVER:
        start_web_server(store, source, pipeline)

    # === 6. MAIN LOOP ===
    pipeline.start()
    last_status_time = 0.0
    try:
        while True:
            time.sleep(1.0)
            if source.status is SourceStatus.ERROR:
                logger.error("Camera stopped, exiting")
                return 1
            if time.time() - last_status_time > 300:
                logger.info(f"♻️ Running... {source.fps:.1f} fps, "
                            f"{source.frames_published} frames")
                last_status_time = time.time()
    except KeyboardInterrupt:
        logger.info("🛑 Stopped (Ctrl+C)")
    finally:
        pipeline.stop()
        logger.info("👋 Bye!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
