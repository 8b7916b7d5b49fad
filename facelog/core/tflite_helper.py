# facelog/core/tflite_helper.py
"""
Load a TFLite interpreter.
Tries tflite_runtime first (light, for the Pi), falls back to full tensorflow.
"""
import logging

from .settings import settings

logger = logging.getLogger(__name__)

# Log the chosen runtime only once
_logged_runtime = False


def _resolve_thread_count(num_threads=None) -> int:
    if num_threads is None:
        num_threads = settings.TFLITE_NUM_THREADS
    try:
        return max(1, int(num_threads))
    except (TypeError, ValueError):
        return 2 if settings.IS_PI else 4


def get_interpreter(model_path, num_threads=None):
    """
    Create a TFLite Interpreter for `model_path`.

    Args:
        model_path: path to the .tflite file
        num_threads: inference threads (default: settings.TFLITE_NUM_THREADS)

    Raises:
        ImportError: neither tflite_runtime nor tensorflow is installed
    """
    global _logged_runtime

    num_threads = _resolve_thread_count(num_threads)

    try:
        from tflite_runtime.interpreter import Interpreter
        if not _logged_runtime:
            logger.info(f"[TFLite] Using tflite_runtime (threads={num_threads})")
            _logged_runtime = True
        return Interpreter(model_path=model_path, num_threads=num_threads)
    except ImportError:
        pass

    try:
        import tensorflow as tf
        if not _logged_runtime:
            logger.info(f"[TFLite] Using tensorflow.lite (threads={num_threads})")
            _logged_runtime = True
        return tf.lite.Interpreter(model_path=model_path, num_threads=num_threads)
    except ImportError:
        pass

    raise ImportError(
        "No TFLite interpreter found!\n"
        "Install one of:\n"
        "  - pip install tflite-runtime  (light, for the Pi)\n"
        "  - pip install tensorflow       (full, for a PC)"
    )
