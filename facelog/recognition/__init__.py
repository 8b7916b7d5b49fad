"""
Face recognition.

- matcher: LBPH (default) and embedding identity matchers
- engine: threshold + debounce decision engine
- trainer: training from faces/<person_id>/ and sample enrollment
"""

from .matcher import (
    FACE_SIZE,
    preprocess_face,
    LBPHIdentityMatcher,
    EmbeddingIdentityMatcher,
    TFLiteEmbedder,
)
from .engine import RecognitionEngine, RecognitionResult, RecognitionStatus, DebounceCache
from .trainer import load_training_set, train_from_directory, save_face_sample

__all__ = [
    'FACE_SIZE',
    'preprocess_face',
    'LBPHIdentityMatcher',
    'EmbeddingIdentityMatcher',
    'TFLiteEmbedder',
    'RecognitionEngine',
    'RecognitionResult',
    'RecognitionStatus',
    'DebounceCache',
    'load_training_set',
    'train_from_directory',
    'save_face_sample',
]
