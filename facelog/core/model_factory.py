# facelog/core/model_factory.py
"""
Factory for the face localizer and the identity matcher.

Usage:
    from facelog.core.model_factory import create_localizer, create_matcher

    localizer = create_localizer()
    matcher = create_matcher()     # loads the saved model if there is one
"""
import os
import logging

from .settings import settings as default_settings

logger = logging.getLogger(__name__)


def create_localizer():
    """
    Create the Haar cascade face localizer.

    Returns:
        HaarFaceLocalizer instance
    """
    from ..detect.detect import HaarFaceLocalizer
    return HaarFaceLocalizer()


def matcher_model_path(settings=None) -> str:
    """Where the configured matcher is saved and loaded."""
    settings = settings or default_settings
    if settings.MATCHER == "embedding":
        return settings.EMBEDDING_DB_PATH
    return settings.MODEL_PATH


def create_matcher(settings=None, load: bool = True):
    """
    Create the identity matcher selected by settings.MATCHER.

    Args:
        settings: Settings (default: module singleton)
        load: load the saved model/database if the file exists

    Returns:
        LBPHIdentityMatcher or EmbeddingIdentityMatcher instance
    """
    from ..recognition.matcher import (
        EmbeddingIdentityMatcher,
        LBPHIdentityMatcher,
        TFLiteEmbedder,
    )

    settings = settings or default_settings
    if settings.MATCHER == "embedding":
        embedder = TFLiteEmbedder(settings.EMBEDDING_MODEL_PATH, settings.TFLITE_NUM_THREADS)
        matcher = EmbeddingIdentityMatcher(embedder)
    else:
        matcher = LBPHIdentityMatcher()

    path = matcher_model_path(settings)
    if load and os.path.exists(path):
        matcher.load(path)
    elif load:
        logger.warning(f"[Matcher] No saved model at {path}, train with --train")

    logger.info(f"[Matcher] Type: {settings.MATCHER}")
    return matcher
