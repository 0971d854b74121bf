from .base import (
    EXTRACTOR_REGISTRY,
    FeatureExtractor,
    create_extractor,
    register_extractor,
)
from .motion import MotionFeatureExtractor
from .normalization import compute_min_max, compute_normalization, min_max_normalize, normalize
from .touch import GestureKind, TouchFeatureExtractor, build_gestures
from .windowing import StreamWindower, build_training_windows, sliding_windows

__all__ = [
    "EXTRACTOR_REGISTRY",
    "FeatureExtractor",
    "GestureKind",
    "MotionFeatureExtractor",
    "StreamWindower",
    "TouchFeatureExtractor",
    "build_gestures",
    "build_training_windows",
    "compute_min_max",
    "compute_normalization",
    "create_extractor",
    "min_max_normalize",
    "normalize",
    "register_extractor",
    "sliding_windows",
]
