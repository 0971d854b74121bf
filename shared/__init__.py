"""
Shared data structures used by the feature, learning, and aggregation layers.
"""

from .errors import EngineError, ErrorKind
from .models import (
    FEATURE_COUNT,
    AggregatedResult,
    AggregationStrategy,
    ClassificationResult,
    MotionSample,
    NormalizationParams,
    TouchAction,
    TouchSample,
    Window,
)
from .ring_buffer import RingBuffer, RingBufferIndexError, SampleRingBuffer

__all__ = [
    "FEATURE_COUNT",
    "AggregatedResult",
    "AggregationStrategy",
    "ClassificationResult",
    "EngineError",
    "ErrorKind",
    "MotionSample",
    "NormalizationParams",
    "RingBuffer",
    "RingBufferIndexError",
    "SampleRingBuffer",
    "TouchAction",
    "TouchSample",
    "Window",
]
