from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

FEATURE_COUNT = 24
MOTION_AXES: Tuple[str, ...] = ("ax", "ay", "az", "gx", "gy", "gz")
UNKNOWN_LABEL = "unknown"


def _freeze_array(array: Any, *, ndim: int | None = None, dtype: Any = np.float32) -> np.ndarray:
    """Return a read-only, C-contiguous copy of `array`, validating dimensions."""
    arr = np.array(array, dtype=dtype, copy=True, order="C")
    if ndim is not None and arr.ndim != ndim:
        raise ValueError(f"array must be {ndim}D, got {arr.ndim}D")
    arr.setflags(write=False)
    return arr


def _now_ms() -> int:
    return int(time.time() * 1000)


# ----------------------------
# Raw samples
# ----------------------------

@dataclass(frozen=True)
class MotionSample:
    """One accelerometer + gyroscope reading (ax, ay, az, gx, gy, gz)."""

    values: np.ndarray
    timestamp_ns: int

    def __post_init__(self) -> None:
        values = _freeze_array(self.values, ndim=1)
        if values.shape[0] != len(MOTION_AXES):
            raise ValueError(f"values must hold {len(MOTION_AXES)} axes, got {values.shape[0]}")
        if self.timestamp_ns < 0:
            raise ValueError("timestamp_ns must be non-negative")
        object.__setattr__(self, "values", values)

    @classmethod
    def from_axes(
        cls,
        ax: float,
        ay: float,
        az: float,
        gx: float,
        gy: float,
        gz: float,
        timestamp_ns: int,
    ) -> "MotionSample":
        return cls(values=np.array([ax, ay, az, gx, gy, gz], dtype=np.float32), timestamp_ns=timestamp_ns)

    @property
    def magnitude(self) -> float:
        acc = self.values[:3].astype(np.float64)
        return float(np.sqrt(np.dot(acc, acc)))


class TouchAction(str, Enum):
    DOWN = "down"
    MOVE = "move"
    UP = "up"
    POINTER_DOWN = "pointer_down"
    POINTER_UP = "pointer_up"
    CANCEL = "cancel"


@dataclass(frozen=True)
class TouchSample:
    """A single pointer event; coordinates are in pixels."""

    x: float
    y: float
    pressure: float
    size: float
    action: TouchAction
    finger_id: int
    timestamp_ms: int
    finger_count: int = 1
    screen_width: int = 0
    screen_height: int = 0

    def __post_init__(self) -> None:
        if self.finger_id < 0:
            raise ValueError("finger_id must be non-negative")
        if self.timestamp_ms < 0:
            raise ValueError("timestamp_ms must be non-negative")
        if self.screen_width < 0 or self.screen_height < 0:
            raise ValueError("screen dimensions must be non-negative")
        if not isinstance(self.action, TouchAction):
            object.__setattr__(self, "action", TouchAction(self.action))

    @property
    def normalized_x(self) -> float:
        return self.x / self.screen_width if self.screen_width > 0 else self.x

    @property
    def normalized_y(self) -> float:
        return self.y / self.screen_height if self.screen_height > 0 else self.y

    @property
    def zone(self) -> int:
        """Index into the 3x3 screen grid, row-major from the top-left."""
        return _grid_cell(self.normalized_y) * 3 + _grid_cell(self.normalized_x)


def _grid_cell(value: float) -> int:
    if value < 0.33:
        return 0
    if value < 0.66:
        return 1
    return 2


Sample = Union[MotionSample, TouchSample]


@dataclass(frozen=True)
class Window:
    """Fixed-length, ordered run of samples forming one classification unit."""

    samples: Tuple[Sample, ...]
    label: Optional[str] = None
    session_id: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "samples", tuple(self.samples))

    def __len__(self) -> int:
        return len(self.samples)

    @property
    def duration_ms(self) -> float:
        if len(self.samples) < 2:
            return 0.0
        first, last = self.samples[0], self.samples[-1]
        if isinstance(first, TouchSample) and isinstance(last, TouchSample):
            return float(last.timestamp_ms - first.timestamp_ms)
        return (last.timestamp_ns - first.timestamp_ns) / 1e6  # type: ignore[union-attr]


# ----------------------------
# Normalization
# ----------------------------

NORMALIZATION_EPSILON = 1e-8


@dataclass(frozen=True)
class NormalizationParams:
    """Per-feature z-score parameters; stds are guarded against zero and NaN."""

    means: np.ndarray
    stds: np.ndarray

    def __post_init__(self) -> None:
        means = np.array(self.means, dtype=np.float32, copy=True)
        stds = np.array(self.stds, dtype=np.float32, copy=True)
        if means.ndim != 1 or stds.ndim != 1:
            raise ValueError("means and stds must be 1D")
        if means.shape != stds.shape:
            raise ValueError("means and stds must have the same length")
        means[~np.isfinite(means)] = 0.0
        bad = ~np.isfinite(stds) | (np.abs(stds) < NORMALIZATION_EPSILON)
        stds[bad] = 1.0
        means.setflags(write=False)
        stds.setflags(write=False)
        object.__setattr__(self, "means", means)
        object.__setattr__(self, "stds", stds)

    @classmethod
    def identity(cls, size: int = FEATURE_COUNT) -> "NormalizationParams":
        return cls(means=np.zeros(size, dtype=np.float32), stds=np.ones(size, dtype=np.float32))

    @property
    def size(self) -> int:
        return int(self.means.shape[0])

    def apply(self, features: np.ndarray) -> np.ndarray:
        return ((np.asarray(features, dtype=np.float32) - self.means) / self.stds).astype(np.float32)


# ----------------------------
# Classification outputs
# ----------------------------

@dataclass(frozen=True)
class ClassificationResult:
    """Outcome of one inference on one window."""

    label: str
    confidence: float
    probabilities: Mapping[str, float]
    class_index: int = -1
    latency_ms: float = 0.0
    timestamp_ms: int = field(default_factory=_now_ms)
    source: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "probabilities", dict(self.probabilities))

    def is_high_confidence(self, threshold: float = 0.7) -> bool:
        return self.confidence >= threshold

    def top_n(self, n: int) -> list[tuple[str, float]]:
        ranked = sorted(self.probabilities.items(), key=lambda item: item[1], reverse=True)
        return ranked[: max(0, n)]


class AggregationStrategy(str, Enum):
    MAJORITY_VOTE = "majority_vote"
    WEIGHTED_AVERAGE = "weighted_average"
    RECENT_WEIGHTED = "recent_weighted"
    CONFIDENCE_THRESHOLD = "confidence_threshold"


@dataclass(frozen=True)
class AggregatedResult:
    """Consensus over the recent classification history."""

    label: str
    confidence: float
    strategy: AggregationStrategy
    distribution: Mapping[str, float]
    sample_count: int
    timestamp_ms: int = field(default_factory=_now_ms)

    def __post_init__(self) -> None:
        if self.sample_count < 0:
            raise ValueError("sample_count must be non-negative")
        object.__setattr__(self, "distribution", dict(self.distribution))

    @classmethod
    def empty(cls, strategy: AggregationStrategy = AggregationStrategy.MAJORITY_VOTE) -> "AggregatedResult":
        return cls(label=UNKNOWN_LABEL, confidence=0.0, strategy=strategy, distribution={}, sample_count=0)

    def is_valid(self) -> bool:
        return self.sample_count > 0 and self.confidence > 0.0


def labels_tuple(labels: Sequence[str]) -> Tuple[str, ...]:
    out = tuple(str(label) for label in labels)
    if len(set(out)) != len(out):
        raise ValueError("labels must be unique")
    for label in out:
        if "," in label or "\n" in label:
            raise ValueError(f"label {label!r} must not contain commas or newlines")
    return out


__all__ = [
    "FEATURE_COUNT",
    "MOTION_AXES",
    "UNKNOWN_LABEL",
    "MotionSample",
    "TouchAction",
    "TouchSample",
    "Sample",
    "Window",
    "NormalizationParams",
    "NORMALIZATION_EPSILON",
    "ClassificationResult",
    "AggregationStrategy",
    "AggregatedResult",
    "labels_tuple",
]
