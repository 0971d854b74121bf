from __future__ import annotations

from typing import Optional, Sequence, Tuple

import numpy as np

from shared.models import FEATURE_COUNT, MOTION_AXES, MotionSample, Window

from .base import finite_vector, register_extractor

STATS: Tuple[str, ...] = ("mean", "std", "min", "max")
MOTION_FEATURE_NAMES: Tuple[str, ...] = tuple(f"{axis}_{stat}" for axis in MOTION_AXES for stat in STATS)


def motion_features(values: np.ndarray) -> np.ndarray:
    """
    Compute per-axis mean/std/min/max for an (n, 6) array of samples.

    Index layout is ``axis * 4 + k`` with k in (mean, std, min, max). A zero or
    NaN std is floored to 1.0 so downstream division stays well defined.
    """
    data = np.asarray(values, dtype=np.float64)
    features = np.zeros(FEATURE_COUNT, dtype=np.float64)
    if data.ndim != 2 or data.shape[0] == 0:
        return finite_vector(features)
    if data.shape[1] != len(MOTION_AXES):
        raise ValueError(f"expected {len(MOTION_AXES)} axes, got {data.shape[1]}")

    with np.errstate(invalid="ignore", over="ignore"):
        means = data.mean(axis=0)
        stds = data.std(axis=0)
    stds = np.where(np.isnan(stds) | (stds == 0.0), 1.0, stds)

    features[0::4] = means
    features[1::4] = stds
    features[2::4] = data.min(axis=0)
    features[3::4] = data.max(axis=0)
    return finite_vector(features)


@register_extractor
class MotionFeatureExtractor:
    name = "motion"

    @property
    def feature_names(self) -> Sequence[str]:
        return MOTION_FEATURE_NAMES

    def extract(self, window: Window, duration_ms: Optional[float] = None) -> np.ndarray:
        samples = [s for s in window.samples if isinstance(s, MotionSample)]
        if not samples:
            return np.zeros(FEATURE_COUNT, dtype=np.float32)
        return motion_features(np.stack([s.values for s in samples]))

    def extract_array(self, values: np.ndarray) -> np.ndarray:
        """Extract straight from a (n, 6) ring-buffer snapshot."""
        return motion_features(values)


__all__ = ["MOTION_FEATURE_NAMES", "MotionFeatureExtractor", "motion_features"]
