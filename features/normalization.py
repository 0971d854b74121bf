from __future__ import annotations

from typing import Sequence, Tuple

import numpy as np

from shared.models import NORMALIZATION_EPSILON, NormalizationParams


def _as_matrix(vectors: Sequence[np.ndarray] | np.ndarray) -> np.ndarray:
    data = np.asarray(vectors, dtype=np.float64)
    if data.ndim != 2 or data.shape[0] == 0:
        raise ValueError("expected a non-empty (n_samples, n_features) collection")
    return data


def compute_normalization(vectors: Sequence[np.ndarray] | np.ndarray) -> NormalizationParams:
    """Fit z-score parameters; degenerate stds are replaced by 1.0."""
    data = _as_matrix(vectors)
    means = data.mean(axis=0)
    stds = data.std(axis=0)
    stds = np.where(~np.isfinite(stds) | (stds < NORMALIZATION_EPSILON), 1.0, stds)
    return NormalizationParams(means=means, stds=stds)


def normalize(vector: np.ndarray, params: NormalizationParams) -> np.ndarray:
    arr = np.asarray(vector, dtype=np.float32)
    if arr.shape[-1] != params.size:
        raise ValueError(f"expected {params.size} features, got {arr.shape[-1]}")
    return params.apply(arr)


def compute_min_max(vectors: Sequence[np.ndarray] | np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Per-feature (mins, maxs); a degenerate range becomes [0, 1]."""
    data = _as_matrix(vectors)
    mins = data.min(axis=0)
    maxs = data.max(axis=0)
    degenerate = mins == maxs
    mins[degenerate] = 0.0
    maxs[degenerate] = 1.0
    return mins.astype(np.float32), maxs.astype(np.float32)


def min_max_normalize(vector: np.ndarray, mins: np.ndarray, maxs: np.ndarray) -> np.ndarray:
    values = np.asarray(vector, dtype=np.float32)
    mins = np.asarray(mins, dtype=np.float32)
    maxs = np.asarray(maxs, dtype=np.float32)
    span = maxs - mins
    out = np.full(values.shape, 0.5, dtype=np.float32)
    ok = span > 0
    out[ok] = np.clip((values[ok] - mins[ok]) / span[ok], 0.0, 1.0)
    return out


__all__ = [
    "compute_min_max",
    "compute_normalization",
    "min_max_normalize",
    "normalize",
]
