from __future__ import annotations

from typing import Dict, Optional, Protocol, Sequence, Type

import numpy as np

from shared.models import FEATURE_COUNT, Window


class FeatureExtractor(Protocol):
    name: str

    @property
    def feature_names(self) -> Sequence[str]:
        ...

    def extract(self, window: Window, duration_ms: Optional[float] = None) -> np.ndarray:
        """Return a finite float32 vector of FEATURE_COUNT values for `window`."""
        ...


EXTRACTOR_REGISTRY: Dict[str, Type[FeatureExtractor]] = {}


def register_extractor(cls: Type[FeatureExtractor]) -> Type[FeatureExtractor]:
    if not hasattr(cls, "name"):
        raise ValueError(f"Extractor {cls} must have a 'name' attribute")
    EXTRACTOR_REGISTRY[cls.name] = cls
    return cls


def create_extractor(name: str) -> FeatureExtractor:
    try:
        cls = EXTRACTOR_REGISTRY[name]
    except KeyError:
        known = ", ".join(sorted(EXTRACTOR_REGISTRY)) or "none"
        raise ValueError(f"Unknown extractor {name!r} (registered: {known})") from None
    return cls()


def finite_vector(values: np.ndarray) -> np.ndarray:
    """Cast to float32 and replace NaN/Inf with 0."""
    out = np.asarray(values, dtype=np.float32).copy()
    out[~np.isfinite(out)] = 0.0
    if out.shape != (FEATURE_COUNT,):
        raise ValueError(f"feature vector must have {FEATURE_COUNT} values, got {out.shape}")
    return out


def population_std(values: np.ndarray) -> float:
    if values.size < 2:
        return 0.0
    return float(np.std(values))


def safe_mean(values: np.ndarray) -> float:
    if values.size == 0:
        return 0.0
    return float(np.mean(values))


__all__ = [
    "EXTRACTOR_REGISTRY",
    "FeatureExtractor",
    "create_extractor",
    "finite_vector",
    "population_std",
    "register_extractor",
    "safe_mean",
]
