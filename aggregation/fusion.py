from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional

from shared.models import UNKNOWN_LABEL, ClassificationResult

MIN_SENSOR_WEIGHT = 0.0
MAX_SENSOR_WEIGHT = 2.0


class FusionMethod(str, Enum):
    WEIGHTED_AVERAGE = "weighted_average"
    MAX_CONFIDENCE = "max_confidence"
    VOTING = "voting"


@dataclass(frozen=True)
class FusedResult:
    label: str
    confidence: float
    method: FusionMethod
    sensor_results: Mapping[str, ClassificationResult]

    def __post_init__(self) -> None:
        object.__setattr__(self, "sensor_results", dict(self.sensor_results))


def clamp_weight(weight: float) -> float:
    return min(MAX_SENSOR_WEIGHT, max(MIN_SENSOR_WEIGHT, float(weight)))


def _weights(results: Mapping[str, ClassificationResult], weights: Optional[Mapping[str, float]]) -> Dict[str, float]:
    weights = weights or {}
    return {sensor: clamp_weight(weights.get(sensor, 1.0)) for sensor in results}


def _weighted_average(results: Mapping[str, ClassificationResult], weights: Dict[str, float]) -> FusedResult:
    fused: Dict[str, float] = {}
    total = 0.0
    for sensor, result in results.items():
        w = weights[sensor] * result.confidence
        total += w
        for label, prob in result.probabilities.items():
            fused[label] = fused.get(label, 0.0) + float(prob) * w
    if total > 0:
        fused = {label: value / total for label, value in fused.items()}
    if not fused:
        return FusedResult(UNKNOWN_LABEL, 0.0, FusionMethod.WEIGHTED_AVERAGE, results)
    label = max(fused, key=fused.__getitem__)
    return FusedResult(label, fused[label], FusionMethod.WEIGHTED_AVERAGE, results)


def _max_confidence(results: Mapping[str, ClassificationResult], weights: Dict[str, float]) -> FusedResult:
    best = max(results.values(), key=lambda r: r.confidence)
    return FusedResult(best.label, best.confidence, FusionMethod.MAX_CONFIDENCE, results)


def _voting(results: Mapping[str, ClassificationResult], weights: Dict[str, float]) -> FusedResult:
    votes: Dict[str, float] = {}
    for sensor, result in results.items():
        votes[result.label] = votes.get(result.label, 0.0) + weights[sensor]
    total = sum(votes.values())
    label = max(votes, key=votes.__getitem__)
    confidence = votes[label] / total if total > 0 else 0.0
    return FusedResult(label, confidence, FusionMethod.VOTING, results)


_FUSERS = {
    FusionMethod.WEIGHTED_AVERAGE: _weighted_average,
    FusionMethod.MAX_CONFIDENCE: _max_confidence,
    FusionMethod.VOTING: _voting,
}


def fuse(
    results: Mapping[str, ClassificationResult],
    method: FusionMethod = FusionMethod.WEIGHTED_AVERAGE,
    weights: Optional[Mapping[str, float]] = None,
) -> Optional[FusedResult]:
    """
    Late fusion of per-sensor results keyed by sensor name.

    Sensor weights default to 1.0 and are clamped to [0, 2]. Returns None
    when no sensor produced a result.
    """
    if not results:
        return None
    method = FusionMethod(method)
    return _FUSERS[method](results, _weights(results, weights))


__all__ = ["FusedResult", "FusionMethod", "clamp_weight", "fuse"]
