from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Sequence, Tuple

from shared.models import (
    UNKNOWN_LABEL,
    AggregatedResult,
    AggregationStrategy,
    ClassificationResult,
)


@dataclass(frozen=True)
class AggregatorConfig:
    history_size: int = 10
    strategy: AggregationStrategy = AggregationStrategy.RECENT_WEIGHTED
    confidence_threshold: float = 0.6
    stability_threshold: int = 3
    min_samples_for_aggregation: int = 3
    recency_decay: float = 0.8

    def __post_init__(self) -> None:
        if self.history_size <= 0:
            raise ValueError("history_size must be positive")
        if self.stability_threshold <= 0:
            raise ValueError("stability_threshold must be positive")
        if self.min_samples_for_aggregation < 0:
            raise ValueError("min_samples_for_aggregation must be non-negative")
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ValueError("confidence_threshold must be within [0, 1]")
        if not 0.0 < self.recency_decay <= 1.0:
            raise ValueError("recency_decay must be within (0, 1]")
        if not isinstance(self.strategy, AggregationStrategy):
            object.__setattr__(self, "strategy", AggregationStrategy(self.strategy))


History = Sequence[ClassificationResult]
StrategyFn = Callable[[History, AggregatorConfig], AggregatedResult]


def _argmax_first(scores: Mapping[str, float]) -> Tuple[str, float]:
    """Highest score; ties go to the key inserted first."""
    best_label, best_score = UNKNOWN_LABEL, 0.0
    first = True
    for label, score in scores.items():
        if first or score > best_score:
            best_label, best_score = label, score
            first = False
    return best_label, best_score


def _counts(labels: Sequence[str]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for label in labels:
        counts[label] = counts.get(label, 0) + 1
    return counts


def _weighted_distribution(history: History, weights: Sequence[float]) -> Dict[str, float]:
    scores: Dict[str, float] = {}
    total = 0.0
    for result, weight in zip(history, weights):
        total += weight
        # insertion order == first-seen order for tie breaks
        scores.setdefault(result.label, 0.0)
        for label, prob in result.probabilities.items():
            scores[label] = scores.get(label, 0.0) + float(prob) * weight
    if total > 0:
        scores = {label: value / total for label, value in scores.items()}
    return scores


def majority_vote(history: History, config: AggregatorConfig) -> AggregatedResult:
    if not history:
        return AggregatedResult.empty(AggregationStrategy.MAJORITY_VOTE)
    n = len(history)
    counts = _counts([r.label for r in history])
    label, count = _argmax_first(counts)
    return AggregatedResult(
        label=label,
        confidence=count / n,
        strategy=AggregationStrategy.MAJORITY_VOTE,
        distribution={k: v / n for k, v in counts.items()},
        sample_count=n,
    )


def weighted_average(history: History, config: AggregatorConfig) -> AggregatedResult:
    if not history:
        return AggregatedResult.empty(AggregationStrategy.WEIGHTED_AVERAGE)
    scores = _weighted_distribution(history, [r.confidence for r in history])
    label, confidence = _argmax_first(scores)
    return AggregatedResult(
        label=label,
        confidence=confidence,
        strategy=AggregationStrategy.WEIGHTED_AVERAGE,
        distribution=scores,
        sample_count=len(history),
    )


def recent_weighted(history: History, config: AggregatorConfig) -> AggregatedResult:
    if not history:
        return AggregatedResult.empty(AggregationStrategy.RECENT_WEIGHTED)
    n = len(history)
    weights = [r.confidence * config.recency_decay ** (n - 1 - i) for i, r in enumerate(history)]
    scores = _weighted_distribution(history, weights)
    label, confidence = _argmax_first(scores)
    return AggregatedResult(
        label=label,
        confidence=confidence,
        strategy=AggregationStrategy.RECENT_WEIGHTED,
        distribution=scores,
        sample_count=n,
    )


def confidence_threshold(history: History, config: AggregatorConfig) -> AggregatedResult:
    if not history:
        return AggregatedResult.empty(AggregationStrategy.CONFIDENCE_THRESHOLD)
    qualifying = [r for r in history if r.confidence >= config.confidence_threshold]
    if not qualifying:
        latest = history[-1]
        return AggregatedResult(
            label=latest.label,
            confidence=latest.confidence,
            strategy=AggregationStrategy.CONFIDENCE_THRESHOLD,
            distribution=latest.probabilities,
            sample_count=0,
        )
    n = len(qualifying)
    counts = _counts([r.label for r in qualifying])
    label, _ = _argmax_first(counts)
    winner_confidences = [r.confidence for r in qualifying if r.label == label]
    return AggregatedResult(
        label=label,
        confidence=sum(winner_confidences) / len(winner_confidences),
        strategy=AggregationStrategy.CONFIDENCE_THRESHOLD,
        distribution={k: v / n for k, v in counts.items()},
        sample_count=n,
    )


STRATEGIES: Mapping[AggregationStrategy, StrategyFn] = {
    AggregationStrategy.MAJORITY_VOTE: majority_vote,
    AggregationStrategy.WEIGHTED_AVERAGE: weighted_average,
    AggregationStrategy.RECENT_WEIGHTED: recent_weighted,
    AggregationStrategy.CONFIDENCE_THRESHOLD: confidence_threshold,
}


def aggregate(history: History, config: AggregatorConfig) -> AggregatedResult:
    return STRATEGIES[config.strategy](history, config)


__all__ = [
    "AggregatorConfig",
    "STRATEGIES",
    "aggregate",
    "confidence_threshold",
    "majority_vote",
    "recent_weighted",
    "weighted_average",
]
