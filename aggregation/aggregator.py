from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Optional

from shared.models import AggregatedResult, ClassificationResult
from shared.ring_buffer import RingBuffer

from .strategies import AggregatorConfig, aggregate

logger = logging.getLogger(__name__)

ResultCallback = Callable[[AggregatedResult, bool], None]


class TemporalAggregator:
    """
    Smooths a stream of per-window classifications into a consensus label.

    Keeps the last `history_size` results, re-aggregates on every addition and
    tracks how many consecutive consensus results agreed. Subscribers are
    called with (aggregated_result, is_stable) after each addition.
    """

    def __init__(self, config: Optional[AggregatorConfig] = None) -> None:
        self._config = config or AggregatorConfig()
        self._history: RingBuffer[ClassificationResult] = RingBuffer(self._config.history_size)
        self._lock = threading.Lock()
        self._aggregated: Optional[AggregatedResult] = None
        self._candidate: Optional[str] = None
        self._counter = 0
        self._stable = False
        self._subscribers: Dict[int, ResultCallback] = {}
        self._next_token = 0

    @property
    def config(self) -> AggregatorConfig:
        return self._config

    @property
    def aggregated_result(self) -> Optional[AggregatedResult]:
        with self._lock:
            return self._aggregated

    @property
    def is_stable(self) -> bool:
        with self._lock:
            return self._stable

    @property
    def stability_counter(self) -> int:
        with self._lock:
            return self._counter

    @property
    def history_size(self) -> int:
        with self._lock:
            return self._history.size

    def has_enough_data(self) -> bool:
        with self._lock:
            return self._history.size >= self._config.min_samples_for_aggregation

    def aggregate(self) -> AggregatedResult:
        with self._lock:
            return self._aggregate_locked()

    def _aggregate_locked(self) -> AggregatedResult:
        if self._history.is_empty:
            return AggregatedResult.empty(self._config.strategy)
        return aggregate(self._history.to_list(), self._config)

    def add_result(self, result: ClassificationResult) -> AggregatedResult:
        with self._lock:
            self._history.push(result)
            aggregated = self._aggregate_locked()
            self._aggregated = aggregated
            if aggregated.label == self._candidate:
                self._counter += 1
            else:
                self._counter = 1
                self._candidate = aggregated.label
            self._stable = self._counter >= self._config.stability_threshold
            stable = self._stable
            callbacks = list(self._subscribers.values())
        for callback in callbacks:
            try:
                callback(aggregated, stable)
            except Exception as exc:
                logger.debug("Aggregator subscriber failed: %s", exc)
        return aggregated

    def get_stable_label(self) -> Optional[str]:
        with self._lock:
            return self._candidate if self._stable else None

    def reset(self) -> None:
        with self._lock:
            self._history.clear()
            self._aggregated = None
            self._candidate = None
            self._counter = 0
            self._stable = False

    def subscribe(self, callback: ResultCallback) -> Callable[[], None]:
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscribers[token] = callback

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(token, None)

        return unsubscribe


__all__ = ["ResultCallback", "TemporalAggregator"]
