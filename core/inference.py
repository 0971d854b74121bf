from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from shared.models import AggregatedResult, ClassificationResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InferenceUpdate:
    """Output of one inference tick."""

    result: ClassificationResult
    aggregated: AggregatedResult
    stable_label: Optional[str]


TickFn = Callable[[], Optional[InferenceUpdate]]


class InferenceLoop:
    """
    Calls `tick_fn` every `interval_s` seconds on a daemon thread.

    Non-empty updates go to `output_queue`; when the queue is full the oldest
    update is dropped so consumers always see the freshest results.
    """

    def __init__(self, tick_fn: TickFn, interval_s: float = 0.5, *, queue_size: int = 64) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        self._tick_fn = tick_fn
        self._interval_s = float(interval_s)
        self.output_queue: "queue.Queue[InferenceUpdate]" = queue.Queue(maxsize=queue_size)
        self._stop = threading.Event()
        self._worker: Optional[threading.Thread] = None
        self._ticks = 0
        self._dropped = 0

    @property
    def interval_s(self) -> float:
        return self._interval_s

    @property
    def ticks(self) -> int:
        return self._ticks

    @property
    def dropped(self) -> int:
        return self._dropped

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._worker = threading.Thread(target=self._run, name="InferenceLoop", daemon=True)
        self._worker.start()
        logger.info("Inference loop started (interval %.3fs)", self._interval_s)

    def stop(self, join_timeout: float = 2.0) -> None:
        self._stop.set()
        if self._worker is not None:
            self._worker.join(timeout=join_timeout)
            if self._worker.is_alive():
                logger.warning("Inference loop did not stop within timeout")
            self._worker = None
            logger.info("Inference loop stopped after %d ticks", self._ticks)

    def tick(self) -> Optional[InferenceUpdate]:
        """Run one step synchronously and publish its update."""
        started = time.perf_counter()
        update = self._tick_fn()
        elapsed = time.perf_counter() - started
        self._ticks += 1
        if elapsed > self._interval_s:
            logger.debug("Slow inference tick: %.1f ms (interval %.1f ms)", elapsed * 1e3, self._interval_s * 1e3)
        if update is not None:
            self._publish(update)
        return update

    def _publish(self, update: InferenceUpdate) -> None:
        try:
            self.output_queue.put_nowait(update)
        except queue.Full:
            try:
                _ = self.output_queue.get_nowait()
                self._dropped += 1
            except queue.Empty:
                pass
            try:
                self.output_queue.put_nowait(update)
            except queue.Full:
                self._dropped += 1

    def _run(self) -> None:
        while not self._stop.wait(self._interval_s):
            try:
                self.tick()
            except Exception:
                logger.exception("Inference tick failed")


__all__ = ["InferenceLoop", "InferenceUpdate", "TickFn"]
