from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Sequence, Union

import numpy as np

from learning.classifier import FeedforwardClassifier
from learning.trainer import ProgressCallback, Trainer, TrainingConfig, TrainResult
from shared.errors import EngineError, ErrorKind
from shared.models import Window

logger = logging.getLogger(__name__)


class TrainingWorker:
    """
    Runs one `Trainer.train` call on a background thread.

    `cancel()` sets the cooperative cancellation event; the trainer notices it
    before the next sample and returns a CANCELLED result without touching
    the classifier.
    """

    def __init__(
        self,
        trainer: Trainer,
        classifier: FeedforwardClassifier,
        data: Union[Sequence[Window], np.ndarray],
        labels: Sequence[str],
        config: Optional[TrainingConfig] = None,
        *,
        on_progress: Optional[ProgressCallback] = None,
        on_finished: Optional[Callable[[TrainResult], None]] = None,
    ) -> None:
        self._trainer = trainer
        self._classifier = classifier
        self._data = data
        self._labels = list(labels)
        self._config = config or TrainingConfig()
        self._on_progress = on_progress
        self._on_finished = on_finished
        self._cancel_event = threading.Event()
        self._done = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._result: Optional[TrainResult] = None

    @property
    def result(self) -> Optional[TrainResult]:
        return self._result

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def start(self) -> None:
        if self._thread is not None:
            logger.warning("TrainingWorker already started")
            return
        self._thread = threading.Thread(target=self._run, name="TrainingWorker", daemon=True)
        self._thread.start()
        logger.info("TrainingWorker started (%d samples)", len(self._labels))

    def cancel(self) -> None:
        self._cancel_event.set()

    def join(self, timeout: Optional[float] = None) -> Optional[TrainResult]:
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("TrainingWorker still running after join timeout")
        return self._result

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)

    def _run(self) -> None:
        try:
            result = self._trainer.train(
                self._classifier,
                self._data,
                self._labels,
                self._config,
                on_progress=self._on_progress,
                cancel_event=self._cancel_event,
            )
        except Exception as exc:
            logger.exception("Training run failed")
            result = TrainResult.failure(EngineError(ErrorKind.INTERNAL, f"training run failed: {exc}"))
        self._result = result
        logger.info("TrainingWorker finished: success=%s epochs=%d", result.success, result.epochs)
        try:
            if self._on_finished is not None:
                self._on_finished(result)
        finally:
            self._done.set()


__all__ = ["TrainingWorker"]
