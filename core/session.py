from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Optional, Sequence, Union

import numpy as np

from aggregation.aggregator import TemporalAggregator
from aggregation.strategies import AggregatorConfig
from features.base import FeatureExtractor, create_extractor
from features.motion import MotionFeatureExtractor
from features.windowing import StreamWindower
from learning.classifier import FeedforwardClassifier
from learning.model_store import ModelInfo, ModelStore
from learning.trainer import ProgressCallback, Trainer, TrainingConfig, TrainResult
from shared.app_settings import EngineSettings, EngineSettingsStore
from shared.errors import EngineError, ErrorKind, insufficient_data
from shared.models import MOTION_AXES, UNKNOWN_LABEL, MotionSample, TouchSample, Window
from shared.ring_buffer import RingBuffer

from .inference import InferenceLoop, InferenceUpdate
from .training_worker import TrainingWorker


def _aggregator_config(settings: EngineSettings) -> AggregatorConfig:
    return AggregatorConfig(
        history_size=settings.history_size,
        strategy=settings.aggregation_strategy,
        confidence_threshold=settings.confidence_threshold,
        stability_threshold=settings.stability_threshold,
        recency_decay=settings.recency_decay,
    )


class ClassificationSession:
    """
    Owns the live pipeline for one recording session: sample windowing,
    feature extraction, the classifier and its store, and temporal aggregation.

    Construct one per session and call `close()` when done; nothing here is a
    process-wide singleton. `push_sample` and the inference tick share a lock
    so the sample buffer only ever has one active user.
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        *,
        settings_store: Optional[EngineSettingsStore] = None,
        classifier: Optional[FeedforwardClassifier] = None,
        store: Optional[ModelStore] = None,
        extractor: Optional[FeatureExtractor] = None,
        trainer: Optional[Trainer] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.settings_store = settings_store
        if settings is None:
            settings = settings_store.get() if settings_store is not None else EngineSettings()
        self.settings = settings

        self.extractor: FeatureExtractor = extractor or create_extractor(settings.extractor)
        self.store = store or ModelStore(Path(settings.model_dir), settings.model_name, settings.model_format)
        self.trainer = trainer or Trainer(extractor=self.extractor, store=self.store)
        self.aggregator = TemporalAggregator(_aggregator_config(settings))

        self._sample_lock = threading.Lock()
        self._windower = StreamWindower(settings.window_size, settings.window_step, n_axes=len(MOTION_AXES))
        self._touch_buffer: RingBuffer[TouchSample] = RingBuffer(settings.window_size)

        self._model_lock = threading.Lock()
        self._classifier = classifier
        if self._classifier is None:
            self._classifier = self._load_classifier()

        self._inference: Optional[InferenceLoop] = None
        self._training: Optional[TrainingWorker] = None
        self._settings_unsub: Optional[Callable[[], None]] = None
        if settings_store is not None:
            self._settings_unsub = settings_store.subscribe(self._on_settings_changed, replay=False)

    # ------------------------------------------------------------------
    # Model lifecycle
    # ------------------------------------------------------------------

    def _load_classifier(self) -> Optional[FeedforwardClassifier]:
        snapshot = self.store.load()
        if snapshot is None:
            return None
        f, h1, h2, _ = snapshot.parameters.dims
        try:
            classifier = FeedforwardClassifier(snapshot.labels, input_size=f, hidden1=h1, hidden2=h2)
            classifier.restore(snapshot)
        except ValueError as exc:
            self.logger.warning("Stored model %s rejected, starting untrained: %s", self.store.path, exc)
            return None
        self.logger.info("Restored classifier from %s", self.store.path)
        return classifier

    @property
    def classifier(self) -> Optional[FeedforwardClassifier]:
        with self._model_lock:
            return self._classifier

    def has_trained_model(self) -> bool:
        classifier = self.classifier
        return classifier is not None and classifier.is_trained

    def delete_model(self) -> bool:
        removed = self.store.delete()
        with self._model_lock:
            had_model = self._classifier is not None
            self._classifier = None
        self.aggregator.reset()
        return removed or had_model

    def get_model_info(self) -> ModelInfo:
        info = self.store.info()
        if info.exists:
            return info
        classifier = self.classifier
        if classifier is None or not classifier.is_trained:
            return info
        return ModelInfo(
            exists=False,
            path=info.path,
            fmt=info.fmt,
            labels=classifier.labels,
            epochs=classifier.epochs,
            accuracy=classifier.accuracy,
            architecture=classifier.architecture,
        )

    # ------------------------------------------------------------------
    # Samples and inference
    # ------------------------------------------------------------------

    def push_sample(self, sample: Union[MotionSample, TouchSample]) -> bool:
        """Add one sample; returns True when a fresh motion window is ready."""
        with self._sample_lock:
            if isinstance(sample, TouchSample):
                self._touch_buffer.push(sample)
                return False
            return self._windower.push_sample(sample)

    def reset_samples(self) -> None:
        with self._sample_lock:
            self._windower.reset()
            self._touch_buffer.clear()

    def _latest_features(self) -> Union[np.ndarray, EngineError]:
        with self._sample_lock:
            if isinstance(self.extractor, MotionFeatureExtractor):
                if not self._windower.is_ready():
                    return insufficient_data(
                        f"window needs {self._windower.window_size} samples, have {self._windower.buffer.size}"
                    )
                values = self._windower.latest()
            else:
                touches = self._touch_buffer.to_list()
                if not touches:
                    return insufficient_data("no touch samples buffered")
                values = None
        if values is not None:
            return self.extractor.extract_array(values)  # type: ignore[attr-defined]
        return self.extractor.extract(Window(samples=tuple(touches)))

    def classify_latest(self) -> Union[InferenceUpdate, EngineError]:
        classifier = self.classifier
        if classifier is None or not classifier.is_trained:
            return EngineError(ErrorKind.NOT_TRAINED, "no trained model available")
        features = self._latest_features()
        if isinstance(features, EngineError):
            return features
        result = classifier.predict(features)
        if isinstance(result, EngineError):
            return result
        aggregated = self.aggregator.add_result(result)
        return InferenceUpdate(result=result, aggregated=aggregated, stable_label=self.aggregator.get_stable_label())

    def _tick(self) -> Optional[InferenceUpdate]:
        outcome = self.classify_latest()
        if isinstance(outcome, EngineError):
            self.logger.debug("Inference skipped: %s", outcome)
            return None
        return outcome

    def start_inference(self) -> InferenceLoop:
        if self._inference is None:
            self._inference = InferenceLoop(self._tick, self.settings.inference_interval_s)
        self._inference.start()
        return self._inference

    def stop_inference(self) -> None:
        if self._inference is not None:
            self._inference.stop()

    @property
    def inference_loop(self) -> Optional[InferenceLoop]:
        return self._inference

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def train_async(
        self,
        data: Union[Sequence[Window], np.ndarray],
        labels: Sequence[str],
        config: Optional[TrainingConfig] = None,
        *,
        on_progress: Optional[ProgressCallback] = None,
        on_finished: Optional[Callable[[TrainResult], None]] = None,
    ) -> Union[TrainingWorker, EngineError]:
        if self._training is not None and self._training.running:
            return EngineError(ErrorKind.BUSY, "a training run is already in progress")
        with self._model_lock:
            classifier = self._classifier
        if classifier is None:
            # relabelled from the training data at commit
            classifier = FeedforwardClassifier((UNKNOWN_LABEL,))

        def finished(result: TrainResult) -> None:
            if result.success:
                with self._model_lock:
                    self._classifier = classifier
                self.aggregator.reset()
            if on_finished is not None:
                on_finished(result)

        worker = TrainingWorker(
            self.trainer,
            classifier,
            data,
            labels,
            config,
            on_progress=on_progress,
            on_finished=finished,
        )
        self._training = worker
        worker.start()
        return worker

    def train(
        self,
        data: Union[Sequence[Window], np.ndarray],
        labels: Sequence[str],
        config: Optional[TrainingConfig] = None,
        *,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TrainResult:
        """Blocking variant of `train_async`."""
        worker = self.train_async(data, labels, config, on_progress=on_progress)
        if isinstance(worker, EngineError):
            return TrainResult.failure(worker)
        worker.join()
        result = worker.result
        if result is None:
            return TrainResult.failure(EngineError(ErrorKind.INTERNAL, "training thread ended without a result"))
        return result

    def cancel_training(self) -> None:
        if self._training is not None:
            self._training.cancel()

    # ------------------------------------------------------------------
    # Settings / shutdown
    # ------------------------------------------------------------------

    def _on_settings_changed(self, settings: EngineSettings) -> None:
        previous = self.settings
        self.settings = settings
        if _aggregator_config(settings) != _aggregator_config(previous):
            self.aggregator = TemporalAggregator(_aggregator_config(settings))
            self.logger.info("Aggregation settings changed: %s", settings.aggregation_strategy.value)

    def close(self) -> None:
        self.stop_inference()
        if self._training is not None and self._training.running:
            self._training.cancel()
            self._training.join(timeout=5.0)
        if self._settings_unsub is not None:
            self._settings_unsub()
            self._settings_unsub = None


__all__ = ["ClassificationSession"]
