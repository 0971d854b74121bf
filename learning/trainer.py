from __future__ import annotations

import logging
import threading
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple, Union

import numpy as np

from features.base import FeatureExtractor
from features.motion import MotionFeatureExtractor
from features.normalization import compute_normalization
from shared.errors import EngineError, ErrorKind, class_balance, insufficient_data, invalid_input
from shared.models import Window

from .classifier import FeedforwardClassifier
from .model_store import ModelStore
from .network import FeedforwardNetwork, ModelSnapshot, NetworkParameters

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, float], None]


@dataclass(frozen=True)
class TrainingConfig:
    epochs: int = 100
    learning_rate: float = 0.01
    validation_split: float = 0.2
    seed: int = 42
    min_samples_required: int = 50
    min_samples_per_class: int = 5
    lr_decay: float = 0.95
    lr_decay_every: int = 10
    grad_clip_norm: Optional[float] = 5.0
    early_stopping: bool = True
    patience: int = 10
    min_delta: float = 0.001

    def validate(self) -> None:
        if self.epochs <= 0:
            raise ValueError("epochs must be positive")
        if self.learning_rate <= 0:
            raise ValueError("learning_rate must be positive")
        if not 0.0 <= self.validation_split < 1.0:
            raise ValueError("validation_split must be within [0, 1)")
        if self.min_samples_required < 0 or self.min_samples_per_class < 0:
            raise ValueError("sample minimums must be non-negative")
        if not 0.0 < self.lr_decay <= 1.0:
            raise ValueError("lr_decay must be within (0, 1]")
        if self.lr_decay_every <= 0:
            raise ValueError("lr_decay_every must be positive")
        if self.grad_clip_norm is not None and self.grad_clip_norm <= 0:
            raise ValueError("grad_clip_norm must be positive or None")
        if self.patience <= 0:
            raise ValueError("patience must be positive")
        if self.min_delta < 0:
            raise ValueError("min_delta must be non-negative")


class TrainingState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    TRAINING = "training"
    EARLY_STOPPED = "early_stopped"
    COMPLETED = "completed"


@dataclass(frozen=True)
class TrainResult:
    success: bool
    accuracy: float = 0.0
    training_samples: int = 0
    validation_samples: int = 0
    epochs: int = 0
    early_stopped: bool = False
    final_learning_rate: float = 0.0
    best_epoch: int = 0
    final_loss: float = 0.0
    saved: bool = False
    error: Optional[EngineError] = None

    @classmethod
    def failure(cls, error: EngineError, **kwargs) -> "TrainResult":
        return cls(success=False, error=error, **kwargs)


class _Cancelled(Exception):
    pass


def _label_indices(labels: Sequence[str]) -> Tuple[Tuple[str, ...], np.ndarray]:
    names = tuple(sorted(set(labels)))
    lookup = {name: i for i, name in enumerate(names)}
    return names, np.asarray([lookup[label] for label in labels], dtype=np.int64)


class Trainer:
    """
    Full training run: validate, split, normalize, fit with early stopping,
    then commit the best weights into the classifier.

    The run works on private parameter buffers. The classifier is touched
    only once, at commit, so a failed or cancelled run leaves it unchanged.
    """

    def __init__(
        self,
        extractor: Optional[FeatureExtractor] = None,
        store: Optional[ModelStore] = None,
    ) -> None:
        self._extractor = extractor or MotionFeatureExtractor()
        self._store = store
        self._state = TrainingState.IDLE
        self._last_outcome = TrainingState.IDLE
        self._state_lock = threading.Lock()
        self._run_lock = threading.Lock()

    @property
    def state(self) -> TrainingState:
        with self._state_lock:
            return self._state

    @property
    def last_outcome(self) -> TrainingState:
        """COMPLETED or EARLY_STOPPED for the last successful run, otherwise IDLE."""
        with self._state_lock:
            return self._last_outcome

    def _set_state(self, state: TrainingState) -> None:
        with self._state_lock:
            self._state = state
            if state in (TrainingState.COMPLETED, TrainingState.EARLY_STOPPED):
                self._last_outcome = state

    def _features(self, data: Union[Sequence[Window], np.ndarray]) -> Union[np.ndarray, EngineError]:
        if isinstance(data, np.ndarray):
            features = data.astype(np.float32, copy=False)
        else:
            items = list(data)
            if items and isinstance(items[0], Window):
                features = np.asarray([self._extractor.extract(w) for w in items], dtype=np.float32)
            else:
                features = np.asarray(items, dtype=np.float32)
        if features.size == 0:
            return features.reshape(0, 0)
        if features.ndim != 2:
            return invalid_input(f"features must be 2D, got shape {features.shape}")
        if not np.all(np.isfinite(features)):
            return invalid_input("features contain NaN or Inf")
        return features

    def _validate(
        self,
        classifier: FeedforwardClassifier,
        features: np.ndarray,
        labels: Sequence[str],
        config: TrainingConfig,
    ) -> Optional[EngineError]:
        n = features.shape[0]
        if n != len(labels):
            return invalid_input(f"{n} samples but {len(labels)} labels")
        if n < config.min_samples_required:
            return insufficient_data(f"need at least {config.min_samples_required} samples, have {n}")
        if features.shape[1] != classifier.input_size:
            return invalid_input(f"expected {classifier.input_size} features, got {features.shape[1]}")
        counts = Counter(labels)
        bad = [label for label in counts if not label or "," in label or "\n" in label]
        if bad:
            return invalid_input(f"labels must be non-empty without commas or newlines: {bad!r}")
        if len(counts) < 2:
            return class_balance("need at least 2 different labels")
        thin = sorted(label for label, count in counts.items() if count < config.min_samples_per_class)
        if thin:
            return class_balance(
                f"classes below {config.min_samples_per_class} samples: {', '.join(thin)}"
            )
        return None

    def train(
        self,
        classifier: FeedforwardClassifier,
        data: Union[Sequence[Window], np.ndarray],
        labels: Sequence[str],
        config: Optional[TrainingConfig] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> TrainResult:
        config = config or TrainingConfig()
        try:
            config.validate()
        except ValueError as exc:
            logger.info("Training rejected: invalid config: %s", exc)
            return TrainResult.failure(invalid_input(f"invalid training config: {exc}"))
        if not self._run_lock.acquire(blocking=False):
            return TrainResult.failure(EngineError(ErrorKind.BUSY, "a training run is already in progress"))
        try:
            return self._run(classifier, data, list(labels), config, on_progress, cancel_event)
        finally:
            self._set_state(TrainingState.IDLE)
            self._run_lock.release()

    def _run(
        self,
        classifier: FeedforwardClassifier,
        data: Union[Sequence[Window], np.ndarray],
        labels: List[str],
        config: TrainingConfig,
        on_progress: Optional[ProgressCallback],
        cancel_event: Optional[threading.Event],
    ) -> TrainResult:
        self._set_state(TrainingState.VALIDATING)
        features = self._features(data)
        if isinstance(features, EngineError):
            return TrainResult.failure(features)
        if features.shape[0] == 0:
            return TrainResult.failure(
                insufficient_data(f"need at least {config.min_samples_required} samples, have 0")
            )
        error = self._validate(classifier, features, labels, config)
        if error is not None:
            logger.info("Training rejected: %s", error)
            return TrainResult.failure(error)

        label_names, targets = _label_indices(labels)
        rng = np.random.default_rng(config.seed)
        order = rng.permutation(features.shape[0])
        split = int(features.shape[0] * (1.0 - config.validation_split))
        train_idx, val_idx = order[:split], order[split:]

        normalization = compute_normalization(features[train_idx])
        x_train = normalization.apply(features[train_idx])
        y_train = targets[train_idx]
        if val_idx.size:
            x_val = normalization.apply(features[val_idx])
            y_val = targets[val_idx]
        else:
            x_val, y_val = x_train, y_train

        f = classifier.input_size
        h1, h2 = classifier.hidden_sizes
        working = NetworkParameters.he_init(f, h1, h2, len(label_names), rng)
        best = working.copy()
        network = FeedforwardNetwork(working)

        self._set_state(TrainingState.TRAINING)
        logger.info(
            "Training %s on %d samples (%d validation), %d classes",
            f"{f} -> {h1} -> {h2} -> {len(label_names)}",
            len(train_idx),
            len(val_idx),
            len(label_names),
        )

        lr = config.learning_rate
        best_accuracy = -1.0
        best_epoch = 0
        stale_epochs = 0
        epochs_run = 0
        final_loss = 0.0
        accuracy = 0.0
        early_stopped = False
        try:
            for epoch in range(config.epochs):
                self._check_cancel(cancel_event)
                total = 0.0
                for i in rng.permutation(len(y_train)):
                    self._check_cancel(cancel_event)
                    total += network.sgd_step(x_train[i], int(y_train[i]), lr, config.grad_clip_norm)
                final_loss = total / max(1, len(y_train))
                accuracy = network.accuracy(x_val, y_val)
                epochs_run = epoch + 1
                logger.debug(
                    "Epoch %d/%d: loss=%.4f val_acc=%.3f lr=%.5f",
                    epochs_run,
                    config.epochs,
                    final_loss,
                    accuracy,
                    lr,
                )
                if on_progress is not None:
                    on_progress(epochs_run / config.epochs, accuracy)

                if accuracy > best_accuracy + config.min_delta:
                    best_accuracy = accuracy
                    best_epoch = epochs_run
                    best.copy_from(working)
                    stale_epochs = 0
                else:
                    stale_epochs += 1

                if epochs_run % config.lr_decay_every == 0:
                    lr *= config.lr_decay

                if config.early_stopping and stale_epochs >= config.patience:
                    early_stopped = True
                    break
        except _Cancelled:
            logger.info("Training cancelled after %d epochs", epochs_run)
            return TrainResult.failure(
                EngineError(ErrorKind.CANCELLED, "training was cancelled"),
                epochs=epochs_run,
                training_samples=len(train_idx),
                validation_samples=len(val_idx),
            )

        if config.early_stopping:
            final_params, final_accuracy = best, best_accuracy
        else:
            final_params, final_accuracy = working, accuracy
        self._set_state(TrainingState.EARLY_STOPPED if early_stopped else TrainingState.COMPLETED)

        snapshot = ModelSnapshot(
            parameters=final_params.copy(),
            normalization=normalization,
            labels=label_names,
            epochs=epochs_run,
            accuracy=float(final_accuracy),
        )
        classifier.restore(snapshot)
        saved = self._store.save(snapshot) if self._store is not None else False

        logger.info(
            "Training finished: %d epochs, accuracy %.3f (best epoch %d)%s",
            epochs_run,
            final_accuracy,
            best_epoch,
            ", early stopped" if early_stopped else "",
        )
        return TrainResult(
            success=True,
            accuracy=float(final_accuracy),
            training_samples=len(train_idx),
            validation_samples=len(val_idx),
            epochs=epochs_run,
            early_stopped=early_stopped,
            final_learning_rate=lr,
            best_epoch=best_epoch,
            final_loss=float(final_loss),
            saved=saved,
        )

    @staticmethod
    def _check_cancel(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise _Cancelled()


__all__ = ["ProgressCallback", "TrainResult", "Trainer", "TrainingConfig", "TrainingState"]
