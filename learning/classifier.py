from __future__ import annotations

import logging
import threading
import time
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from shared.errors import EngineError, invalid_input
from shared.models import ClassificationResult, NormalizationParams, labels_tuple

from .network import (
    HIDDEN1_SIZE,
    HIDDEN2_SIZE,
    INPUT_SIZE,
    FeedforwardNetwork,
    ModelSnapshot,
    NetworkParameters,
)

logger = logging.getLogger(__name__)

DEFAULT_LEARNING_RATE = 0.01


class FeedforwardClassifier:
    """
    Fixed-topology classifier: input -> hidden1 (ReLU) -> hidden2 (ReLU) -> softmax.

    Inputs are raw feature vectors; the classifier applies its own
    normalization before every forward pass. All public methods take the
    instance lock, so predict, update and restore never interleave.
    """

    def __init__(
        self,
        labels: Sequence[str],
        input_size: int = INPUT_SIZE,
        hidden1: int = HIDDEN1_SIZE,
        hidden2: int = HIDDEN2_SIZE,
        seed: Optional[int] = None,
    ) -> None:
        if input_size <= 0 or hidden1 <= 0 or hidden2 <= 0:
            raise ValueError("layer sizes must be positive")
        self._labels = labels_tuple(labels)
        if not self._labels:
            raise ValueError("at least one label is required")
        self._input_size = int(input_size)
        self._hidden1 = int(hidden1)
        self._hidden2 = int(hidden2)
        self._seed = seed
        self._lock = threading.RLock()
        self._init_state()

    def _init_state(self) -> None:
        rng = np.random.default_rng(self._seed)
        self._params = NetworkParameters.he_init(
            self._input_size, self._hidden1, self._hidden2, len(self._labels), rng
        )
        self._network = FeedforwardNetwork(self._params)
        self._normalization = NormalizationParams.identity(self._input_size)
        self._epochs = 0
        self._accuracy = 0.0
        self._trained = False

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def labels(self) -> Tuple[str, ...]:
        return self._labels

    @property
    def num_classes(self) -> int:
        return len(self._labels)

    @property
    def input_size(self) -> int:
        return self._input_size

    @property
    def hidden_sizes(self) -> Tuple[int, int]:
        return (self._hidden1, self._hidden2)

    @property
    def epochs(self) -> int:
        return self._epochs

    @property
    def accuracy(self) -> float:
        return self._accuracy

    @property
    def is_trained(self) -> bool:
        return self._trained

    @property
    def architecture(self) -> str:
        return f"{self._input_size} -> {self._hidden1} -> {self._hidden2} -> {len(self._labels)}"

    @property
    def normalization(self) -> NormalizationParams:
        return self._normalization

    def parameters(self) -> NetworkParameters:
        """Deep copy of the current weights."""
        with self._lock:
            return self._params.copy()

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def _validate_features(self, features) -> Union[np.ndarray, EngineError]:
        arr = np.asarray(features, dtype=np.float32)
        if arr.ndim != 1 or arr.shape[0] != self._input_size:
            return invalid_input(f"expected {self._input_size} features, got shape {arr.shape}")
        if not np.all(np.isfinite(arr)):
            return invalid_input("features must be finite")
        return arr

    def predict(self, features) -> Union[ClassificationResult, EngineError]:
        start = time.perf_counter()
        arr = self._validate_features(features)
        if isinstance(arr, EngineError):
            return arr
        with self._lock:
            probs = self._network.probabilities(self._normalization.apply(arr))
            labels = self._labels
        index = int(np.argmax(probs))
        latency_ms = (time.perf_counter() - start) * 1000.0
        return ClassificationResult(
            label=labels[index],
            confidence=float(probs[index]),
            probabilities={label: float(p) for label, p in zip(labels, probs)},
            class_index=index,
            latency_ms=latency_ms,
        )

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    def update(
        self,
        features,
        label_index: int,
        learning_rate: float = DEFAULT_LEARNING_RATE,
        clip_norm: Optional[float] = None,
    ) -> Union[float, EngineError]:
        """Single online SGD step; returns the sample loss."""
        arr = self._validate_features(features)
        if isinstance(arr, EngineError):
            return arr
        if not 0 <= label_index < len(self._labels):
            return invalid_input(f"label index {label_index} out of range for {len(self._labels)} classes")
        if learning_rate <= 0:
            return invalid_input("learning_rate must be positive")
        with self._lock:
            loss = self._network.sgd_step(self._normalization.apply(arr), label_index, learning_rate, clip_norm)
            self._trained = True
        return loss

    def train_batch(
        self,
        samples: Sequence[np.ndarray] | np.ndarray,
        labels: Sequence[int],
        learning_rate: float = DEFAULT_LEARNING_RATE,
        clip_norm: Optional[float] = None,
    ) -> float:
        """One epoch over an already-shuffled batch; returns the mean loss."""
        data = np.asarray(samples, dtype=np.float32)
        if data.ndim != 2 or data.shape[1] != self._input_size:
            raise ValueError(f"samples must have shape (n, {self._input_size})")
        if len(labels) != data.shape[0]:
            raise ValueError("samples and labels must have the same length")
        if data.shape[0] == 0:
            raise ValueError("cannot train on an empty batch")
        with self._lock:
            normalized = self._normalization.apply(data)
            total = 0.0
            for x, y in zip(normalized, labels):
                if not 0 <= int(y) < len(self._labels):
                    raise ValueError(f"label index {y} out of range")
                total += self._network.sgd_step(x, int(y), learning_rate, clip_norm)
            self._epochs += 1
            self._trained = True
        mean_loss = total / data.shape[0]
        logger.debug("Batch epoch %d: loss=%.4f", self._epochs, mean_loss)
        return mean_loss

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self) -> ModelSnapshot:
        with self._lock:
            return ModelSnapshot(
                parameters=self._params.copy(),
                normalization=self._normalization,
                labels=self._labels,
                epochs=self._epochs,
                accuracy=self._accuracy,
            )

    def restore(self, snapshot: ModelSnapshot) -> None:
        """Swap in a trained model; the layer sizes must match this classifier."""
        f, h1, h2, _ = snapshot.parameters.dims
        if (f, h1, h2) != (self._input_size, self._hidden1, self._hidden2):
            raise ValueError(
                f"snapshot architecture {snapshot.parameters.dims} does not match {self.architecture}"
            )
        params = snapshot.parameters.copy()
        with self._lock:
            self._params = params
            self._network = FeedforwardNetwork(params)
            self._normalization = snapshot.normalization
            self._labels = labels_tuple(snapshot.labels)
            self._epochs = snapshot.epochs
            self._accuracy = snapshot.accuracy
            self._trained = True
        logger.info("Classifier updated: %s, %d epochs", self.architecture, snapshot.epochs)

    def reset(self) -> None:
        with self._lock:
            self._init_state()
        logger.info("Classifier reset")


__all__ = ["DEFAULT_LEARNING_RATE", "FeedforwardClassifier", "ModelSnapshot"]
