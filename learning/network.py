from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from shared.models import NormalizationParams, labels_tuple

from .layers import RELU, SOFTMAX, DenseLayer, clip_by_norm, he_normal

INPUT_SIZE = 24
HIDDEN1_SIZE = 32
HIDDEN2_SIZE = 16
LOSS_EPSILON = 1e-7


@dataclass
class NetworkParameters:
    """Weights and biases of the 3-layer network, all float32."""

    w1: np.ndarray
    b1: np.ndarray
    w2: np.ndarray
    b2: np.ndarray
    w3: np.ndarray
    b3: np.ndarray

    def __post_init__(self) -> None:
        for name in ("w1", "b1", "w2", "b2", "w3", "b3"):
            setattr(self, name, np.ascontiguousarray(getattr(self, name), dtype=np.float32))
        f, h1 = self.w1.shape
        h1b, h2 = self.w2.shape
        h2b, c = self.w3.shape
        if h1 != h1b or h2 != h2b:
            raise ValueError("weight matrix shapes do not chain")
        if self.b1.shape != (h1,) or self.b2.shape != (h2,) or self.b3.shape != (c,):
            raise ValueError("bias lengths do not match weight shapes")

    @classmethod
    def zeros(cls, input_size: int, hidden1: int, hidden2: int, n_classes: int) -> "NetworkParameters":
        return cls(
            w1=np.zeros((input_size, hidden1), dtype=np.float32),
            b1=np.zeros(hidden1, dtype=np.float32),
            w2=np.zeros((hidden1, hidden2), dtype=np.float32),
            b2=np.zeros(hidden2, dtype=np.float32),
            w3=np.zeros((hidden2, n_classes), dtype=np.float32),
            b3=np.zeros(n_classes, dtype=np.float32),
        )

    @classmethod
    def he_init(
        cls,
        input_size: int,
        hidden1: int,
        hidden2: int,
        n_classes: int,
        rng: np.random.Generator,
    ) -> "NetworkParameters":
        return cls(
            w1=he_normal(input_size, hidden1, rng),
            b1=np.zeros(hidden1, dtype=np.float32),
            w2=he_normal(hidden1, hidden2, rng),
            b2=np.zeros(hidden2, dtype=np.float32),
            w3=he_normal(hidden2, n_classes, rng),
            b3=np.zeros(n_classes, dtype=np.float32),
        )

    @property
    def dims(self) -> Tuple[int, int, int, int]:
        """(input_size, hidden1, hidden2, n_classes)"""
        return (self.w1.shape[0], self.w1.shape[1], self.w2.shape[1], self.w3.shape[1])

    def arrays(self) -> Tuple[np.ndarray, ...]:
        return (self.w1, self.b1, self.w2, self.b2, self.w3, self.b3)

    def copy(self) -> "NetworkParameters":
        return NetworkParameters(*(a.copy() for a in self.arrays()))

    def copy_from(self, other: "NetworkParameters") -> None:
        """Overwrite this buffer with `other` in place (shapes must match)."""
        if other.dims != self.dims:
            raise ValueError(f"cannot copy parameters with dims {other.dims} into {self.dims}")
        for dst, src in zip(self.arrays(), other.arrays()):
            np.copyto(dst, src)

    def equals(self, other: "NetworkParameters") -> bool:
        if other.dims != self.dims:
            return False
        return all(np.array_equal(a, b) for a, b in zip(self.arrays(), other.arrays()))


@dataclass(frozen=True)
class ModelSnapshot:
    """Everything needed to reproduce a trained classifier."""

    parameters: NetworkParameters
    normalization: NormalizationParams
    labels: Tuple[str, ...]
    epochs: int = 0
    accuracy: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "labels", labels_tuple(self.labels))
        f, _, _, c = self.parameters.dims
        if c != len(self.labels):
            raise ValueError(f"{len(self.labels)} labels for {c} output classes")
        if self.normalization.size != f:
            raise ValueError(f"normalization size {self.normalization.size} != input size {f}")
        if self.epochs < 0:
            raise ValueError("epochs must be non-negative")


class FeedforwardNetwork:
    """
    input -> ReLU -> ReLU -> softmax network over a NetworkParameters buffer.

    The layers hold views of the buffer's arrays, so SGD updates land directly
    in the buffer the network was built on.
    """

    def __init__(self, params: NetworkParameters) -> None:
        self._params = params
        f, h1, h2, c = params.dims
        self.hidden1 = DenseLayer(f, h1, RELU, params.w1, params.b1)
        self.hidden2 = DenseLayer(h1, h2, RELU, params.w2, params.b2)
        self.output = DenseLayer(h2, c, SOFTMAX, params.w3, params.b3)

    @property
    def params(self) -> NetworkParameters:
        return self._params

    @property
    def n_classes(self) -> int:
        return self.output.fan_out

    def forward(self, x: np.ndarray) -> np.ndarray:
        """Forward pass that caches activations for a following backward pass."""
        return self.output.forward(self.hidden2.forward(self.hidden1.forward(x)))

    def probabilities(self, x: np.ndarray) -> np.ndarray:
        """Side-effect-free forward pass for one vector or a (n, F) batch."""
        return self.output.compute(self.hidden2.compute(self.hidden1.compute(x)))

    def accuracy(self, features: np.ndarray, labels: np.ndarray) -> float:
        if len(labels) == 0:
            return 0.0
        probs = self.probabilities(np.asarray(features, dtype=np.float32))
        predicted = np.argmax(probs, axis=-1)
        return float(np.mean(predicted == np.asarray(labels)))

    def sgd_step(
        self,
        x: np.ndarray,
        label: int,
        learning_rate: float,
        clip_norm: Optional[float] = None,
    ) -> float:
        """
        One online update on a single normalized sample.

        All gradients are computed against the pre-update weights; each layer's
        (dW, db) pair is clipped independently when `clip_norm` is set.
        Returns the cross-entropy loss ``-ln(p_true + 1e-7)``.
        """
        probs = self.forward(x)
        loss = -math.log(float(probs[label]) + LOSS_EPSILON)

        d_z = probs.copy()
        d_z[label] -= 1.0
        grads = []
        d = d_z
        for layer in (self.output, self.hidden2, self.hidden1):
            d, d_w, d_b = layer.backward(d)
            grads.append((layer, d_w, d_b))

        for layer, d_w, d_b in grads:
            if clip_norm is not None:
                d_w, d_b = clip_by_norm((d_w, d_b), clip_norm)
            layer.apply_gradients(d_w, d_b, learning_rate)
        return loss


__all__ = [
    "FeedforwardNetwork",
    "HIDDEN1_SIZE",
    "HIDDEN2_SIZE",
    "INPUT_SIZE",
    "LOSS_EPSILON",
    "ModelSnapshot",
    "NetworkParameters",
]
