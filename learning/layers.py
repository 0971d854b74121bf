from __future__ import annotations

from typing import Optional, Sequence, Tuple

import numpy as np

RELU = "relu"
SOFTMAX = "softmax"
_ACTIVATIONS = (RELU, SOFTMAX)


def relu(x: np.ndarray) -> np.ndarray:
    return np.maximum(x, 0.0)


def softmax(logits: np.ndarray) -> np.ndarray:
    """Numerically stable softmax over the last axis."""
    shifted = logits - np.max(logits, axis=-1, keepdims=True)
    exp = np.exp(shifted)
    return exp / np.sum(exp, axis=-1, keepdims=True)


def he_normal(fan_in: int, fan_out: int, rng: np.random.Generator) -> np.ndarray:
    """
    He-initialized (fan_in, fan_out) weight matrix.

    Normal samples come from the Box-Muller transform over the generator's
    uniform stream and are scaled by sqrt(2 / fan_in).
    """
    if fan_in <= 0 or fan_out <= 0:
        raise ValueError("fan_in and fan_out must be positive")
    count = fan_in * fan_out
    u1 = 1.0 - rng.random(count)  # (0, 1], keeps log finite
    u2 = rng.random(count)
    z = np.sqrt(-2.0 * np.log(u1)) * np.cos(2.0 * np.pi * u2)
    scale = np.sqrt(2.0 / fan_in)
    return (z * scale).reshape(fan_in, fan_out).astype(np.float32)


def clip_by_norm(grads: Sequence[np.ndarray], max_norm: float) -> Tuple[np.ndarray, ...]:
    """
    Rescale a layer's gradients so their joint L2 norm is at most `max_norm`.

    When the norm is already within the cap the input arrays are returned
    as-is, without copying.
    """
    if max_norm <= 0:
        raise ValueError("max_norm must be positive")
    grads = tuple(grads)
    total = 0.0
    for g in grads:
        g64 = np.asarray(g, dtype=np.float64)
        total += float(np.sum(g64 * g64))
    norm = float(np.sqrt(total))
    if norm <= max_norm or norm == 0.0:
        return grads
    scale = max_norm / norm
    return tuple((np.asarray(g, dtype=np.float64) * scale).astype(np.float32) for g in grads)


class DenseLayer:
    """
    Fully connected layer ``y = act(x @ W + b)`` with cached state for backprop.

    Weight and bias arrays may be shared with an external parameter buffer;
    `apply_gradients` updates them in place.
    """

    def __init__(
        self,
        fan_in: int,
        fan_out: int,
        activation: str = RELU,
        weights: Optional[np.ndarray] = None,
        bias: Optional[np.ndarray] = None,
    ) -> None:
        if activation not in _ACTIVATIONS:
            raise ValueError(f"Unsupported activation {activation!r}")
        if fan_in <= 0 or fan_out <= 0:
            raise ValueError("fan_in and fan_out must be positive")
        self.fan_in = int(fan_in)
        self.fan_out = int(fan_out)
        self.activation = activation
        self.weights = np.zeros((fan_in, fan_out), dtype=np.float32) if weights is None else weights
        self.bias = np.zeros(fan_out, dtype=np.float32) if bias is None else bias
        if self.weights.shape != (fan_in, fan_out):
            raise ValueError(f"weights must have shape {(fan_in, fan_out)}, got {self.weights.shape}")
        if self.bias.shape != (fan_out,):
            raise ValueError(f"bias must have shape {(fan_out,)}, got {self.bias.shape}")
        self._input: Optional[np.ndarray] = None
        self._pre_activation: Optional[np.ndarray] = None
        self._output: Optional[np.ndarray] = None

    def _activate(self, z: np.ndarray) -> np.ndarray:
        if self.activation == RELU:
            return relu(z)
        return softmax(z)

    def compute(self, x: np.ndarray) -> np.ndarray:
        """Stateless forward pass; accepts a single vector or a batch."""
        z = np.asarray(x, dtype=np.float32) @ self.weights + self.bias
        return self._activate(z).astype(np.float32, copy=False)

    def forward(self, x: np.ndarray) -> np.ndarray:
        x = np.asarray(x, dtype=np.float32)
        z = x @ self.weights + self.bias
        y = self._activate(z).astype(np.float32, copy=False)
        self._input = x
        self._pre_activation = z
        self._output = y
        return y

    def backward(self, d_out: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Return (d_x, d_w, d_b) for the last `forward` call.

        For a ReLU layer `d_out` is the gradient w.r.t. the activation output.
        For the softmax output layer it is already the pre-activation gradient
        ``p - onehot`` of the combined softmax + cross-entropy loss.
        """
        if self._input is None or self._pre_activation is None:
            raise RuntimeError("backward called before forward")
        d_out = np.asarray(d_out, dtype=np.float32)
        if self.activation == RELU:
            d_z = np.where(self._pre_activation > 0.0, d_out, 0.0).astype(np.float32)
        else:
            d_z = d_out
        d_w = np.outer(self._input, d_z).astype(np.float32)
        d_b = d_z.copy()
        d_x = (self.weights @ d_z).astype(np.float32)
        return d_x, d_w, d_b

    def apply_gradients(self, d_w: np.ndarray, d_b: np.ndarray, learning_rate: float) -> None:
        self.weights -= np.float32(learning_rate) * d_w
        self.bias -= np.float32(learning_rate) * d_b


__all__ = [
    "DenseLayer",
    "RELU",
    "SOFTMAX",
    "clip_by_norm",
    "he_normal",
    "relu",
    "softmax",
]
