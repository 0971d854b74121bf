"""
Unit tests for the 3-layer network and its parameter buffers.

These tests verify:
1. One SGD step matches a hand-written float64 backprop against pre-update weights
2. Parameter buffers copy by value and reject shape mismatches
3. Snapshots validate label and normalization sizes
"""
from __future__ import annotations

import math

import numpy as np
import pytest

from learning.network import LOSS_EPSILON, FeedforwardNetwork, ModelSnapshot, NetworkParameters
from shared.models import NormalizationParams


def small_params(seed: int = 0) -> NetworkParameters:
    return NetworkParameters.he_init(6, 5, 4, 3, np.random.default_rng(seed))


def reference_step(params: NetworkParameters, x: np.ndarray, label: int, lr: float):
    """Plain float64 backprop for one sample; returns (updated arrays, loss)."""
    w1, b1, w2, b2, w3, b3 = (a.astype(np.float64) for a in params.arrays())
    x = x.astype(np.float64)
    z1 = x @ w1 + b1
    h1 = np.maximum(z1, 0.0)
    z2 = h1 @ w2 + b2
    h2 = np.maximum(z2, 0.0)
    z3 = h2 @ w3 + b3
    p = np.exp(z3 - z3.max())
    p /= p.sum()
    loss = -math.log(p[label] + LOSS_EPSILON)

    d3 = p.copy()
    d3[label] -= 1.0
    d2 = (w3 @ d3) * (z2 > 0)
    d1 = (w2 @ d2) * (z1 > 0)
    updated = (
        w1 - lr * np.outer(x, d1),
        b1 - lr * d1,
        w2 - lr * np.outer(h1, d2),
        b2 - lr * d2,
        w3 - lr * np.outer(h2, d3),
        b3 - lr * d3,
    )
    return updated, loss


class TestNetworkParameters:
    def test_dims(self):
        assert small_params().dims == (6, 5, 4, 3)

    def test_zeros(self):
        params = NetworkParameters.zeros(24, 32, 16, 4)
        assert params.dims == (24, 32, 16, 4)
        assert all(not a.any() for a in params.arrays())

    def test_shapes_must_chain(self):
        with pytest.raises(ValueError):
            NetworkParameters(
                w1=np.zeros((4, 3)),
                b1=np.zeros(3),
                w2=np.zeros((2, 2)),
                b2=np.zeros(2),
                w3=np.zeros((2, 2)),
                b3=np.zeros(2),
            )

    def test_copy_is_independent(self):
        params = small_params()
        clone = params.copy()
        clone.w1[0, 0] += 1.0
        assert not params.equals(clone)

    def test_copy_from_overwrites_in_place(self):
        target = small_params(1)
        source = small_params(2)
        w1_before = target.w1

        target.copy_from(source)

        assert target.equals(source)
        assert target.w1 is w1_before
        assert target.w1 is not source.w1

    def test_copy_from_rejects_other_dims(self):
        with pytest.raises(ValueError):
            small_params().copy_from(NetworkParameters.zeros(6, 5, 4, 2))


class TestFeedforwardNetwork:
    def test_probabilities_batch(self):
        net = FeedforwardNetwork(small_params())
        x = np.random.default_rng(3).standard_normal((7, 6)).astype(np.float32)

        probs = net.probabilities(x)

        assert probs.shape == (7, 3)
        np.testing.assert_allclose(probs.sum(axis=1), 1.0, rtol=1e-5)

    def test_sgd_step_matches_reference(self):
        params = small_params(4)
        expected, expected_loss = reference_step(params, np.linspace(-1, 1, 6), 2, 0.05)
        net = FeedforwardNetwork(params)

        loss = net.sgd_step(np.linspace(-1, 1, 6).astype(np.float32), 2, 0.05)

        assert loss == pytest.approx(expected_loss, rel=1e-5)
        for actual, reference in zip(params.arrays(), expected):
            np.testing.assert_allclose(actual, reference, atol=1e-5)

    def test_sgd_step_updates_bound_buffer(self):
        params = small_params(5)
        before = params.copy()
        FeedforwardNetwork(params).sgd_step(np.ones(6, dtype=np.float32), 0, 0.1)
        assert not params.equals(before)

    def test_repeated_steps_reduce_loss(self):
        net = FeedforwardNetwork(small_params(6))
        x = np.array([0.5, -0.2, 1.0, 0.3, -0.7, 0.1], dtype=np.float32)
        losses = [net.sgd_step(x, 1, 0.05) for _ in range(30)]
        assert losses[-1] < losses[0]

    def test_clipped_step_moves_less(self):
        x = np.full(6, 3.0, dtype=np.float32)
        free, clipped = small_params(7), small_params(7)
        start = free.copy()

        FeedforwardNetwork(free).sgd_step(x, 0, 0.1)
        FeedforwardNetwork(clipped).sgd_step(x, 0, 0.1, clip_norm=1e-3)

        free_move = np.abs(free.w3 - start.w3).sum()
        clipped_move = np.abs(clipped.w3 - start.w3).sum()
        assert clipped_move <= free_move

    def test_accuracy(self):
        net = FeedforwardNetwork(small_params())
        x = np.random.default_rng(0).standard_normal((10, 6)).astype(np.float32)
        predicted = np.argmax(net.probabilities(x), axis=1)
        assert net.accuracy(x, predicted) == 1.0
        assert net.accuracy(x[:0], predicted[:0]) == 0.0


class TestModelSnapshot:
    def test_label_count_must_match_outputs(self):
        with pytest.raises(ValueError):
            ModelSnapshot(small_params(), NormalizationParams.identity(6), ("a", "b"))

    def test_normalization_must_match_inputs(self):
        with pytest.raises(ValueError):
            ModelSnapshot(small_params(), NormalizationParams.identity(24), ("a", "b", "c"))

    def test_negative_epochs(self):
        with pytest.raises(ValueError):
            ModelSnapshot(small_params(), NormalizationParams.identity(6), ("a", "b", "c"), epochs=-1)

    @pytest.mark.parametrize("labels", [("a", "a", "b"), ("a", "b,c", "d"), ("a", "b\nc", "d")])
    def test_labels_must_be_storable(self, labels):
        with pytest.raises(ValueError):
            ModelSnapshot(small_params(), NormalizationParams.identity(6), labels)
