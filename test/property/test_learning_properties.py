"""
Property-based tests for the network, clipping and model persistence.

Properties verified:
1. predict returns a probability distribution for any finite input
2. Clipping caps the joint norm exactly and never touches under-cap gradients
3. Binary and text encodings round-trip every parameter bit for bit
4. With min_delta == 0 the tracked best validation accuracy never decreases
"""
from __future__ import annotations

import numpy as np
from hypothesis import given, settings, strategies as st
from hypothesis.extra.numpy import arrays

from fixtures.signal_generators import make_feature_dataset
from learning.classifier import FeedforwardClassifier
from learning.layers import clip_by_norm
from learning.model_store import decode_binary, decode_text, encode_binary, encode_text
from learning.network import ModelSnapshot, NetworkParameters
from learning.trainer import Trainer, TrainingConfig
from shared.models import NormalizationParams

seeds = st.integers(min_value=0, max_value=2**32 - 1)
gradients = arrays(
    np.float32,
    st.integers(1, 30),
    elements=st.floats(-100, 100, allow_nan=False, width=32),
)


def random_snapshot(seed: int, n_classes: int) -> ModelSnapshot:
    rng = np.random.default_rng(seed)
    params = NetworkParameters.he_init(24, 32, 16, n_classes, rng)
    params.b3[:] = rng.standard_normal(n_classes)
    norm = NormalizationParams(means=rng.standard_normal(24) * 10, stds=rng.uniform(0.1, 5.0, 24))
    labels = tuple(f"label_{i}" for i in range(n_classes))
    return ModelSnapshot(params, norm, labels, epochs=int(rng.integers(0, 500)), accuracy=float(rng.random()))


class TestPredictProperties:
    @given(
        seed=seeds,
        features=arrays(np.float32, 24, elements=st.floats(-1e3, 1e3, allow_nan=False, width=32)),
    )
    @settings(max_examples=100, deadline=None)
    def test_distribution(self, seed: int, features: np.ndarray):
        clf = FeedforwardClassifier(("a", "b", "c", "d"), seed=seed)
        result = clf.predict(features)
        probs = np.array(list(result.probabilities.values()))
        assert np.all(probs >= 0)
        assert abs(probs.sum() - 1.0) < 1e-4
        assert result.confidence == max(result.probabilities.values())
        assert clf.predict(features).probabilities == result.probabilities


class TestClippingProperties:
    @given(g1=gradients, g2=gradients, cap=st.floats(0.01, 50.0))
    @settings(max_examples=200, deadline=None)
    def test_joint_norm_capped(self, g1: np.ndarray, g2: np.ndarray, cap: float):
        norm = float(np.sqrt(np.sum(g1.astype(np.float64) ** 2) + np.sum(g2.astype(np.float64) ** 2)))
        c1, c2 = clip_by_norm((g1, g2), cap)
        clipped = float(np.sqrt(np.sum(c1.astype(np.float64) ** 2) + np.sum(c2.astype(np.float64) ** 2)))

        if norm <= cap:
            assert c1 is g1 and c2 is g2
        else:
            assert abs(clipped - cap) <= 1e-5 * cap


class TestPersistenceProperties:
    @given(seed=seeds, n_classes=st.integers(2, 6))
    @settings(max_examples=40, deadline=None)
    def test_binary_roundtrip(self, seed: int, n_classes: int):
        snapshot = random_snapshot(seed, n_classes)
        decoded = decode_binary(encode_binary(snapshot), labels=snapshot.labels, epochs=snapshot.epochs)
        assert decoded.parameters.equals(snapshot.parameters)
        assert np.array_equal(decoded.normalization.means, snapshot.normalization.means)
        assert np.array_equal(decoded.normalization.stds, snapshot.normalization.stds)

    @given(seed=seeds, n_classes=st.integers(2, 6))
    @settings(max_examples=40, deadline=None)
    def test_text_roundtrip(self, seed: int, n_classes: int):
        snapshot = random_snapshot(seed, n_classes)
        decoded = decode_text(encode_text(snapshot))
        assert decoded.parameters.equals(snapshot.parameters)
        assert decoded.labels == snapshot.labels
        assert decoded.epochs == snapshot.epochs


class TestTrainingProperties:
    @given(seed=st.integers(0, 1000))
    @settings(max_examples=8, deadline=None)
    def test_best_accuracy_non_decreasing(self, seed: int):
        features, labels = make_feature_dataset(25, separation=1.0, seed=seed)
        reported = []
        config = TrainingConfig(epochs=15, min_delta=0.0, patience=15, seed=seed)

        result = Trainer().train(
            FeedforwardClassifier(("class_0", "class_1", "class_2")),
            features,
            labels,
            config,
            on_progress=lambda _f, acc: reported.append(acc),
        )

        best_curve = np.maximum.accumulate(reported)
        assert np.all(np.diff(best_curve) >= 0)
        assert result.accuracy == best_curve[-1]
