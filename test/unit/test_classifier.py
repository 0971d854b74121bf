"""
Unit tests for FeedforwardClassifier.

These tests verify:
1. predict is deterministic, side-effect free and returns a full distribution
2. Invalid inputs come back as INVALID_INPUT errors instead of exceptions
3. Online updates, batch epochs, snapshot and restore
"""
from __future__ import annotations

import numpy as np
import pytest

from fixtures.signal_generators import make_feature_dataset
from learning.classifier import FeedforwardClassifier
from learning.network import ModelSnapshot, NetworkParameters
from shared.errors import EngineError, ErrorKind
from shared.models import ClassificationResult, NormalizationParams

LABELS = ("still", "walking", "running")


@pytest.fixture
def classifier() -> FeedforwardClassifier:
    return FeedforwardClassifier(LABELS, seed=11)


class TestPredict:
    def test_result_shape(self, classifier: FeedforwardClassifier):
        result = classifier.predict(np.linspace(-1, 1, 24))

        assert isinstance(result, ClassificationResult)
        assert set(result.probabilities) == set(LABELS)
        assert sum(result.probabilities.values()) == pytest.approx(1.0, rel=1e-5)
        assert result.confidence == max(result.probabilities.values())
        assert result.label == LABELS[result.class_index]

    def test_deterministic_and_pure(self, classifier: FeedforwardClassifier):
        x = np.random.default_rng(0).standard_normal(24)
        before = classifier.parameters()

        first = classifier.predict(x)
        second = classifier.predict(x)

        assert first.probabilities == second.probabilities
        assert classifier.parameters().equals(before)
        assert not classifier.is_trained

    @pytest.mark.parametrize(
        "features",
        [np.zeros(23), np.zeros((2, 24)), np.full(24, np.nan), np.full(24, np.inf)],
    )
    def test_invalid_features(self, classifier: FeedforwardClassifier, features):
        result = classifier.predict(features)
        assert isinstance(result, EngineError)
        assert result.kind == ErrorKind.INVALID_INPUT


class TestConstruction:
    def test_architecture(self, classifier: FeedforwardClassifier):
        assert classifier.architecture == "24 -> 32 -> 16 -> 3"
        assert classifier.hidden_sizes == (32, 16)
        assert classifier.num_classes == 3
        assert classifier.epochs == 0

    def test_seed_reproducible(self):
        a = FeedforwardClassifier(LABELS, seed=3)
        b = FeedforwardClassifier(LABELS, seed=3)
        assert a.parameters().equals(b.parameters())

    @pytest.mark.parametrize("labels", [(), ("a", "a"), ("a,b", "c"), ("a\nb",)])
    def test_bad_labels(self, labels):
        with pytest.raises(ValueError):
            FeedforwardClassifier(labels)

    def test_bad_sizes(self):
        with pytest.raises(ValueError):
            FeedforwardClassifier(LABELS, hidden1=0)


class TestOnlineUpdate:
    def test_update_changes_weights(self, classifier: FeedforwardClassifier):
        before = classifier.parameters()

        loss = classifier.update(np.ones(24), 1, learning_rate=0.05)

        assert isinstance(loss, float)
        assert loss > 0
        assert classifier.is_trained
        assert not classifier.parameters().equals(before)

    def test_update_learns_single_example(self, classifier: FeedforwardClassifier):
        x = np.linspace(0, 2, 24)
        for _ in range(50):
            classifier.update(x, 2, learning_rate=0.05)
        assert classifier.predict(x).label == "running"

    @pytest.mark.parametrize("label_index,lr", [(3, 0.01), (-1, 0.01), (0, 0.0)])
    def test_update_rejects_bad_arguments(self, classifier: FeedforwardClassifier, label_index, lr):
        before = classifier.parameters()
        result = classifier.update(np.ones(24), label_index, learning_rate=lr)
        assert isinstance(result, EngineError)
        assert result.kind == ErrorKind.INVALID_INPUT
        assert classifier.parameters().equals(before)


class TestTrainBatch:
    def test_epochs_reduce_loss(self):
        features, labels = make_feature_dataset(20, seed=1)
        clf = FeedforwardClassifier(["class_0", "class_1", "class_2"], seed=0)
        targets = [int(label[-1]) for label in labels]
        order = np.random.default_rng(0).permutation(len(targets))

        losses = [
            clf.train_batch(features[order], [targets[i] for i in order], learning_rate=0.01)
            for _ in range(5)
        ]

        assert losses[-1] < losses[0]
        assert clf.epochs == 5

    def test_shape_errors(self, classifier: FeedforwardClassifier):
        with pytest.raises(ValueError):
            classifier.train_batch(np.zeros((4, 10)), [0, 0, 0, 0])
        with pytest.raises(ValueError):
            classifier.train_batch(np.zeros((4, 24)), [0, 1])
        with pytest.raises(ValueError):
            classifier.train_batch(np.zeros((1, 24)), [7])


class TestSnapshots:
    def test_restore_reproduces_predictions(self, classifier: FeedforwardClassifier):
        for _ in range(5):
            classifier.update(np.arange(24, dtype=np.float32) / 24, 0)
        snapshot = classifier.snapshot()
        sample = np.random.default_rng(9).standard_normal(24)

        other = FeedforwardClassifier(LABELS, seed=99)
        other.restore(snapshot)

        assert other.is_trained
        assert other.predict(sample).probabilities == classifier.predict(sample).probabilities

    def test_snapshot_is_a_copy(self, classifier: FeedforwardClassifier):
        snapshot = classifier.snapshot()
        classifier.update(np.ones(24), 0)
        assert not snapshot.parameters.equals(classifier.parameters())

    def test_restore_adopts_labels_and_normalization(self, classifier: FeedforwardClassifier):
        params = NetworkParameters.he_init(24, 32, 16, 2, np.random.default_rng(0))
        norm = NormalizationParams(means=np.ones(24), stds=np.full(24, 2.0))
        classifier.restore(ModelSnapshot(params, norm, ("sit", "walk"), epochs=12, accuracy=0.75))

        assert classifier.labels == ("sit", "walk")
        assert classifier.epochs == 12
        assert classifier.accuracy == 0.75
        np.testing.assert_array_equal(classifier.normalization.stds, 2.0)

    def test_restore_rejects_other_architecture(self, classifier: FeedforwardClassifier):
        params = NetworkParameters.he_init(24, 8, 16, 3, np.random.default_rng(0))
        snapshot = ModelSnapshot(params, NormalizationParams.identity(24), LABELS)
        with pytest.raises(ValueError):
            classifier.restore(snapshot)

    def test_reset(self, classifier: FeedforwardClassifier):
        classifier.update(np.ones(24), 0)
        classifier.reset()
        assert not classifier.is_trained
        assert classifier.epochs == 0
        assert classifier.parameters().equals(FeedforwardClassifier(LABELS, seed=11).parameters())
