"""
Unit tests for z-score and min-max feature normalization.
"""
from __future__ import annotations

import numpy as np
import pytest

from features.normalization import compute_min_max, compute_normalization, min_max_normalize, normalize
from shared.models import NormalizationParams


class TestZScore:
    def test_fit_and_apply(self):
        data = np.array([[1.0, 10.0], [3.0, 10.0], [5.0, 10.0]], dtype=np.float32)

        params = compute_normalization(data)

        np.testing.assert_allclose(params.means, [3.0, 10.0])
        np.testing.assert_allclose(params.stds, [np.std([1.0, 3.0, 5.0]), 1.0], rtol=1e-6)
        out = normalize(np.array([3.0, 12.0]), params)
        np.testing.assert_allclose(out, [0.0, 2.0], atol=1e-6)

    def test_batch_apply_preserves_shape(self):
        data = np.random.default_rng(0).normal(5.0, 2.0, size=(200, 4))
        params = compute_normalization(data)

        out = normalize(data, params)

        assert out.shape == (200, 4)
        np.testing.assert_allclose(out.mean(axis=0), 0.0, atol=1e-4)
        np.testing.assert_allclose(out.std(axis=0), 1.0, atol=1e-4)

    def test_size_mismatch(self):
        params = NormalizationParams.identity(3)
        with pytest.raises(ValueError):
            normalize(np.zeros(4), params)

    def test_empty_input_rejected(self):
        with pytest.raises(ValueError):
            compute_normalization(np.zeros((0, 3)))

    def test_params_guard_bad_stds(self):
        params = NormalizationParams(means=[np.nan, 1.0, 2.0], stds=[0.0, np.nan, 4.0])
        np.testing.assert_array_equal(params.means, [0.0, 1.0, 2.0])
        np.testing.assert_array_equal(params.stds, [1.0, 1.0, 4.0])
        assert not params.stds.flags.writeable


class TestMinMax:
    def test_degenerate_range_becomes_unit(self):
        data = np.array([[0.0, 7.0], [10.0, 7.0]])
        mins, maxs = compute_min_max(data)
        np.testing.assert_array_equal(mins, [0.0, 0.0])
        np.testing.assert_array_equal(maxs, [10.0, 1.0])

    def test_values_are_clipped(self):
        mins = np.array([0.0, 0.0, 2.0])
        maxs = np.array([10.0, 10.0, 2.0])
        out = min_max_normalize(np.array([15.0, -3.0, 5.0]), mins, maxs)
        np.testing.assert_allclose(out, [1.0, 0.0, 0.5])

    def test_midpoint(self):
        out = min_max_normalize(np.array([5.0]), np.array([0.0]), np.array([10.0]))
        assert out[0] == pytest.approx(0.5)
