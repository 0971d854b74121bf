"""
Unit tests for training and live windowing.

These tests verify:
1. Sliding windows drop a short tail
2. Training windows never straddle a label or a recording session
3. The stream windower fires once per `step` samples after the buffer fills
"""
from __future__ import annotations

import random

import numpy as np
import pytest

from features.windowing import StreamWindower, build_training_windows, sliding_windows
from fixtures.signal_generators import SAMPLE_PERIOD_NS, make_labeled_records, make_motion_samples


class TestSlidingWindows:
    def test_windows_and_tail(self):
        assert [list(w) for w in sliding_windows(list(range(10)), 4, 3)] == [
            [0, 1, 2, 3],
            [3, 4, 5, 6],
            [6, 7, 8, 9],
        ]
        assert len(list(sliding_windows(list(range(9)), 4, 3))) == 2

    def test_too_short_yields_nothing(self):
        assert list(sliding_windows([1, 2], 5, 1)) == []

    @pytest.mark.parametrize("size,step", [(0, 1), (4, 0), (-1, 2)])
    def test_invalid_parameters(self, size, step):
        with pytest.raises(ValueError):
            list(sliding_windows([1, 2, 3], size, step))


class TestBuildTrainingWindows:
    def test_window_count_per_session(self):
        records = make_labeled_records(samples_per_session=300, sessions_per_activity=2)
        windows = build_training_windows(records, size=50, step=25)
        # (300 - 50) / 25 + 1 windows per session, 2 sessions, 3 activities
        assert len(windows) == 11 * 2 * 3
        assert all(len(w) == 50 for w in windows)

    def test_windows_are_single_label_and_session(self):
        records = make_labeled_records(samples_per_session=120, sessions_per_activity=2)
        by_ts = {r.timestamp_ns: (r.label, r.session_id) for r in records}

        for window in build_training_windows(records, size=50, step=25):
            owners = {by_ts[s.timestamp_ns] for s in window.samples}
            assert owners == {(window.label, window.session_id)}

    def test_input_order_does_not_matter(self):
        records = make_labeled_records(samples_per_session=100, sessions_per_activity=1)
        shuffled = list(records)
        random.Random(7).shuffle(shuffled)

        windows = build_training_windows(shuffled, size=50, step=50)

        for window in windows:
            stamps = [s.timestamp_ns for s in window.samples]
            assert stamps == sorted(stamps)
            assert np.all(np.diff(stamps) == SAMPLE_PERIOD_NS)

    def test_labels_preserved(self):
        records = make_labeled_records(("still", "running"), samples_per_session=60, sessions_per_activity=1)
        windows = build_training_windows(records, size=50, step=25)
        assert [w.label for w in windows] == ["still", "running"]


class TestStreamWindower:
    def test_fires_every_step_after_full(self):
        windower = StreamWindower(window_size=4, step=2, n_axes=6)
        fired = [windower.push(np.full(6, i, dtype=np.float32)) for i in range(8)]
        assert fired == [False, False, False, True, False, True, False, True]

    def test_latest_is_oldest_first(self):
        windower = StreamWindower(window_size=3, step=1, n_axes=6)
        for sample in make_motion_samples("walking", 5):
            windower.push_sample(sample)

        latest = windower.latest()

        assert latest.shape == (3, 6)
        expected = np.stack([s.values for s in make_motion_samples("walking", 5)[-3:]])
        np.testing.assert_array_equal(latest, expected)
        assert windower.last_timestamp_ns == 4 * SAMPLE_PERIOD_NS

    def test_reset(self):
        windower = StreamWindower(window_size=2, step=1, n_axes=6)
        windower.push(np.zeros(6), timestamp_ns=5)
        windower.push(np.zeros(6), timestamp_ns=6)
        assert windower.is_ready()

        windower.reset()

        assert not windower.is_ready()
        assert windower.last_timestamp_ns is None
        assert windower.buffer.size == 0

    def test_step_larger_than_window_rejected(self):
        with pytest.raises(ValueError):
            StreamWindower(window_size=4, step=5)
