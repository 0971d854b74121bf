"""
Unit tests for RingBuffer and SampleRingBuffer correctness.

These tests verify the core invariants of the sample rings:
1. Index 0 is always the oldest retained element, through wraparound
2. Capacity bounds are never exceeded
3. Zero-allocation copies land in the right destination slots
4. Invalid access raises instead of returning stale data
"""
from __future__ import annotations

import numpy as np
import pytest

from shared.ring_buffer import RingBuffer, RingBufferIndexError, SampleRingBuffer


class TestRingBufferBasicOperations:
    def test_rejects_non_positive_capacity(self):
        with pytest.raises(ValueError):
            RingBuffer(0)
        with pytest.raises(ValueError):
            RingBuffer(-3)

    def test_push_and_get_within_capacity(self):
        buf = RingBuffer[int](5)
        for i in range(3):
            buf.push(i)

        assert buf.size == 3
        assert len(buf) == 3
        assert not buf.is_full
        assert [buf[i] for i in range(3)] == [0, 1, 2]
        assert buf.peek() == 2
        assert buf.peek_oldest() == 0

    def test_overwrites_oldest_when_full(self):
        buf = RingBuffer[int](3)
        for i in range(5):
            buf.push(i)

        assert buf.is_full
        assert buf.to_list() == [2, 3, 4]
        assert buf.get(0) == 2
        assert buf.peek() == 4

    def test_iteration_is_oldest_first(self):
        buf = RingBuffer[str](2)
        for item in "abc":
            buf.push(item)
        assert list(buf) == ["b", "c"]

    def test_clear_resets_state(self):
        buf = RingBuffer[int](4)
        for i in range(6):
            buf.push(i)
        buf.clear()

        assert buf.is_empty
        assert buf.to_list() == []
        buf.push(9)
        assert buf.to_list() == [9]


class TestRingBufferErrors:
    def test_out_of_range_get(self):
        buf = RingBuffer[int](3)
        buf.push(1)
        with pytest.raises(RingBufferIndexError):
            buf.get(1)
        with pytest.raises(IndexError):
            buf.get(-1)

    def test_peek_on_empty(self):
        buf = RingBuffer[int](3)
        with pytest.raises(RingBufferIndexError):
            buf.peek()
        with pytest.raises(RingBufferIndexError):
            buf.peek_oldest()


class TestRingBufferCopyTo:
    def test_copy_into_preallocated_destination(self):
        buf = RingBuffer[float](4)
        for v in (1.0, 2.0, 3.0, 4.0, 5.0):
            buf.push(v)
        dest = np.zeros(6, dtype=np.float32)

        buf.copy_to(dest, dest_offset=1)

        np.testing.assert_array_equal(dest, [0.0, 2.0, 3.0, 4.0, 5.0, 0.0])

    def test_copy_partial_range(self):
        buf = RingBuffer[float](5)
        for v in range(5):
            buf.push(float(v))
        dest = np.zeros(2, dtype=np.float32)

        buf.copy_to(dest, start_index=2, count=2)

        np.testing.assert_array_equal(dest, [2.0, 3.0])

    def test_copy_invalid_ranges(self):
        buf = RingBuffer[float](3)
        buf.push(1.0)
        dest = np.zeros(3, dtype=np.float32)
        with pytest.raises(ValueError):
            buf.copy_to(dest, start_index=0, count=2)
        with pytest.raises(ValueError):
            buf.copy_to(np.zeros(0, dtype=np.float32))


class TestSampleRingBuffer:
    def test_to_array_orders_oldest_first_after_wrap(self):
        buf = SampleRingBuffer(3, 2)
        for i in range(5):
            buf.push([i, 10 * i])

        arr = buf.to_array()

        assert arr.shape == (3, 2)
        assert arr.dtype == np.float32
        np.testing.assert_array_equal(arr[:, 0], [2, 3, 4])
        np.testing.assert_array_equal(buf.channel(1), [20, 30, 40])

    def test_copy_into_flattens_row_major(self):
        buf = SampleRingBuffer(3, 2)
        for i in range(4):
            buf.push([i, -i])
        dest = np.full(8, -99.0, dtype=np.float32)

        written = buf.copy_into(dest)

        assert written == 6
        np.testing.assert_array_equal(dest[:6], [1, -1, 2, -2, 3, -3])
        assert dest[6] == -99.0

    def test_copy_into_rejects_small_destination(self):
        buf = SampleRingBuffer(2, 3)
        buf.push([1, 2, 3])
        buf.push([4, 5, 6])
        with pytest.raises(ValueError):
            buf.copy_into(np.zeros(5, dtype=np.float32))

    def test_push_shape_mismatch(self):
        buf = SampleRingBuffer(4, 6)
        with pytest.raises(ValueError):
            buf.push([1.0, 2.0])

    def test_get_returns_copy(self):
        buf = SampleRingBuffer(2, 2)
        buf.push([1, 2])
        row = buf.get(0)
        row[0] = 100
        assert buf.get(0)[0] == 1
