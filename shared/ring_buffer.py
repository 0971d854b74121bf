from __future__ import annotations

from typing import Generic, Iterator, List, Optional, Sequence, TypeVar

import numpy as np

T = TypeVar("T")


class RingBufferIndexError(IndexError):
    """Raised on out-of-range access or when peeking an empty buffer."""


class RingBuffer(Generic[T]):
    """
    Fixed-capacity circular buffer that overwrites the oldest entry once full.

    Index 0 is always the oldest retained element. The buffer performs no
    locking; a producer and a consumer living on different threads must
    serialize access themselves.
    """

    def __init__(self, capacity: int) -> None:
        capacity = int(capacity)
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._items: List[Optional[T]] = [None] * capacity
        self._write_pos = 0
        self._size = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def size(self) -> int:
        return self._size

    @property
    def is_empty(self) -> bool:
        return self._size == 0

    @property
    def is_full(self) -> bool:
        return self._size == self._capacity

    def push(self, item: T) -> None:
        self._items[self._write_pos] = item
        self._write_pos = (self._write_pos + 1) % self._capacity
        if self._size < self._capacity:
            self._size += 1

    def _physical_index(self, index: int) -> int:
        if self._size < self._capacity:
            return index
        return (self._write_pos + index) % self._capacity

    def get(self, index: int) -> T:
        if not 0 <= index < self._size:
            raise RingBufferIndexError(f"index {index} out of range for size {self._size}")
        return self._items[self._physical_index(index)]  # type: ignore[return-value]

    def __getitem__(self, index: int) -> T:
        return self.get(index)

    def peek(self) -> T:
        """Return the most recently pushed element."""
        if self._size == 0:
            raise RingBufferIndexError("peek on empty buffer")
        return self._items[(self._write_pos - 1) % self._capacity]  # type: ignore[return-value]

    def peek_oldest(self) -> T:
        if self._size == 0:
            raise RingBufferIndexError("peek on empty buffer")
        return self.get(0)

    def clear(self) -> None:
        for i in range(self._capacity):
            self._items[i] = None
        self._write_pos = 0
        self._size = 0

    def to_list(self) -> List[T]:
        return [self.get(i) for i in range(self._size)]

    def __iter__(self) -> Iterator[T]:
        for i in range(self._size):
            yield self.get(i)

    def __len__(self) -> int:
        return self._size

    def copy_to(
        self,
        destination: np.ndarray,
        dest_offset: int = 0,
        start_index: int = 0,
        count: Optional[int] = None,
    ) -> None:
        """
        Copy numeric elements (oldest first) into `destination` in place.

        Used on the inference path so each tick reuses one preallocated array.
        """
        if count is None:
            count = self._size - start_index
        if count < 0 or start_index < 0 or start_index + count > self._size:
            raise ValueError("invalid start_index/count for buffer contents")
        if dest_offset < 0 or dest_offset + count > destination.shape[0]:
            raise ValueError("destination overflow")
        for i in range(count):
            destination[dest_offset + i] = float(self.get(start_index + i))  # type: ignore[arg-type]


class SampleRingBuffer:
    """
    Multi-axis sample ring backed by a preallocated NumPy array.

    Rows are samples, columns are axes (for example ax, ay, az, gx, gy, gz).
    """

    def __init__(self, window_size: int, n_axes: int, dtype: np.dtype | str = np.float32) -> None:
        window_size = int(window_size)
        n_axes = int(n_axes)
        if window_size <= 0:
            raise ValueError("window_size must be positive")
        if n_axes <= 0:
            raise ValueError("n_axes must be positive")
        self._capacity = window_size
        self._n_axes = n_axes
        self._data = np.zeros((window_size, n_axes), dtype=dtype)
        self._write_pos = 0
        self._size = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def n_axes(self) -> int:
        return self._n_axes

    @property
    def size(self) -> int:
        return self._size

    @property
    def is_full(self) -> bool:
        return self._size == self._capacity

    @property
    def is_empty(self) -> bool:
        return self._size == 0

    def __len__(self) -> int:
        return self._size

    def push(self, values: Sequence[float] | np.ndarray) -> None:
        row = np.asarray(values, dtype=self._data.dtype)
        if row.shape != (self._n_axes,):
            raise ValueError(f"expected {self._n_axes} values, got shape {row.shape}")
        self._data[self._write_pos] = row
        self._write_pos = (self._write_pos + 1) % self._capacity
        if self._size < self._capacity:
            self._size += 1

    def _start(self) -> int:
        return 0 if self._size < self._capacity else self._write_pos

    def get(self, index: int) -> np.ndarray:
        if not 0 <= index < self._size:
            raise RingBufferIndexError(f"index {index} out of range for size {self._size}")
        return self._data[(self._start() + index) % self._capacity].copy()

    def to_array(self) -> np.ndarray:
        """Return a (size, n_axes) copy ordered oldest -> newest."""
        if self._size < self._capacity:
            return self._data[: self._size].copy()
        return np.concatenate((self._data[self._write_pos :], self._data[: self._write_pos]), axis=0)

    def channel(self, axis: int) -> np.ndarray:
        if not 0 <= axis < self._n_axes:
            raise RingBufferIndexError(f"axis {axis} out of range for {self._n_axes} axes")
        return self.to_array()[:, axis]

    def copy_into(self, destination: np.ndarray) -> int:
        """
        Flatten the contents row-major (oldest first) into `destination`.

        Returns the number of values written. No intermediate array is built.
        """
        total = self._size * self._n_axes
        if destination.ndim != 1 or destination.shape[0] < total:
            raise ValueError("destination must be 1D with room for size * n_axes values")
        start = self._start()
        first = min(self._size, self._capacity - start)
        head = first * self._n_axes
        destination[:head] = self._data[start : start + first].reshape(-1)
        remaining = self._size - first
        if remaining > 0:
            destination[head:total] = self._data[:remaining].reshape(-1)
        return total

    def clear(self) -> None:
        self._data.fill(0)
        self._write_pos = 0
        self._size = 0


__all__ = ["RingBuffer", "RingBufferIndexError", "SampleRingBuffer"]
