from __future__ import annotations

from collections import OrderedDict
from typing import Dict, Hashable, Iterable, Iterator, List, Optional, Protocol, Sequence, Tuple, TypeVar

import numpy as np

from shared.models import MotionSample, Window
from shared.ring_buffer import SampleRingBuffer

T = TypeVar("T")

DEFAULT_WINDOW_SIZE = 50
DEFAULT_WINDOW_STEP = 25


class LabeledRecord(Protocol):
    timestamp_ns: int
    label: str
    session_id: int

    def to_motion_sample(self) -> MotionSample:
        ...


def _check_window(size: int, step: int) -> None:
    if size <= 0:
        raise ValueError("window size must be positive")
    if step <= 0:
        raise ValueError("window step must be positive")


def sliding_windows(samples: Sequence[T], size: int, step: int) -> Iterator[Sequence[T]]:
    """Yield complete windows of `size` items, advancing by `step`; a short tail is dropped."""
    _check_window(size, step)
    start = 0
    while start + size <= len(samples):
        yield samples[start : start + size]
        start += step


def build_training_windows(
    records: Iterable[LabeledRecord],
    size: int = DEFAULT_WINDOW_SIZE,
    step: int = DEFAULT_WINDOW_STEP,
) -> List[Window]:
    """
    Slice labeled records into training windows.

    Records are grouped by (label, session_id) in first-seen order and each
    group is sorted by timestamp, so a window never spans two classes or two
    recording sessions.
    """
    _check_window(size, step)
    groups: Dict[Tuple[str, Hashable], List[LabeledRecord]] = OrderedDict()
    for record in records:
        groups.setdefault((record.label, record.session_id), []).append(record)

    windows: List[Window] = []
    for (label, session_id), group in groups.items():
        ordered = sorted(group, key=lambda r: r.timestamp_ns)
        for chunk in sliding_windows(ordered, size, step):
            windows.append(
                Window(
                    samples=tuple(r.to_motion_sample() for r in chunk),
                    label=label,
                    session_id=session_id,  # type: ignore[arg-type]
                )
            )
    return windows


class StreamWindower:
    """
    Live windowing over a SampleRingBuffer.

    `push` returns True each time `step` new samples have arrived since the
    last window and the buffer holds a full window.
    """

    def __init__(self, window_size: int = DEFAULT_WINDOW_SIZE, step: int = DEFAULT_WINDOW_STEP, n_axes: int = 6) -> None:
        _check_window(window_size, step)
        if step > window_size:
            raise ValueError("window step must not exceed window size")
        self._buffer = SampleRingBuffer(window_size, n_axes)
        self._step = step
        self._since_last = 0
        self._last_timestamp_ns: Optional[int] = None

    @property
    def buffer(self) -> SampleRingBuffer:
        return self._buffer

    @property
    def window_size(self) -> int:
        return self._buffer.capacity

    @property
    def step(self) -> int:
        return self._step

    @property
    def last_timestamp_ns(self) -> Optional[int]:
        return self._last_timestamp_ns

    def push(self, values: Sequence[float] | np.ndarray, timestamp_ns: Optional[int] = None) -> bool:
        self._buffer.push(values)
        if timestamp_ns is not None:
            self._last_timestamp_ns = int(timestamp_ns)
        self._since_last += 1
        if self._buffer.is_full and self._since_last >= self._step:
            self._since_last = 0
            return True
        return False

    def push_sample(self, sample: MotionSample) -> bool:
        return self.push(sample.values, sample.timestamp_ns)

    def is_ready(self) -> bool:
        return self._buffer.is_full

    def latest(self) -> np.ndarray:
        """Current window contents, oldest first, shape (n, axes)."""
        return self._buffer.to_array()

    def reset(self) -> None:
        self._buffer.clear()
        self._since_last = 0
        self._last_timestamp_ns = None


__all__ = [
    "DEFAULT_WINDOW_SIZE",
    "DEFAULT_WINDOW_STEP",
    "LabeledRecord",
    "StreamWindower",
    "build_training_windows",
    "sliding_windows",
]
