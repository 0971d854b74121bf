"""CSV persistence for labeled motion samples and a background sample logger."""
from __future__ import annotations

import csv
import logging
import os
import queue
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Union

import numpy as np

from shared.models import MOTION_AXES, MotionSample

logger = logging.getLogger(__name__)

CSV_FIELDS = ("timestamp_ns", "label", "session_id", *MOTION_AXES)


class EndOfSamples:
    """Sentinel that tells SampleLoggerThread to flush and exit."""


@dataclass(frozen=True)
class LabeledSample:
    timestamp_ns: int
    label: str
    session_id: int
    ax: float
    ay: float
    az: float
    gx: float
    gy: float
    gz: float

    @property
    def values(self) -> np.ndarray:
        return np.array([self.ax, self.ay, self.az, self.gx, self.gy, self.gz], dtype=np.float32)

    def to_motion_sample(self) -> MotionSample:
        return MotionSample(values=self.values, timestamp_ns=self.timestamp_ns)

    @classmethod
    def from_motion_sample(cls, sample: MotionSample, label: str, session_id: int) -> "LabeledSample":
        ax, ay, az, gx, gy, gz = (float(v) for v in sample.values)
        return cls(sample.timestamp_ns, label, session_id, ax, ay, az, gx, gy, gz)

    def to_row(self) -> dict:
        return {
            "timestamp_ns": self.timestamp_ns,
            "label": self.label,
            "session_id": self.session_id,
            "ax": self.ax,
            "ay": self.ay,
            "az": self.az,
            "gx": self.gx,
            "gy": self.gy,
            "gz": self.gz,
        }


def _parse_row(row: dict, line_no: int) -> LabeledSample:
    try:
        return LabeledSample(
            timestamp_ns=int(row["timestamp_ns"]),
            label=str(row.get("label") or ""),
            session_id=int(row.get("session_id") or 0),
            **{axis: float(row[axis]) for axis in MOTION_AXES},
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"line {line_no}: invalid sample row ({exc})") from None


def read_labeled_samples(path: Union[str, Path]) -> List[LabeledSample]:
    """Load every row of a labeled sample CSV; a malformed row raises ValueError."""
    with open(path, "r", newline="", encoding="utf-8") as fh:
        reader = csv.DictReader(fh)
        missing = [name for name in ("timestamp_ns", *MOTION_AXES) if name not in (reader.fieldnames or ())]
        if missing:
            raise ValueError(f"{path}: missing columns {', '.join(missing)}")
        samples = [_parse_row(row, i) for i, row in enumerate(reader, start=2)]
    logger.info("Read %d samples from %s", len(samples), path)
    return samples


def write_labeled_samples(path: Union[str, Path], records: Iterable[LabeledSample]) -> int:
    out_dir = os.path.dirname(os.fspath(path))
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    count = 0
    with open(path, "w", newline="", encoding="utf-8") as fh:
        writer = csv.DictWriter(fh, fieldnames=CSV_FIELDS)
        writer.writeheader()
        for record in records:
            writer.writerow(record.to_row())
            count += 1
    logger.info("Wrote %d samples to %s", count, path)
    return count


class SampleLoggerThread:
    """
    Consumes LabeledSample objects from a queue and appends them to a CSV file.
    """

    def __init__(
        self,
        data_queue: "queue.Queue[Union[LabeledSample, type[EndOfSamples]]]",
        out_path: Union[str, Path],
    ) -> None:
        self._queue = data_queue
        self._out_path = os.fspath(out_path)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._fh = None
        self._writer: Optional[csv.DictWriter] = None
        self._rows_written = 0

    @property
    def rows_written(self) -> int:
        return self._rows_written

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            logger.warning("SampleLoggerThread already running")
            return

        out_dir = os.path.dirname(self._out_path)
        if out_dir:
            os.makedirs(out_dir, exist_ok=True)

        write_header = not os.path.exists(self._out_path) or os.path.getsize(self._out_path) == 0
        try:
            self._fh = open(self._out_path, "a", newline="", encoding="utf-8")
        except OSError as exc:
            logger.error("Failed to open sample log %s: %s", self._out_path, exc)
            raise
        self._writer = csv.DictWriter(self._fh, fieldnames=CSV_FIELDS)
        if write_header:
            self._writer.writeheader()

        self._stop_event.clear()
        self._rows_written = 0
        self._thread = threading.Thread(
            target=self._run,
            name="SampleLoggerThread",
            daemon=False,  # rows must be flushed before exit
        )
        self._thread.start()
        logger.info("SampleLoggerThread started: %s", self._out_path)

    def stop(self, join_timeout: float = 2.0) -> None:
        self._stop_event.set()

        if self._thread is not None:
            self._thread.join(timeout=join_timeout)
            if self._thread.is_alive():
                logger.warning("SampleLoggerThread did not stop within timeout")
            self._thread = None

        if self._fh is not None:
            try:
                self._fh.close()
            except OSError as exc:
                logger.warning("Error closing sample log: %s", exc)
            self._fh = None
            self._writer = None

        logger.info("SampleLoggerThread stopped: %d rows", self._rows_written)

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                item = self._queue.get(timeout=0.05)
            except queue.Empty:
                continue

            try:
                if item is EndOfSamples:
                    logger.debug("SampleLoggerThread received EndOfSamples")
                    break

                if not isinstance(item, LabeledSample):
                    logger.warning("SampleLoggerThread received non-sample: %s", type(item))
                    continue

                self._write(item)
            finally:
                self._queue.task_done()
        if self._fh is not None:
            self._fh.flush()

    def _write(self, record: LabeledSample) -> None:
        if self._writer is None:
            return
        self._writer.writerow(record.to_row())
        self._rows_written += 1


__all__ = [
    "CSV_FIELDS",
    "EndOfSamples",
    "LabeledSample",
    "SampleLoggerThread",
    "read_labeled_samples",
    "write_labeled_samples",
]
