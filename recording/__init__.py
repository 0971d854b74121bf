"""Persistence adapters for recorded sample sessions."""

from .csv_store import LabeledSample, SampleLoggerThread, read_labeled_samples, write_labeled_samples

__all__ = [
    "LabeledSample",
    "SampleLoggerThread",
    "read_labeled_samples",
    "write_labeled_samples",
]
