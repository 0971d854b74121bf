"""Core session wiring and background workers."""

from .inference import InferenceLoop, InferenceUpdate
from .session import ClassificationSession
from .training_worker import TrainingWorker

__all__ = [
    "ClassificationSession",
    "InferenceLoop",
    "InferenceUpdate",
    "TrainingWorker",
]
