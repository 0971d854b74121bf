"""
Feedforward classifier, its trainer and on-disk model formats.
"""

from .classifier import FeedforwardClassifier
from .layers import DenseLayer, clip_by_norm, he_normal
from .model_store import ModelInfo, ModelStore
from .network import FeedforwardNetwork, ModelSnapshot, NetworkParameters
from .trainer import TrainResult, Trainer, TrainingConfig, TrainingState

__all__ = [
    "DenseLayer",
    "FeedforwardClassifier",
    "FeedforwardNetwork",
    "ModelInfo",
    "ModelSnapshot",
    "ModelStore",
    "NetworkParameters",
    "TrainResult",
    "Trainer",
    "TrainingConfig",
    "TrainingState",
    "clip_by_norm",
    "he_normal",
]
