from .aggregator import TemporalAggregator
from .fusion import FusedResult, FusionMethod, fuse
from .strategies import STRATEGIES, AggregatorConfig, aggregate

__all__ = [
    "AggregatorConfig",
    "FusedResult",
    "FusionMethod",
    "STRATEGIES",
    "TemporalAggregator",
    "aggregate",
    "fuse",
]
