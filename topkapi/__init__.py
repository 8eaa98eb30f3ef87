"""
topkapi - Mergeable heavy hitter sketches

topkapi is a Python library for finding the most frequent keys of a weighted
data stream with a fixed memory footprint, using sketches that can be built
per shard and merged into one aggregate view.
"""

__version__ = "0.1.0"

# Import main classes to make them available at the top level
from topkapi.algorithms.topkapi import Cell, LocalHeavyHitter, TopKapiSketch
from topkapi.core.base import FrequencyEstimator, StreamSummary
from topkapi.core.exceptions import (
    IncompatibleSketches,
    InvalidParameter,
    TopKapiError,
    UnhashableKey,
)

__all__ = [
    # Core base classes
    "StreamSummary",
    "FrequencyEstimator",
    # Errors
    "TopKapiError",
    "InvalidParameter",
    "IncompatibleSketches",
    "UnhashableKey",
    # Algorithm implementations
    "TopKapiSketch",
    "LocalHeavyHitter",
    "Cell",
]
