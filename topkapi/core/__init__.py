"""
Core functionality for topkapi.
"""

from topkapi.core.base import FrequencyEstimator, StreamSummary
from topkapi.core.exceptions import (
    IncompatibleSketches,
    InvalidParameter,
    TopKapiError,
    UnhashableKey,
)
from topkapi.core.hash import fnv1a_64, murmurhash3_32, murmurhash3_64

__all__ = [
    # Base classes
    "StreamSummary",
    "FrequencyEstimator",
    # Errors
    "TopKapiError",
    "InvalidParameter",
    "IncompatibleSketches",
    "UnhashableKey",
    # Utility functions
    "murmurhash3_32",
    "murmurhash3_64",
    "fnv1a_64",
]
