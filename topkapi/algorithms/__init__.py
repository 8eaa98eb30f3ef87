"""
Algorithm implementations for topkapi.
"""

from topkapi.algorithms.topkapi import Cell, LocalHeavyHitter, TopKapiSketch

__all__ = [
    "TopKapiSketch",
    "LocalHeavyHitter",
    "Cell",
]
