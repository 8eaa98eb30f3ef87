"""
Base classes and interfaces for Topkapi stream summaries.

This module defines the abstract interface shared by the frequency sketches
in this package, together with the benchmarking hooks used to measure their
update cost and memory footprint.
"""

import abc
import sys
import time
from collections import deque
from typing import Any, Deque, Dict, Generic, List, Optional, Tuple, TypeVar

T = TypeVar("T")  # Type for the items being processed
R = TypeVar("R")  # Type for the result of queries


class StreamSummary(Generic[T, R], abc.ABC):
    """
    Abstract base class for streaming data structures.

    A stream summary is updated one (possibly weighted) item at a time,
    answers approximate queries about what it has seen, and can be merged
    with another summary of the same type and shape.
    """

    def __init__(self, memory_limit_bytes: Optional[int] = None):
        """
        Initialize a new stream summary.

        Args:
            memory_limit_bytes: Optional maximum memory usage in bytes.
                                None means no explicit limit.
        """
        self._memory_limit_bytes = memory_limit_bytes
        self._items_processed = 0

        # Performance tracking attributes
        self._last_update_time: float = 0.0
        self._total_update_time: float = 0.0
        self._update_count: int = 0

        self._track_recent_updates: bool = False
        self._recent_update_times: Optional[Deque[float]] = None
        self._max_update_history: int = 100

    @abc.abstractmethod
    def update(self, item: T) -> None:
        """
        Record bookkeeping for a new item from the stream.

        Subclasses call ``super().update(item)`` once per accepted item and
        then apply their own update logic.

        Args:
            item: The new item to process.
        """
        self._items_processed += 1

    def _record_update_time(self, started: float) -> None:
        """Record the duration of an update that began at ``started``."""
        self._last_update_time = time.perf_counter() - started
        self._total_update_time += self._last_update_time
        self._update_count += 1

        if self._recent_update_times is not None:
            self._recent_update_times.append(self._last_update_time)

    @abc.abstractmethod
    def query(self, *args: Any, **kwargs: Any) -> R:
        """
        Query the current state of the summary.

        Returns:
            The result of the query, which depends on the specific algorithm.
        """

    @abc.abstractmethod
    def merge(self, other: "StreamSummary[T, R]") -> "StreamSummary[T, R]":
        """
        Merge this summary with another of the same type.

        Args:
            other: Another stream summary of the same type.

        Returns:
            A new merged stream summary.

        Raises:
            TypeError: If other is not of the same type.
        """

    def _check_same_type(self, other: "StreamSummary[T, R]") -> None:
        """
        Check that another summary is of the same type as this one.

        Raises:
            TypeError: If other is not of the same type.
        """
        if not isinstance(other, self.__class__):
            raise TypeError(f"Cannot merge with {other.__class__.__name__}")

    def _combine_items_processed(self, other: "StreamSummary[T, R]") -> int:
        """Return the combined count of processed items for a merge."""
        return self._items_processed + other._items_processed

    def estimate_size(self) -> int:
        """
        Estimate the current memory usage of this summary in bytes.

        Subclasses override this to add their own data structures; the base
        implementation only accounts for the object and its bookkeeping.

        Returns:
            Estimated memory usage in bytes.
        """
        size = sys.getsizeof(self)

        if hasattr(self, "__dict__"):
            size += sys.getsizeof(self.__dict__)

        if self._recent_update_times is not None:
            size += sys.getsizeof(self._recent_update_times)
            size += len(self._recent_update_times) * sys.getsizeof(0.0)

        return size

    def check_memory_limit(self) -> bool:
        """
        Check if the current memory usage is within the configured limit.

        Returns:
            True if there is no limit or usage is within it, False otherwise.
        """
        if self._memory_limit_bytes is None:
            return True

        return self.estimate_size() <= self._memory_limit_bytes

    def enable_performance_tracking(
        self, track_recent_updates: bool = True, max_history: int = 100
    ) -> None:
        """
        Enable timing of updates for benchmarking.

        Timing adds overhead to every update, so it should only be enabled
        when benchmarking or debugging performance issues.

        Args:
            track_recent_updates: Whether to keep the durations of recent updates.
            max_history: Maximum number of recent update durations to keep.
        """
        self._track_recent_updates = True
        self._max_update_history = max(1, max_history)

        if track_recent_updates:
            self._recent_update_times = deque(maxlen=self._max_update_history)
        else:
            self._recent_update_times = None

    def disable_performance_tracking(self) -> None:
        """Disable performance tracking to reduce overhead."""
        self._track_recent_updates = False
        self._recent_update_times = None

    @property
    def performance_tracking_enabled(self) -> bool:
        """Whether updates are currently being timed."""
        return self._track_recent_updates

    def get_performance_stats(self) -> Dict[str, Any]:
        """
        Get performance statistics for this summary.

        Returns:
            A dictionary with the number of items processed, the memory
            estimate and, when tracking is enabled, update timings in
            nanoseconds.
        """
        stats: Dict[str, Any] = {
            "items_processed": self._items_processed,
            "memory_bytes": self.estimate_size(),
        }

        if self._update_count > 0:
            stats["avg_update_time_ns"] = (
                self._total_update_time / self._update_count
            ) * 1e9
            stats["last_update_time_ns"] = self._last_update_time * 1e9

        if self._recent_update_times:
            recent_times_ns = [t * 1e9 for t in self._recent_update_times]
            stats["recent_update_times_ns"] = recent_times_ns
            stats["min_update_time_ns"] = min(recent_times_ns)
            stats["max_update_time_ns"] = max(recent_times_ns)

        return stats

    def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the current state of the summary.

        Subclasses extend this with algorithm-specific entries while calling
        ``super().get_stats()`` for the common ones.

        Returns:
            A dictionary of statistics, including the error bounds.
        """
        stats: Dict[str, Any] = {
            "type": self.__class__.__name__,
            "items_processed": self._items_processed,
            "memory_bytes": self.estimate_size(),
        }

        if self._memory_limit_bytes is not None:
            stats["memory_limit_bytes"] = self._memory_limit_bytes
            stats["memory_usage_pct"] = (
                self.estimate_size() / self._memory_limit_bytes
            ) * 100

        if self._update_count > 0:
            stats["avg_update_time_ns"] = (
                self._total_update_time / self._update_count
            ) * 1e9

        stats.update(self.error_bounds())

        return stats

    def error_bounds(self) -> Dict[str, Any]:
        """
        Get the theoretical error bounds for this summary.

        The base implementation returns an empty dictionary.
        """
        return {}

    @property
    def items_processed(self) -> int:
        """Get the total number of items processed by this summary."""
        return self._items_processed


class FrequencyEstimator(StreamSummary[T, float], abc.ABC):
    """
    Abstract base class for frequency estimation algorithms.

    Frequency estimators answer point queries for a single item and report
    the items that account for a significant share of the stream.
    """

    @abc.abstractmethod
    def estimate_frequency(self, item: T) -> float:
        """
        Estimate the total weight of an item in the stream.

        Args:
            item: The item to estimate the frequency for.

        Returns:
            The estimated frequency of the item.
        """

    @abc.abstractmethod
    def get_heavy_hitters(self, threshold: float) -> Dict[T, float]:
        """
        Get items whose share of the stream is at least the threshold.

        Args:
            threshold: The minimum frequency ratio (0.0 to 1.0) to include.

        Returns:
            A dictionary mapping items to their estimated frequencies.
        """

    @abc.abstractmethod
    def get_top_k(self, k: Optional[int] = None) -> List[Tuple[T, float]]:
        """
        Get the k most frequent items, most frequent first.

        Args:
            k: The number of items to return. None returns every tracked item.
        """

    def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the current state of the frequency estimator.

        Adds the number of heavy hitters at a few common thresholds.
        """
        stats = super().get_stats()

        stats["heavy_hitters_1pct"] = len(self.get_heavy_hitters(0.01))
        stats["heavy_hitters_5pct"] = len(self.get_heavy_hitters(0.05))
        stats["heavy_hitters_10pct"] = len(self.get_heavy_hitters(0.10))

        return stats
