"""
Topkapi sketch implementation.

This module provides the Topkapi sketch, a mergeable probabilistic data
structure for finding the heavy hitters (most frequent keys) of a weighted
stream. It combines a Count-Min style grid of frequency counters with a
per-cell Frequent-style candidate, so that every cell remembers both an
upper bound on the weight routed through it and the key most likely to own
that weight.

The Topkapi sketch provides the following properties:
1. Space Complexity: O(rows * buckets), fixed at construction
2. Update Time: O(rows)
3. Query Time: O(rows * buckets) for extracting all heavy hitters
4. Error Bound: For a single (unmerged) sketch, with probability at least
   1 - delta, frequency estimates are within epsilon * N of the true value,
   where N is the total inserted weight.

Merging two sketches resolves cells whose candidates disagree with a
heuristic (the stronger candidate wins the cell outright). The weight of the
losing candidate is discarded, so the error bound above is not guaranteed
for merged sketches; it is checked empirically by the test suite instead.

References:
    - Mandal, A., Jiang, H., Shrivastava, A., & Sarkar, V. (2018).
      Topkapi: Parallel and fast sketches for finding top-K frequent elements.
      In Advances in Neural Information Processing Systems (pp. 10898-10908).
"""

import logging
import math
import sys
import time
from typing import (
    Any,
    Callable,
    Dict,
    Hashable,
    List,
    NamedTuple,
    Optional,
    Tuple,
    TypeVar,
)

from topkapi.core.base import FrequencyEstimator
from topkapi.core.exceptions import IncompatibleSketches, InvalidParameter, UnhashableKey
from topkapi.core.hash import murmurhash3_64

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)  # Type for the keys being counted

HashFunction = Callable[[Any], int]

_MASK_32 = 0xFFFFFFFF

# Safety margin on buckets per (k * log corpus size) for top-k sizing; below
# this the error introduced by repeated merges grows quickly.
_TOP_K_BUCKET_FACTOR = 55
_TOP_K_ROWS = 4


class _Empty:
    """Marker for a cell that has never held a candidate."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "<empty>"


_EMPTY: Any = _Empty()


def _same_candidate(a: Any, b: Any) -> bool:
    """Compare two candidates, treating the empty marker as a distinct value."""
    if a is _EMPTY or b is _EMPTY:
        return a is b
    return a == b


class Cell:
    """
    One cell of the Topkapi grid.

    ``frequency`` is an upper bound on all weight routed through the cell,
    whatever the key. ``score`` is the lead of ``candidate`` over the other
    keys that collided here; it never drops below 1 while a candidate is held.
    """

    __slots__ = ["frequency", "score", "candidate"]

    def __init__(self, frequency: int = 0, score: int = 0, candidate: Any = _EMPTY):
        self.frequency = frequency
        self.score = score
        self.candidate = candidate

    def is_empty(self) -> bool:
        """Return True if no key has ever been written to this cell."""
        return self.candidate is _EMPTY

    def copy(self) -> "Cell":
        return Cell(self.frequency, self.score, self.candidate)

    def __repr__(self) -> str:
        return (
            f"Cell(frequency={self.frequency}, score={self.score}, "
            f"candidate={self.candidate!r})"
        )


class LocalHeavyHitter(NamedTuple):
    """A key reported by a sketch together with its estimated count."""

    key: Any
    count: int


class TopKapiSketch(FrequencyEstimator[K]):
    """
    Topkapi sketch for heavy hitter detection in weighted data streams.

    The grid has ``rows`` independent rows of ``buckets`` cells. A key is
    routed to one cell per row by double hashing a 64-bit digest. Each visit
    adds the weight to the cell's frequency counter and runs a conservative
    update against the cell's current candidate: the incumbent gains the
    weight if it is the same key, otherwise it loses it and is evicted once
    its lead is exhausted.

    Sketches with identical dimensions (and the same hash function) built
    over disjoint shards of a stream can be merged into one.

    The sketch is not thread-safe. Inserts and merges must be serialized by
    the caller; concurrent reads are safe only while nothing mutates it.
    """

    def __init__(
        self,
        buckets: int,
        rows: int = _TOP_K_ROWS,
        memory_limit_bytes: Optional[int] = None,
        hash_function: Optional[HashFunction] = None,
    ):
        """
        Initialize a new Topkapi sketch with explicit dimensions.

        Most callers should use ``create_from_error_rate`` or
        ``create_for_top_k`` instead, which derive the dimensions.

        Args:
            buckets: Number of cells per row. Larger values reduce collisions.
            rows: Number of independent hash rows. Larger values reduce the
                  probability that every row overestimates a key.
            memory_limit_bytes: Optional maximum memory usage in bytes.
            hash_function: Deterministic 64-bit hash of a key. Equal keys must
                           hash identically. Defaults to ``murmurhash3_64``.

        Raises:
            InvalidParameter: If buckets or rows is less than 1.
        """
        super().__init__(memory_limit_bytes)

        if buckets < 1:
            raise InvalidParameter("Buckets must be at least 1")
        if rows < 1:
            raise InvalidParameter("Rows must be at least 1")

        self._buckets = int(buckets)
        self._rows = int(rows)
        self._hash_function = hash_function or murmurhash3_64

        # Row-major arena: the cell for (row, bucket) is at row * buckets + bucket
        self._cells: List[Cell] = [Cell() for _ in range(self._rows * self._buckets)]

        self._total_weight = 0
        self._merged = False

        logger.debug("Created %r", self)

    @classmethod
    def create_from_error_rate(
        cls,
        epsilon: float,
        delta: float,
        memory_limit_bytes: Optional[int] = None,
        hash_function: Optional[HashFunction] = None,
    ) -> "TopKapiSketch[K]":
        """
        Create a sketch sized for an error factor and failure probability.

        Uses ``buckets = ceil(1 / epsilon)`` and ``rows = floor(ln(2 / delta))``.
        The row count is truncated, which can only weaken the guarantee; pass
        a smaller delta if the bound must hold exactly. For delta above 2/e the
        truncated row count is zero and a single row is used instead, so
        ``delta()`` then reports 2/e rather than the delta passed in.

        Args:
            epsilon: Relative error factor, in the open interval (0, 1).
            delta: Failure probability, in the open interval (0, 1).
            memory_limit_bytes: Optional maximum memory usage in bytes.
            hash_function: Optional 64-bit hash function for keys.

        Returns:
            A new, empty TopKapiSketch.

        Raises:
            InvalidParameter: If epsilon or delta is not in (0, 1).
        """
        if not 0 < epsilon < 1:
            raise InvalidParameter("Epsilon must be in the open interval (0, 1)")
        if not 0 < delta < 1:
            raise InvalidParameter("Delta must be in the open interval (0, 1)")

        buckets = math.ceil(1.0 / epsilon)
        rows = max(1, int(math.log(2.0 / delta)))

        return cls(
            buckets=buckets,
            rows=rows,
            memory_limit_bytes=memory_limit_bytes,
            hash_function=hash_function,
        )

    @classmethod
    def create_for_top_k(
        cls,
        k: int,
        approx_corpus_size: int,
        delta: float,
        memory_limit_bytes: Optional[int] = None,
        hash_function: Optional[HashFunction] = None,
    ) -> "TopKapiSketch[K]":
        """
        Create a sketch sized for finding the top-k keys of a corpus.

        Uses ``buckets = floor(55 * k * ln(approx_corpus_size))`` and four
        rows. For example, top-20 over a corpus of one million keys needs
        15197 buckets.

        Args:
            k: Number of top keys the caller intends to extract (at least 1).
            approx_corpus_size: Approximate total weight of the stream.
            delta: Failure probability, in the open interval (0, 1). The
                   dimensions do not depend on it.
            memory_limit_bytes: Optional maximum memory usage in bytes.
            hash_function: Optional 64-bit hash function for keys.

        Returns:
            A new, empty TopKapiSketch.

        Raises:
            InvalidParameter: If k or approx_corpus_size is less than 1, or
                              delta is not in (0, 1).
        """
        if k < 1:
            raise InvalidParameter("k must be at least 1")
        if approx_corpus_size < 1:
            raise InvalidParameter("Approximate corpus size must be at least 1")
        if not 0 < delta < 1:
            raise InvalidParameter("Delta must be in the open interval (0, 1)")

        buckets = max(
            1, int(_TOP_K_BUCKET_FACTOR * k * math.log(approx_corpus_size))
        )

        return cls(
            buckets=buckets,
            rows=_TOP_K_ROWS,
            memory_limit_bytes=memory_limit_bytes,
            hash_function=hash_function,
        )

    @property
    def rows(self) -> int:
        """Number of hash rows."""
        return self._rows

    @property
    def buckets(self) -> int:
        """Number of cells per row."""
        return self._buckets

    @property
    def total_weight(self) -> int:
        """Sum of all weights inserted into this sketch (and merged into it)."""
        return self._total_weight

    @property
    def merged(self) -> bool:
        """Whether this sketch is the product of a merge."""
        return self._merged

    def epsilon(self) -> float:
        """The error factor implied by the current number of buckets."""
        return 1.0 / self._buckets

    def delta(self) -> float:
        """The failure probability implied by the current number of rows."""
        return 2.0 * math.exp(-self._rows)

    def _bucket_indices(self, key: K) -> List[int]:
        """
        Return the bucket index of ``key`` in every row.

        The 64-bit digest is split into halves h1 (low) and h2 (high); row i
        uses ``(h1 + i * h2) mod 2**32``, reduced modulo the bucket count.

        Raises:
            UnhashableKey: If the key cannot be hashed.
        """
        try:
            hash(key)
        except TypeError as e:
            raise UnhashableKey(key) from e

        try:
            digest = self._hash_function(key)
        except Exception as e:
            raise UnhashableKey(key) from e

        h1 = digest & _MASK_32
        h2 = (digest >> 32) & _MASK_32

        return [((h1 + i * h2) & _MASK_32) % self._buckets for i in range(self._rows)]

    def _cell(self, row: int, bucket: int) -> Cell:
        return self._cells[row * self._buckets + bucket]

    def insert(self, key: K, weight: int = 1) -> None:
        """
        Insert a weighted occurrence of a key.

        In every row the key's cell gains ``weight`` in its frequency counter.
        If the key is the cell's candidate its score grows by ``weight``;
        otherwise the candidate's score shrinks by ``weight`` and, once it is
        no longer positive, the key becomes the candidate with a score of 1.

        Args:
            key: Any hashable value.
            weight: Non-negative integer weight of the occurrence (default: 1).
                    A weight of 0 still claims empty cells for the key.

        Raises:
            InvalidParameter: If weight is not a non-negative integer.
            UnhashableKey: If the key cannot be hashed.
        """
        if isinstance(weight, bool) or not isinstance(weight, int):
            raise InvalidParameter(
                f"Weight must be an integer, got {type(weight).__name__}"
            )
        if weight < 0:
            raise InvalidParameter("Weight must be non-negative")

        indices = self._bucket_indices(key)

        started = time.perf_counter() if self._track_recent_updates else 0.0

        super().update(key)
        self._total_weight += weight

        for row, bucket in enumerate(indices):
            cell = self._cells[row * self._buckets + bucket]
            cell.frequency += weight

            if _same_candidate(cell.candidate, key):
                cell.score += weight
            else:
                cell.score -= weight
                if cell.score <= 0:
                    cell.candidate = key
                    cell.score = 1

        if self._track_recent_updates:
            self._record_update_time(started)

    def update(self, item: K, count: int = 1) -> None:
        """
        Update the sketch with a new item from the stream.

        Equivalent to ``insert(item, count)``.
        """
        self.insert(item, count)

    def result(self, threshold: float = 0) -> List[LocalHeavyHitter]:
        """
        Extract the candidate keys whose cells reached a frequency threshold.

        Every non-empty cell whose frequency is at least ``threshold``
        contributes its candidate. A key seen in several rows is reported
        once, with the smallest frequency among its qualifying cells.

        Keys that never held a cell (they were always outweighed) are not
        reported even if they were inserted.

        Args:
            threshold: Minimum cell frequency (default: 0, every candidate).

        Returns:
            LocalHeavyHitter entries sorted by descending count. The relative
            order of entries with equal counts is not specified.
        """
        seen: Dict[Any, int] = {}
        hitters: List[LocalHeavyHitter] = []

        for cell in self._cells:
            if cell.candidate is _EMPTY or cell.frequency < threshold:
                continue

            idx = seen.get(cell.candidate)
            if idx is None:
                seen[cell.candidate] = len(hitters)
                hitters.append(LocalHeavyHitter(cell.candidate, cell.frequency))
            elif cell.frequency < hitters[idx].count:
                hitters[idx] = LocalHeavyHitter(cell.candidate, cell.frequency)

        hitters.sort(key=lambda hitter: hitter.count, reverse=True)
        return hitters

    def query(self, item: K) -> float:
        """
        Query the sketch for an item's estimated frequency.

        This is a convenience method that calls estimate_frequency.
        """
        return self.estimate_frequency(item)

    def estimate_frequency(self, item: K) -> float:
        """
        Estimate the total weight of a key.

        Returns the smallest frequency counter among the key's cells. For an
        unmerged sketch this never underestimates the true weight.

        Raises:
            UnhashableKey: If the key cannot be hashed.
        """
        return min(
            self._cells[row * self._buckets + bucket].frequency
            for row, bucket in enumerate(self._bucket_indices(item))
        )

    def get_heavy_hitters(self, threshold: float) -> Dict[K, float]:
        """
        Get keys whose estimated share of the stream is at least the threshold.

        Args:
            threshold: The minimum frequency ratio (0.0 to 1.0) to include.
                      For example, 0.01 keeps keys with at least 1% of the
                      total weight.

        Returns:
            A dictionary mapping keys to their estimated frequencies.

        Raises:
            InvalidParameter: If threshold is not between 0 and 1.
        """
        if not 0 <= threshold <= 1:
            raise InvalidParameter("Threshold must be between 0 and 1")

        min_count = threshold * self._total_weight
        return {hitter.key: hitter.count for hitter in self.result(min_count)}

    def get_top_k(self, k: Optional[int] = None) -> List[Tuple[K, float]]:
        """
        Get the k keys with the highest estimates.

        Args:
            k: The number of keys to return. If None, returns every candidate.

        Returns:
            A list of (key, estimate) tuples, highest estimate first.

        Raises:
            InvalidParameter: If k is negative.
        """
        if k is not None and k < 0:
            raise InvalidParameter("k must be non-negative")

        hitters = self.result()
        if k is not None:
            hitters = hitters[:k]
        return [(hitter.key, hitter.count) for hitter in hitters]

    def copy(self) -> "TopKapiSketch[K]":
        """
        Return an independent copy of this sketch.

        The copy shares the hash function and keys but no mutable state.
        """
        result = self.__class__(
            buckets=self._buckets,
            rows=self._rows,
            memory_limit_bytes=self._memory_limit_bytes,
            hash_function=self._hash_function,
        )
        result._cells = [cell.copy() for cell in self._cells]
        result._total_weight = self._total_weight
        result._items_processed = self._items_processed
        result._merged = self._merged
        return result

    def merge(self, other: "TopKapiSketch[K]") -> "TopKapiSketch[K]":
        """
        Merge this sketch with another Topkapi sketch.

        Cells are combined one by one. Where both sketches hold the same
        candidate, their scores and frequencies add. Where they disagree,
        the cell with the strictly larger score is taken as is (this
        sketch's cell wins ties) and the other cell's weight is dropped.

        Both operands are left unchanged. The error bounds of the result are
        not formally guaranteed.

        Args:
            other: Another TopKapiSketch with the same dimensions, built with
                   the same hash function.

        Returns:
            A new merged TopKapiSketch.

        Raises:
            TypeError: If other is not a TopKapiSketch.
            IncompatibleSketches: If the sketches have different dimensions.
        """
        self._check_same_type(other)

        if self._rows != other._rows or self._buckets != other._buckets:
            raise IncompatibleSketches(
                (self._rows, self._buckets), (other._rows, other._buckets)
            )

        result = self.copy()
        conflicts = 0

        for cell, other_cell in zip(result._cells, other._cells):
            if _same_candidate(cell.candidate, other_cell.candidate):
                cell.score += other_cell.score
                cell.frequency += other_cell.frequency
                continue

            conflicts += 1
            if cell.score < other_cell.score:
                cell.candidate = other_cell.candidate
                cell.score = other_cell.score
                cell.frequency = other_cell.frequency

        result._total_weight = self._total_weight + other._total_weight
        result._items_processed = self._combine_items_processed(other)
        result._merged = True

        logger.debug(
            "Merged %dx%d sketches with %d conflicting cells",
            self._rows,
            self._buckets,
            conflicts,
        )

        return result

    def estimate_size(self) -> int:
        """
        Estimate the current memory usage of this sketch in bytes.

        Counts the cell arena and the cells themselves; candidate keys are
        shared with the caller and not included.
        """
        size = super().estimate_size()
        size += sys.getsizeof(self._cells)
        if self._cells:
            size += len(self._cells) * sys.getsizeof(self._cells[0])
        return size

    def error_bounds(self) -> Dict[str, Any]:
        """
        Get the error bounds for this sketch.

        Returns:
            A dictionary with:
            - epsilon: The error factor, 1 / buckets
            - delta: The failure probability, 2 * e^(-rows)
            - max_absolute_error: epsilon * total_weight
            - merged: True if the bounds are not formally guaranteed because
              the sketch was produced by a merge
        """
        return {
            "epsilon": self.epsilon(),
            "delta": self.delta(),
            "max_absolute_error": self.epsilon() * self._total_weight,
            "merged": self._merged,
        }

    def get_stats(self) -> Dict[str, Any]:
        """
        Get detailed statistics about the current state of the sketch.

        Extends the base statistics with grid dimensions, total weight and
        how many cells hold a candidate.
        """
        stats = super().get_stats()

        occupied = sum(1 for cell in self._cells if cell.candidate is not _EMPTY)
        candidates = {
            cell.candidate for cell in self._cells if cell.candidate is not _EMPTY
        }

        stats.update(
            {
                "rows": self._rows,
                "buckets": self._buckets,
                "total_weight": self._total_weight,
                "total_cells": len(self._cells),
                "occupied_cells": occupied,
                "occupancy": occupied / len(self._cells),
                "distinct_candidates": len(candidates),
            }
        )

        return stats

    def __len__(self) -> int:
        """Number of distinct keys currently held as a candidate in any cell."""
        return len(
            {cell.candidate for cell in self._cells if cell.candidate is not _EMPTY}
        )

    def __repr__(self) -> str:
        return (
            f"TopKapiSketch(rows={self._rows}, buckets={self._buckets}, "
            f"total_weight={self._total_weight})"
        )
