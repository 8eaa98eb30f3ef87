"""
Unit tests for merging Topkapi sketches.

The cell conflict rule used by merge is a heuristic without a proof that the
single-sketch error bounds survive it, so besides the exact cell-level rules
this module checks merged accuracy empirically on a skewed, sharded stream.
"""

import random
import unittest
from collections import Counter
from functools import reduce

from topkapi.algorithms.topkapi import LocalHeavyHitter, TopKapiSketch
from topkapi.core.exceptions import IncompatibleSketches


def collide_all(key):
    """Hash every key to bucket 0 in every row."""
    return 0


def grid_snapshot(sketch):
    """Return (frequency, score, candidate) for every cell."""
    return [(cell.frequency, cell.score, cell.candidate) for cell in sketch._cells]


def single_cell_sketch(*inserts):
    """Build a 1x1 sketch from (key, weight) unit-increment inserts."""
    sketch = TopKapiSketch(buckets=1, rows=1, hash_function=collide_all)
    for key, weight in inserts:
        for _ in range(weight):
            sketch.insert(key)
    return sketch


class TestMergeRules(unittest.TestCase):
    """Test cases for the cell-by-cell merge rules."""

    def test_merge_with_copy_doubles(self):
        """Merging with a copy of itself doubles every frequency and score."""
        rng = random.Random(5)
        sketch = TopKapiSketch(buckets=40, rows=4)
        for _ in range(1000):
            sketch.insert(f"key-{rng.randint(0, 80)}", rng.randint(1, 3))

        merged = sketch.merge(sketch.copy())

        for cell, merged_cell in zip(sketch._cells, merged._cells):
            self.assertEqual(merged_cell.frequency, 2 * cell.frequency)
            self.assertEqual(merged_cell.score, 2 * cell.score)
            self.assertEqual(merged_cell.candidate, cell.candidate)

        self.assertEqual(merged.total_weight, 2 * sketch.total_weight)
        self.assertEqual(merged.items_processed, 2 * sketch.items_processed)

    def test_operands_unchanged(self):
        sketch1 = TopKapiSketch(buckets=20, rows=3)
        sketch2 = TopKapiSketch(buckets=20, rows=3)
        for i in range(50):
            sketch1.insert(f"a-{i % 7}", 2)
            sketch2.insert(f"b-{i % 5}", 3)

        before1 = grid_snapshot(sketch1)
        before2 = grid_snapshot(sketch2)

        sketch1.merge(sketch2)

        self.assertEqual(grid_snapshot(sketch1), before1)
        self.assertEqual(grid_snapshot(sketch2), before2)
        self.assertFalse(sketch1.merged)

    def test_same_candidate_adds(self):
        merged = single_cell_sketch(("A", 5)).merge(single_cell_sketch(("A", 2)))
        cell = merged._cells[0]

        self.assertEqual((cell.candidate, cell.score, cell.frequency), ("A", 7, 7))

    def test_stronger_candidate_wins(self):
        """The cell with the larger score is taken whole; the other is dropped."""
        strong = single_cell_sketch(("A", 5))
        weak = single_cell_sketch(("X", 1), ("B", 4))  # B leads by 4, frequency 5

        for merged in [strong.merge(weak), weak.merge(strong)]:
            cell = merged._cells[0]
            self.assertEqual((cell.candidate, cell.score, cell.frequency), ("A", 5, 5))
            self.assertEqual(merged.total_weight, 10)

    def test_tie_keeps_receiver(self):
        sketch_a = single_cell_sketch(("A", 4))
        sketch_c = single_cell_sketch(("C", 4))

        cell = sketch_a.merge(sketch_c)._cells[0]
        self.assertEqual(cell.candidate, "A")

        cell = sketch_c.merge(sketch_a)._cells[0]
        self.assertEqual(cell.candidate, "C")

    def test_empty_cells(self):
        """An empty cell loses to any candidate; two empty cells stay empty."""
        empty = TopKapiSketch(buckets=1, rows=1, hash_function=collide_all)
        populated = single_cell_sketch(("A", 3))

        for merged in [empty.merge(populated), populated.merge(empty)]:
            cell = merged._cells[0]
            self.assertEqual((cell.candidate, cell.score, cell.frequency), ("A", 3, 3))

        both_empty = empty.merge(empty.copy())
        self.assertTrue(both_empty._cells[0].is_empty())
        self.assertEqual(both_empty._cells[0].score, 0)
        self.assertEqual(both_empty.result(), [])

    def test_none_key_merges_as_a_key(self):
        """A None candidate is matched as a key, not treated as an empty cell."""
        with_none = single_cell_sketch((None, 2))
        empty = TopKapiSketch(buckets=1, rows=1, hash_function=collide_all)

        merged = with_none.merge(with_none.copy())
        self.assertEqual(merged.result(), [LocalHeavyHitter(None, 4)])

        merged = empty.merge(with_none)
        self.assertEqual(merged.result(), [LocalHeavyHitter(None, 2)])

    def test_dimension_mismatch(self):
        sketch = TopKapiSketch(buckets=20, rows=4)
        sketch.insert("A", 5)
        before = grid_snapshot(sketch)

        for other in [TopKapiSketch(buckets=21, rows=4), TopKapiSketch(buckets=20, rows=3)]:
            other.insert("B", 2)
            other_before = grid_snapshot(other)

            with self.assertRaises(IncompatibleSketches):
                sketch.merge(other)

            with self.assertRaises(ValueError):
                other.merge(sketch)

            self.assertEqual(grid_snapshot(sketch), before)
            self.assertEqual(grid_snapshot(other), other_before)

    def test_mismatch_message(self):
        with self.assertRaises(IncompatibleSketches) as ctx:
            TopKapiSketch(buckets=10, rows=2).merge(TopKapiSketch(buckets=12, rows=3))

        self.assertEqual(ctx.exception.shape, (2, 10))
        self.assertEqual(ctx.exception.other_shape, (3, 12))
        self.assertIn("(2x10)", str(ctx.exception))

    def test_merge_wrong_type(self):
        sketch = TopKapiSketch(buckets=10, rows=2)

        with self.assertRaises(TypeError):
            sketch.merge(object())

    def test_accuracy_accessors_stable(self):
        sketch1 = TopKapiSketch.create_for_top_k(3, 1000, 0.1)
        sketch2 = TopKapiSketch.create_for_top_k(3, 1000, 0.1)
        sketch1.insert("A", 10)
        sketch2.insert("B", 10)

        merged = sketch1.merge(sketch2)

        self.assertEqual(merged.epsilon(), sketch1.epsilon())
        self.assertEqual(merged.delta(), sketch1.delta())
        self.assertTrue(merged.merged)
        self.assertTrue(merged.error_bounds()["merged"])
        self.assertFalse(sketch1.error_bounds()["merged"])

    def test_merge_disjoint_keys(self):
        """Shards that never share a key merge to the union of their hitters."""
        sketch1 = TopKapiSketch(buckets=1000, rows=4)
        sketch2 = TopKapiSketch(buckets=1000, rows=4)
        sketch1.insert("A", 50)
        sketch1.insert("B", 20)
        sketch2.insert("C", 30)

        merged = sketch1.merge(sketch2)

        self.assertEqual(
            [hitter.key for hitter in merged.result(10)], ["A", "C", "B"]
        )


class TestMergeAccuracy(unittest.TestCase):
    """Empirical accuracy checks for sketches built per shard and merged."""

    HEAVY = {
        "heavy-0": 4000,
        "heavy-1": 3000,
        "heavy-2": 2200,
        "heavy-3": 1600,
        "heavy-4": 1200,
    }
    NUM_SHARDS = 4

    @classmethod
    def setUpClass(cls):
        rng = random.Random(1234)

        stream = []
        for key, count in cls.HEAVY.items():
            stream.extend([key] * count)
        for i in range(2000):
            stream.extend([f"noise-{i}"] * rng.randint(1, 5))
        rng.shuffle(stream)

        cls.true_counts = Counter(stream)
        cls.stream = stream

        def new_sketch():
            return TopKapiSketch.create_for_top_k(5, len(stream), 0.01)

        cls.single = new_sketch()
        for key in stream:
            cls.single.insert(key)

        shards = [new_sketch() for _ in range(cls.NUM_SHARDS)]
        for i, key in enumerate(stream):
            shards[i % cls.NUM_SHARDS].insert(key)

        cls.shards = shards
        cls.merged = reduce(lambda a, b: a.merge(b), shards)

    def test_merged_totals(self):
        self.assertEqual(self.merged.total_weight, len(self.stream))
        self.assertEqual(self.merged.items_processed, len(self.stream))

    def test_merged_top_k_matches_truth(self):
        expected = [key for key, _ in self.true_counts.most_common(5)]
        self.assertEqual([key for key, _ in self.merged.get_top_k(5)], expected)

    def test_merged_matches_single_sketch(self):
        self.assertEqual(
            [key for key, _ in self.merged.get_top_k(5)],
            [key for key, _ in self.single.get_top_k(5)],
        )

    def test_merged_estimates_close(self):
        """Merged estimates of the heavy keys are within 5% of the truth."""
        estimates = dict(self.merged.get_top_k(5))

        for key, true_count in self.HEAVY.items():
            self.assertLessEqual(
                abs(estimates[key] - true_count) / true_count,
                0.05,
                f"Merged estimate for {key} is {estimates[key]}, true count {true_count}",
            )

    def test_merged_threshold_isolates_heavy_keys(self):
        reported = {hitter.key for hitter in self.merged.result(1000)}
        self.assertEqual(reported, set(self.HEAVY))

    def test_merge_order_does_not_change_top_k(self):
        reversed_merge = reduce(lambda a, b: a.merge(b), reversed(self.shards))
        self.assertEqual(
            [key for key, _ in reversed_merge.get_top_k(5)],
            [key for key, _ in self.merged.get_top_k(5)],
        )


if __name__ == "__main__":
    unittest.main()
