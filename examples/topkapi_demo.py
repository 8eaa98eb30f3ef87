"""
Topkapi Sketch Demo.

This example shows how to find the most frequent keys of a stream with a
Topkapi sketch, and how sketches built independently per shard are merged
into one aggregate view.
"""

import random
import time
from collections import Counter
from functools import reduce

from topkapi import TopKapiSketch


def demonstrate_basic_usage():
    """Demonstrate basic Topkapi sketch usage."""
    print("\n=== Basic Topkapi Demo ===")

    # Sized for the top 3 keys of a corpus of roughly 100 occurrences
    sketch = TopKapiSketch.create_for_top_k(k=3, approx_corpus_size=100, delta=0.05)
    print(f"Grid: {sketch.rows} rows x {sketch.buckets} buckets")

    words = "the quick brown fox jumps over the lazy dog the fox".split()
    for word in words:
        sketch.insert(word)

    # Weighted inserts count several occurrences at once
    sketch.insert("dog", 4)

    print("\nCandidates seen at least twice:")
    for key, count in sketch.result(threshold=2):
        print(f"  {key}: {count}")

    print(f"\nepsilon={sketch.epsilon():.5f}, delta={sketch.delta():.5f}")


def generate_zipf_stream(n_items, n_distinct, exponent, rng):
    """Generate a stream whose key frequencies follow a Zipf-like law."""
    keys = [f"user-{i}" for i in range(n_distinct)]
    weights = [1.0 / (i + 1) ** exponent for i in range(n_distinct)]
    return rng.choices(keys, weights=weights, k=n_items)


def demonstrate_sharded_merge():
    """Build one sketch per shard, merge them and compare with exact counts."""
    print("\n=== Sharded Topkapi with Merge ===")

    rng = random.Random(42)
    stream = generate_zipf_stream(50000, 5000, 1.2, rng)
    true_counts = Counter(stream)

    k = 10
    num_shards = 4

    def new_sketch():
        return TopKapiSketch.create_for_top_k(k, len(stream), 0.01)

    start = time.time()
    shards = [new_sketch() for _ in range(num_shards)]
    for i, key in enumerate(stream):
        shards[i % num_shards].insert(key)
    build_time = time.time() - start

    merged = reduce(lambda a, b: a.merge(b), shards)

    print(f"Processed {len(stream)} items over {num_shards} shards in {build_time:.2f}s")
    print(f"Grid: {merged.rows} rows x {merged.buckets} buckets per shard")

    print(f"\nTop-{k} from the merged sketch vs exact counts:")
    print(f"  {'key':<12} {'estimate':>9} {'exact':>7} {'error':>7}")
    for key, estimate in merged.get_top_k(k):
        exact = true_counts[key]
        error = (estimate - exact) / exact if exact else float("inf")
        print(f"  {key:<12} {estimate:>9} {exact:>7} {error:>7.2%}")

    exact_top = {key for key, _ in true_counts.most_common(k)}
    found = {key for key, _ in merged.get_top_k(k)}
    print(f"\nRecall of the true top-{k}: {len(exact_top & found) / k:.0%}")

    stats = merged.get_stats()
    print(f"Occupied cells: {stats['occupied_cells']}/{stats['total_cells']}")
    print(f"Estimated memory per sketch: {stats['memory_bytes'] / 1024:.1f} KiB")


if __name__ == "__main__":
    demonstrate_basic_usage()
    demonstrate_sharded_merge()
