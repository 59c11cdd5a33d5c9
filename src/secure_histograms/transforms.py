"""Per-key reductions over unordered record collections.

The distributed execution engine is outside this package; these helpers
give the protocol code the same ``combine-by-key`` and ``co-group-by-key``
shapes in-process. Combiners must be associative and commutative so that
partial results over disjoint record subsets can be merged in any order.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable, Hashable, Iterable, Sequence

K = TypeVar("K")
V = TypeVar("V")
T = TypeVar("T")
U = TypeVar("U")


def combine_per_key(
    pairs: Iterable[tuple[K, V]],
    combine: Callable[[V, V], V],
) -> dict[K, V]:
    """Fold all values that share a key with ``combine``."""
    out: dict[K, V] = {}
    for key, value in pairs:
        out[key] = combine(out[key], value) if key in out else value
    return out


def co_group_by_key(
    left: Iterable[T],
    right: Iterable[U],
    left_key: Callable[[T], Hashable],
    right_key: Callable[[U], Hashable],
) -> dict[Hashable, tuple[list[T], list[U]]]:
    """Group two collections by key; a key missing on one side gets ``[]``."""
    grouped: dict[Hashable, tuple[list[T], list[U]]] = defaultdict(lambda: ([], []))
    for item in left:
        grouped[left_key(item)][0].append(item)
    for item in right:
        grouped[right_key(item)][1].append(item)
    return dict(grouped)


def shard(items: Sequence[T], num_shards: int) -> list[list[T]]:
    """Round-robin ``items`` into ``num_shards`` lists."""
    shards: list[list[T]] = [[] for _ in range(num_shards)]
    for i, item in enumerate(items):
        shards[i % num_shards].append(item)
    return shards
