"""Summing expanded DPF vectors, whole or segment by segment.

Direct combine adds whole vectors in memory. Segmented combine cuts every
vector into ``segment_length`` rows, reduces each segment index separately
and reassembles, which bounds the size of any single reduction. Arithmetic
wraps modulo 2^64 in both, so the results are identical.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from secure_histograms.dpf.prg import VALUE_LANES
from secure_histograms.errors import InputError
from secure_histograms.transforms import combine_per_key

if TYPE_CHECKING:
    from collections.abc import Iterable

    from secure_histograms.config import CombineParams


def _check_shape(vector: NDArray[np.uint64], length: int) -> None:
    if vector.shape != (length, VALUE_LANES):
        msg = f"expanded vector has shape {vector.shape}, expected {(length, VALUE_LANES)}"
        raise InputError(msg)


def combine_direct(vectors: Iterable[NDArray[np.uint64]], length: int) -> NDArray[np.uint64]:
    """Sum whole vectors of ``length`` rows."""
    total = np.zeros((length, VALUE_LANES), dtype=np.uint64)
    for vector in vectors:
        _check_shape(vector, length)
        total += vector
    return total


def combine_segmented(
    vectors: Iterable[NDArray[np.uint64]],
    length: int,
    segment_length: int,
) -> NDArray[np.uint64]:
    """Sum vectors segment by segment, keyed by segment index."""
    if segment_length <= 0:
        msg = f"segment_length must be > 0, got {segment_length}"
        raise InputError(msg)

    def _segments():
        for vector in vectors:
            _check_shape(vector, length)
            for index, start in enumerate(range(0, length, segment_length)):
                yield index, vector[start : start + segment_length]

    summed = combine_per_key(_segments(), np.add)
    total = np.zeros((length, VALUE_LANES), dtype=np.uint64)
    for index, segment in summed.items():
        start = index * segment_length
        total[start : start + len(segment)] = segment
    return total


def combine_vectors(
    vectors: Iterable[NDArray[np.uint64]],
    length: int,
    combine_params: CombineParams,
) -> NDArray[np.uint64]:
    if combine_params.direct_combine:
        return combine_direct(vectors, length)
    return combine_segmented(vectors, length, combine_params.segment_length)
