"""Utility functions for simulating conversions and evaluating released histograms."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import numpy as np
from numpy.random import default_rng

from secure_histograms.config import VALUE_BIT_SIZE
from secure_histograms.conversion import RawConversion, parse_raw_conversion

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from numpy.typing import NDArray

    from secure_histograms.aggregation import CompleteResult

# Per-key (sum, count) as released: every report is counted once per helper.
KeyTotals = dict[str, tuple[int, int]]

_rng = default_rng()


def generate_raw_conversions(
    num_conversions: int,
    num_keys: int,
    *,
    max_value: int = 1,
    rng: np.random.Generator | None = None,
) -> tuple[list[RawConversion], KeyTotals]:
    """
    Simulate client conversions spread round-robin over ``num_keys`` random keys.

    Args
    -----
        num_conversions (int): Number of conversions to create.
        num_keys (int): Number of distinct bucket keys.
        max_value (int): Values are drawn uniformly from ``[1, max_value]``.
        rng (np.random.Generator | None): Source of the values.

    Returns
    -------
        tuple[list[RawConversion], KeyTotals]: The conversions and the
            expected released (sum, count) per key, count being twice the
            number of reports.
    """
    if num_keys < 1 or num_conversions < 0:
        msg = f"need num_keys >= 1 and num_conversions >= 0, got {num_keys}, {num_conversions}"
        raise ValueError(msg)
    if not (1 <= max_value < 2**VALUE_BIT_SIZE):
        msg = f"max_value must be in [1, 2^{VALUE_BIT_SIZE}), got {max_value}"
        raise ValueError(msg)
    rng = rng or _rng
    keys = [uuid.uuid4().hex for _ in range(num_keys)]
    values = rng.integers(1, max_value + 1, size=num_conversions)
    conversions = [RawConversion(keys[i % num_keys], int(v)) for i, v in enumerate(values)]
    return conversions, compute_true_histogram(conversions)


def parse_raw_conversions(lines: Iterable[str]) -> list[RawConversion]:
    """Parse ``key,value`` lines, skipping blank ones."""
    return [parse_raw_conversion(line) for line in lines if line.strip()]


def compute_true_histogram(conversions: Iterable[RawConversion]) -> KeyTotals:
    """Exact per-key (sum, count) in the released form (count doubled)."""
    totals: dict[str, list[int]] = {}
    for conversion in conversions:
        entry = totals.setdefault(conversion.key, [0, 0])
        entry[0] += conversion.value
        entry[1] += 2
    return {key: (s, c) for key, (s, c) in totals.items()}


def totals_by_key(results: Iterable[CompleteResult]) -> KeyTotals:
    """Released results keyed by recovered bucket key; results without a key are skipped."""
    return {r.key: (r.sum, r.count) for r in results if r.key is not None}


def align_histograms(
    true_hist: Mapping[str, tuple[int, int]],
    est_hist: Mapping[str, tuple[int, int]],
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Sum vectors of two histograms over the union of their keys (missing keys are 0)."""
    keys = sorted(set(true_hist) | set(est_hist))
    true_vec = np.array([true_hist.get(k, (0, 0))[0] for k in keys], dtype=float)
    est_vec = np.array([est_hist.get(k, (0, 0))[0] for k in keys], dtype=float)
    return true_vec, est_vec


def calculate_mse(true_sums: NDArray[np.float64], est_sums: NDArray[np.float64]) -> float:
    """Compute mean-squared error between two aligned sum vectors.

    Args
    -----
        true_sums (NDArray[np.float64]): Exact sums.
        est_sums (NDArray[np.float64]): Released sums.

    Returns
    -------
        float: The mean-squared error; 0.0 for empty vectors.
    """
    if true_sums.shape != est_sums.shape:
        msg = "Histograms must have the same dimensions for MSE."
        raise ValueError(msg)
    if true_sums.size == 0:
        return 0.0
    return float(np.mean((true_sums - est_sums) ** 2))


def calculate_l1_dist(true_sums: NDArray[np.float64], est_sums: NDArray[np.float64]) -> float:
    """Compute L1 distance between two aligned sum vectors."""
    if true_sums.shape != est_sums.shape:
        msg = "Histograms must have the same dimensions for L1."
        raise ValueError(msg)
    return float(np.sum(np.abs(true_sums - est_sums)))
