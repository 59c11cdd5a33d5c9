"""Utility functions for simulation and evaluation.

This module provides support for:
- Simulating raw conversions together with their exact released totals.
- Parsing ``key,value`` conversion lines.
- Evaluating released histograms using MSE and L1 distance metrics.
"""

from .utils import (
    KeyTotals,
    align_histograms,
    calculate_l1_dist,
    calculate_mse,
    compute_true_histogram,
    generate_raw_conversions,
    parse_raw_conversions,
    totals_by_key,
)

__all__ = [
    "KeyTotals",
    "align_histograms",
    "calculate_l1_dist",
    "calculate_mse",
    "compute_true_histogram",
    "generate_raw_conversions",
    "parse_raw_conversions",
    "totals_by_key",
]
