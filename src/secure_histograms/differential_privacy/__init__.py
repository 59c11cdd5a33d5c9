"""Differential privacy utilities for the released histogram.

This module aggregates noise calibration, distributed noise generation, and
contribution bounding used when helpers release their partial histograms.
"""

from .differential_privacy import (
    clip_contribution,
    discrete_laplace_beta,
    discrete_laplace_std,
    split_epsilon,
)
from .noise import (
    DistributedDiscreteLaplace,
    NoiseSource,
    ZeroNoise,
    center_lift,
    noise_source_for,
    polya_difference_noise,
)

__all__ = [
    # Calibration
    "discrete_laplace_beta",
    "discrete_laplace_std",
    "clip_contribution",
    "split_epsilon",

    # Helper-side noise generation
    "NoiseSource",
    "ZeroNoise",
    "DistributedDiscreteLaplace",
    "noise_source_for",
    "polya_difference_noise",
    "center_lift",
]
