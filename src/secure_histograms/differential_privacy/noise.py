"""Distributed noise generation: Pólya shares of discrete Laplace noise.

Each of ``n`` helpers adds ``Polya(1/n, beta) - Polya(1/n, beta)`` to its
partial sums. Pólya variables with a shared ``beta`` add up in their shape
parameter, so the merged noise is ``Geom(beta) - Geom(beta)``, i.e. exactly
discrete Laplace, while no single helper knows the total noise.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

import numpy as np
from numpy.random import default_rng
from numpy.typing import NDArray

from secure_histograms.config import PrivacyParams
from secure_histograms.differential_privacy.differential_privacy import discrete_laplace_beta

if TYPE_CHECKING:
    from collections.abc import Iterable


def polya_difference_noise(
    vector_dim: int,
    alpha_param: float,
    beta_param: float,
    rng: np.random.Generator | None = None,
) -> NDArray[np.int64]:
    """Draw ``Polya(alpha, beta) - Polya(alpha, beta)`` for each of ``vector_dim`` buckets.

    A Pólya (negative binomial) variable is a Poisson draw whose rate is
    ``Gamma(alpha, scale=beta / (1 - beta))``.

    Args
    ------
        vector_dim (int): Number of buckets.
        alpha_param (float): Pólya shape, ``1 / num_helpers`` for a share.
        beta_param (float): Discrete Laplace parameter in ``(0, 1)``.
        rng (np.random.Generator | None): Source of randomness.

    Returns
    -------
        NDArray[np.int64]: One noise share per bucket.
    """
    rng = rng or default_rng()
    scale = beta_param / (1.0 - beta_param)

    # Independent gamma mixing rates for the two Pólya draws
    lam1 = rng.gamma(alpha_param, scale=scale, size=vector_dim)
    lam2 = rng.gamma(alpha_param, scale=scale, size=vector_dim)
    noise = rng.poisson(lam1).astype(np.int64)
    noise -= rng.poisson(lam2).astype(np.int64)
    return noise


class NoiseSource(Protocol):
    """Capability that produces one helper's noise share per bucket."""

    def sample(self, size: int) -> NDArray[np.int64]:
        ...


class ZeroNoise:
    """Deterministic no-op noise for exact verification runs."""

    def sample(self, size: int) -> NDArray[np.int64]:
        return np.zeros(size, dtype=np.int64)


class DistributedDiscreteLaplace:
    """One helper's share of discrete Laplace noise calibrated to (epsilon, L1)."""

    def __init__(
        self,
        epsilon: float,
        l1_sensitivity: float,
        num_helpers: int = 2,
        rng: np.random.Generator | None = None,
    ) -> None:
        self.beta = discrete_laplace_beta(epsilon, l1_sensitivity)
        self.alpha = 1.0 / num_helpers
        self.rng = rng or default_rng()

    def sample(self, size: int) -> NDArray[np.int64]:
        return polya_difference_noise(size, self.alpha, self.beta, self.rng)


def noise_source_for(
    privacy: PrivacyParams,
    *,
    ignore_privacy: bool = False,
    num_helpers: int = 2,
    rng: np.random.Generator | None = None,
) -> NoiseSource:
    """Pick the noise source for a release.

    ``ignore_privacy`` exists for exact testing only and must not be set on
    production release paths.
    """
    if ignore_privacy or not privacy.enabled:
        return ZeroNoise()
    return DistributedDiscreteLaplace(
        privacy.epsilon, privacy.l1_sensitivity, num_helpers=num_helpers, rng=rng
    )


def center_lift(values: Iterable[int], modulus: int) -> NDArray[np.int64]:
    """Reduce ``values`` modulo ``modulus`` into ``[-modulus/2, modulus/2)``.

    Noise can push a released sum below zero; the lift recovers the signed
    value as long as it stays within half the modulus.
    """
    half = modulus >> 1
    # Python ints, so a modulus of 2^64 does not overflow numpy scalars.
    residues = [int(v) % modulus for v in values]
    return np.array([r - modulus if r >= half else r for r in residues], dtype=np.int64)
