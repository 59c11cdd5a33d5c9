"""Differential-privacy calibration for released histogram sums."""

from __future__ import annotations

import math

from secure_histograms.config import PrivacyParams
from secure_histograms.errors import PrivacyConfigError


def discrete_laplace_beta(epsilon: float, l1_sensitivity: float) -> float:
    r"""Decay parameter of the discrete Laplace mechanism.

    The released value is ``x + Z`` with :math:`P(Z = k) \propto \beta^{|k|}`,
    :math:`\beta = e^{-\epsilon / \Delta_1}`, which is
    :math:`\epsilon`-differentially private for L1 sensitivity :math:`\Delta_1`.

    Raises
    ------
        PrivacyConfigError: If epsilon <= 0 or l1_sensitivity <= 0.
    """
    if epsilon <= 0:
        msg = f"epsilon must be > 0 to calibrate noise, got {epsilon}"
        raise PrivacyConfigError(msg)
    if l1_sensitivity <= 0:
        msg = f"l1_sensitivity must be > 0, got {l1_sensitivity}"
        raise PrivacyConfigError(msg)
    return math.exp(-epsilon / l1_sensitivity)


def discrete_laplace_std(epsilon: float, l1_sensitivity: float) -> float:
    r"""Standard deviation of the discrete Laplace noise.

    :math:`\sigma = \sqrt{2\beta} / (1 - \beta)`; infinite when epsilon is 0.
    """
    if epsilon == 0:
        return float("inf")
    beta = discrete_laplace_beta(epsilon, l1_sensitivity)
    if beta == 1.0:
        return float("inf")
    return math.sqrt(2 * beta) / (1 - beta)


def clip_contribution(value: int, l1_sensitivity: int) -> int:
    """Bound a single report's contribution to ``[0, l1_sensitivity]``."""
    return max(0, min(value, l1_sensitivity))


def split_epsilon(privacy: PrivacyParams, num_queries: int) -> PrivacyParams:
    """Evenly divide the budget across ``num_queries`` releases (basic composition)."""
    if num_queries < 1:
        msg = f"num_queries must be >= 1, got {num_queries}"
        raise PrivacyConfigError(msg)
    return PrivacyParams(
        epsilon=privacy.epsilon / num_queries,
        l1_sensitivity=privacy.l1_sensitivity,
    )
