"""Hierarchy and expansion parameters for the DPF.

The bucket domain is ``{0,1}^n``. Hierarchy levels pick the prefix lengths
at which a DPF key can be evaluated. An ``ExpandParameters`` value says which
level to evaluate and which prefixes of an earlier level to refine, so a
helper never materialises more of the domain than the query needs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from secure_histograms.errors import InputError, InvalidDomain

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

MAX_LOG_DOMAIN_SIZE = 64
# Largest number of points a single expansion may produce.
MAX_EXPANSION_POINTS = 2**26


@dataclass(frozen=True)
class HierarchyLevel:
    """One evaluable prefix length of the domain."""

    log_domain_size: int


@dataclass(frozen=True)
class DPFParameters:
    """Ordered hierarchy levels; the last one is the full bucket width.

    Raises
    ------
        InvalidDomain: If levels are empty, not strictly increasing, or
            outside ``[1, 64]`` bits.
    """

    levels: tuple[HierarchyLevel, ...]

    def __post_init__(self) -> None:
        """Validate values after initialization."""
        if not self.levels:
            msg = "DPF parameters need at least one hierarchy level"
            raise InvalidDomain(msg)
        sizes = [lvl.log_domain_size for lvl in self.levels]
        if sizes[0] < 1 or sizes[-1] > MAX_LOG_DOMAIN_SIZE:
            msg = f"hierarchy sizes must lie in [1, {MAX_LOG_DOMAIN_SIZE}], got {sizes}"
            raise InvalidDomain(msg)
        if any(a >= b for a, b in zip(sizes, sizes[1:])):
            msg = f"hierarchy sizes must be strictly increasing, got {sizes}"
            raise InvalidDomain(msg)

    @property
    def log_domain_size(self) -> int:
        return self.levels[-1].log_domain_size

    def depth(self, level: int) -> int:
        """Prefix bit length of hierarchy ``level``; -1 maps to the root."""
        return 0 if level < 0 else self.levels[level].log_domain_size

    def to_list(self) -> list[int]:
        return [lvl.log_domain_size for lvl in self.levels]

    @classmethod
    def from_list(cls, sizes: Iterable[int]) -> DPFParameters:
        return cls(tuple(HierarchyLevel(int(s)) for s in sizes))


def get_default_dpf_parameters(key_bit_size: int) -> DPFParameters:
    """Define a hierarchy for every prefix length of the bucket ID."""
    if not (1 <= key_bit_size <= MAX_LOG_DOMAIN_SIZE):
        msg = f"key_bit_size must be in [1, {MAX_LOG_DOMAIN_SIZE}], got {key_bit_size}"
        raise InvalidDomain(msg)
    return DPFParameters.from_list(range(1, key_bit_size + 1))


@dataclass(frozen=True)
class ExpandParameters:
    """Which part of the domain to evaluate.

    Attributes
    ----------
        level: int
            Hierarchy index to evaluate.
        prefixes: tuple[int, ...]
            Prefixes at ``previous_level`` whose extensions are evaluated.
        previous_level: int
            Hierarchy index of ``prefixes``; -1 evaluates every point of
            ``level``.
    """

    level: int
    prefixes: tuple[int, ...] = field(default_factory=tuple)
    previous_level: int = -1

    def validate(self, params: DPFParameters) -> None:
        """Check the expansion against ``params``.

        Raises
        ------
            InputError: If levels are out of order or prefixes are given
                without a previous level.
            InvalidDomain: If a prefix does not fit the previous level or the
                expansion is too large.
        """
        if not (0 <= self.level < len(params.levels)):
            msg = f"level {self.level} outside hierarchy of {len(params.levels)} levels"
            raise InputError(msg)
        if not (-1 <= self.previous_level < self.level):
            msg = f"previous_level {self.previous_level} must be in [-1, {self.level})"
            raise InputError(msg)
        if self.previous_level == -1 and self.prefixes:
            msg = "prefixes given without a previous level"
            raise InputError(msg)
        prev_bits = params.depth(self.previous_level)
        if any(not (0 <= p < 2**prev_bits) for p in self.prefixes):
            msg = f"prefix outside the {prev_bits}-bit domain of level {self.previous_level}"
            raise InvalidDomain(msg)
        if self.num_points(params) > MAX_EXPANSION_POINTS:
            msg = f"expansion of {self.num_points(params)} points exceeds {MAX_EXPANSION_POINTS}"
            raise InvalidDomain(msg)

    def num_points(self, params: DPFParameters) -> int:
        bits = params.depth(self.level) - params.depth(self.previous_level)
        roots = 1 if self.previous_level == -1 else len(self.prefixes)
        return roots << bits


def expansion_points(params: DPFParameters, expand: ExpandParameters) -> NDArray[np.uint64]:
    """Bucket prefixes at ``expand.level`` in the order ``expand`` emits them."""
    bits = params.depth(expand.level) - params.depth(expand.previous_level)
    roots = [0] if expand.previous_level == -1 else list(expand.prefixes)
    base = np.asarray(roots, dtype=np.uint64) << np.uint64(bits)
    suffixes = np.arange(2**bits, dtype=np.uint64)
    return (base[:, None] + suffixes[None, :]).reshape(-1)


def convert_old_params_to_expand_parameter(
    dpf_params: DPFParameters,
    hierarchical_prefixes: Sequence[Sequence[int]],
) -> ExpandParameters:
    """Normalise legacy (DPF parameters, per-level prefixes) into ``ExpandParameters``.

    In the legacy shape ``hierarchical_prefixes[i]`` filters level ``i`` by
    prefixes of level ``i - 1``; the first list is always empty. The
    expansion targets the last level that has a prefix list.
    """
    if not hierarchical_prefixes:
        msg = "legacy prefixes are empty"
        raise InputError(msg)
    if len(hierarchical_prefixes) > len(dpf_params.levels):
        msg = (
            f"got {len(hierarchical_prefixes)} prefix lists for "
            f"{len(dpf_params.levels)} hierarchy levels"
        )
        raise InputError(msg)
    if hierarchical_prefixes[0]:
        msg = "prefixes for the first hierarchy level must be empty"
        raise InputError(msg)
    level = len(hierarchical_prefixes) - 1
    expand = ExpandParameters(
        level=level,
        prefixes=tuple(int(p) for p in hierarchical_prefixes[-1]),
        previous_level=level - 1,
    )
    expand.validate(dpf_params)
    return expand


def expand_parameters_for_ids(ids: Iterable[int], params: DPFParameters) -> ExpandParameters:
    """Expansion at the full width that covers every identifier in ``ids``.

    Prefixes are taken at the penultimate level, so only the identifiers and
    their siblings under those prefixes are evaluated.
    """
    full = params.log_domain_size
    ids = sorted(set(ids))
    if any(not (0 <= i < 2**full) for i in ids):
        msg = f"aggregation ID outside the {full}-bit domain"
        raise InvalidDomain(msg)
    last = len(params.levels) - 1
    if last == 0:
        return ExpandParameters(level=0)
    shift = full - params.depth(last - 1)
    return ExpandParameters(
        level=last,
        prefixes=tuple(sorted({i >> shift for i in ids})),
        previous_level=last - 1,
    )
