"""Incremental two-party Distributed Point Function.

A key pair secret-shares the function that is ``beta`` on every prefix of
``alpha`` (at each hierarchy level) and zero everywhere else; evaluating
both keys at a point and adding the outputs modulo 2^64 gives the function
value there. Outputs have ``VALUE_LANES`` lanes, used as (sum, count).

The binary tree is never stored. A key holds its correction words as arrays
indexed by depth (one seed correction and two control-bit corrections per
bit of the domain) and one value correction per hierarchy level.
Evaluation walks the tree level by level over whole numpy batches of nodes.
"""

from __future__ import annotations

import secrets
import struct
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from secure_histograms.dpf.params import DPFParameters, ExpandParameters
from secure_histograms.dpf.prg import SEED_BYTES, VALUE_LANES, convert_seeds, expand_seeds
from secure_histograms.errors import InputError, InvalidDomain

if TYPE_CHECKING:
    from collections.abc import Sequence

MASK64 = 2**64 - 1
_HEADER = struct.Struct("<BB")


@dataclass(frozen=True, eq=False)
class DPFKey:
    """One helper's half of a secret-shared point function.

    Attributes
    ----------
        party: int
            0 or 1.
        seed: bytes
            Root seed.
        correction_seeds: NDArray[np.uint8]
            ``(n, 16)`` seed correction per depth.
        correction_bits: NDArray[np.uint8]
            ``(n, 2)`` left/right control-bit correction per depth.
        value_corrections: NDArray[np.uint64]
            ``(levels, VALUE_LANES)`` output correction per hierarchy level.
        parameters: DPFParameters
            Hierarchy the key was generated for.
    """

    party: int
    seed: bytes
    correction_seeds: NDArray[np.uint8]
    correction_bits: NDArray[np.uint8]
    value_corrections: NDArray[np.uint64]
    parameters: DPFParameters

    def to_bytes(self) -> bytes:
        sizes = self.parameters.to_list()
        return b"".join(
            (
                _HEADER.pack(self.party, len(sizes)),
                bytes(sizes),
                self.seed,
                self.correction_seeds.tobytes(),
                self.correction_bits.tobytes(),
                self.value_corrections.astype("<u8").tobytes(),
            )
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> DPFKey:
        """Parse a serialized key.

        Raises
        ------
            InputError: If the encoding is truncated or inconsistent.
        """
        if len(data) < _HEADER.size:
            msg = "DPF key too short"
            raise InputError(msg)
        party, num_levels = _HEADER.unpack_from(data)
        offset = _HEADER.size
        sizes = list(data[offset : offset + num_levels])
        offset += num_levels
        params = DPFParameters.from_list(sizes)
        n = params.log_domain_size
        expected = offset + SEED_BYTES + n * SEED_BYTES + n * 2 + num_levels * VALUE_LANES * 8
        if party not in (0, 1) or len(data) != expected:
            msg = f"malformed DPF key: party={party}, {len(data)} bytes, expected {expected}"
            raise InputError(msg)

        seed = data[offset : offset + SEED_BYTES]
        offset += SEED_BYTES
        cw_seeds = np.frombuffer(data, np.uint8, n * SEED_BYTES, offset).reshape(n, SEED_BYTES)
        offset += n * SEED_BYTES
        cw_bits = np.frombuffer(data, np.uint8, n * 2, offset).reshape(n, 2)
        offset += n * 2
        values = np.frombuffer(data, "<u8", num_levels * VALUE_LANES, offset)
        return cls(
            party=party,
            seed=seed,
            correction_seeds=cw_seeds.copy(),
            correction_bits=cw_bits.copy(),
            value_corrections=values.reshape(num_levels, VALUE_LANES).astype(np.uint64),
            parameters=params,
        )


def _normalize_beta(beta: int | Sequence[int]) -> list[int]:
    lanes = [beta] if isinstance(beta, int) else list(beta)
    if not (1 <= len(lanes) <= VALUE_LANES):
        msg = f"payload must have 1 to {VALUE_LANES} lanes, got {len(lanes)}"
        raise InputError(msg)
    lanes += [0] * (VALUE_LANES - len(lanes))
    return [int(v) & MASK64 for v in lanes]


def generate_keys(
    alpha: int,
    beta: int | Sequence[int],
    params: DPFParameters,
) -> tuple[DPFKey, DPFKey]:
    """Generate a key pair for the point ``alpha`` with payload ``beta``.

    Descends the path to ``alpha`` one bit at a time; at each depth the
    correction word makes the two parties' off-path children identical, so
    they cancel, while the on-path children keep differing.

    Args
    ------
        alpha (int): Point in ``[0, 2^n)``.
        beta (int | Sequence[int]): Payload lanes, taken modulo 2^64.
        params (DPFParameters): Hierarchy levels.

    Returns
    -------
        tuple[DPFKey, DPFKey]: Keys for party 0 and party 1.

    Raises
    ------
        InvalidDomain: If ``alpha`` is outside the domain.
    """
    n = params.log_domain_size
    if not (0 <= alpha < 2**n):
        msg = f"point {alpha} outside the {n}-bit domain"
        raise InvalidDomain(msg)
    payload = _normalize_beta(beta)
    output_level = {lvl.log_domain_size: i for i, lvl in enumerate(params.levels)}

    roots = np.frombuffer(secrets.token_bytes(2 * SEED_BYTES), dtype=np.uint8).reshape(2, SEED_BYTES)
    seeds = roots.copy()
    t = np.array([0, 1], dtype=np.uint8)
    cw_seeds = np.zeros((n, SEED_BYTES), dtype=np.uint8)
    cw_bits = np.zeros((n, 2), dtype=np.uint8)
    value_cws = np.zeros((len(params.levels), VALUE_LANES), dtype=np.uint64)

    for i in range(n):
        bit = (alpha >> (n - 1 - i)) & 1
        s_left, t_left, s_right, t_right = expand_seeds(seeds)
        if bit:
            keep_s, keep_t, lose_s = s_right, t_right, s_left
        else:
            keep_s, keep_t, lose_s = s_left, t_left, s_right

        s_cw = lose_s[0] ^ lose_s[1]
        t_left_cw = int(t_left[0] ^ t_left[1]) ^ bit ^ 1
        t_right_cw = int(t_right[0] ^ t_right[1]) ^ bit
        t_keep_cw = t_right_cw if bit else t_left_cw
        cw_seeds[i] = s_cw
        cw_bits[i] = (t_left_cw, t_right_cw)

        seeds = keep_s ^ (t[:, None] * s_cw[None, :])
        t = keep_t ^ (t & t_keep_cw)

        level = output_level.get(i + 1)
        if level is not None:
            conv = convert_seeds(seeds)
            for lane in range(VALUE_LANES):
                cw = (payload[lane] - int(conv[0, lane]) + int(conv[1, lane])) & MASK64
                value_cws[level, lane] = (-cw) & MASK64 if t[1] else cw

    keys = tuple(
        DPFKey(
            party=party,
            seed=roots[party].tobytes(),
            correction_seeds=cw_seeds,
            correction_bits=cw_bits,
            value_corrections=value_cws,
            parameters=params,
        )
        for party in (0, 1)
    )
    return keys[0], keys[1]


def _step(
    key: DPFKey,
    depth: int,
    seeds: NDArray[np.uint8],
    t: NDArray[np.uint8],
) -> tuple[NDArray[np.uint8], NDArray[np.uint8], NDArray[np.uint8], NDArray[np.uint8]]:
    """Corrected children of every node at ``depth``."""
    s_left, t_left, s_right, t_right = expand_seeds(seeds)
    mask = t[:, None] * key.correction_seeds[depth][None, :]
    s_left ^= mask
    s_right ^= mask
    t_left ^= t & key.correction_bits[depth, 0]
    t_right ^= t & key.correction_bits[depth, 1]
    return s_left, t_left, s_right, t_right


def _walk(
    key: DPFKey,
    prefixes: NDArray[np.uint64],
    depth: int,
) -> tuple[NDArray[np.uint8], NDArray[np.uint8]]:
    """Seeds and control bits of the nodes named by ``depth``-bit ``prefixes``."""
    count = len(prefixes)
    seeds = np.tile(np.frombuffer(key.seed, dtype=np.uint8), (count, 1))
    t = np.full(count, key.party, dtype=np.uint8)
    for i in range(depth):
        s_left, t_left, s_right, t_right = _step(key, i, seeds, t)
        go_right = ((prefixes >> np.uint64(depth - 1 - i)) & np.uint64(1)).astype(bool)
        seeds = np.where(go_right[:, None], s_right, s_left)
        t = np.where(go_right, t_right, t_left)
    return seeds, t


def _expand_subtrees(
    key: DPFKey,
    seeds: NDArray[np.uint8],
    t: NDArray[np.uint8],
    from_depth: int,
    to_depth: int,
) -> tuple[NDArray[np.uint8], NDArray[np.uint8]]:
    # Interleaving (left, right) per parent keeps the points in ascending order.
    for i in range(from_depth, to_depth):
        s_left, t_left, s_right, t_right = _step(key, i, seeds, t)
        seeds = np.stack((s_left, s_right), axis=1).reshape(-1, SEED_BYTES)
        t = np.stack((t_left, t_right), axis=1).reshape(-1)
    return seeds, t


def _output(key: DPFKey, level: int, seeds: NDArray[np.uint8], t: NDArray[np.uint8]) -> NDArray[np.uint64]:
    values = convert_seeds(seeds)
    values += t.astype(np.uint64)[:, None] * key.value_corrections[level][None, :]
    if key.party == 1:
        values = np.negative(values)
    return values


def expand(key: DPFKey, expand_params: ExpandParameters) -> NDArray[np.uint64]:
    """Evaluate ``key`` on every point selected by ``expand_params``.

    Returns
    -------
        NDArray[np.uint64]: ``(points, VALUE_LANES)`` shares, ordered as
            :func:`secure_histograms.dpf.params.expansion_points`.
    """
    params = key.parameters
    expand_params.validate(params)
    prev_depth = params.depth(expand_params.previous_level)
    if expand_params.previous_level == -1:
        prefixes = np.zeros(1, dtype=np.uint64)
    else:
        prefixes = np.asarray(expand_params.prefixes, dtype=np.uint64)
    seeds, t = _walk(key, prefixes, prev_depth)
    seeds, t = _expand_subtrees(key, seeds, t, prev_depth, params.depth(expand_params.level))
    return _output(key, expand_params.level, seeds, t)


def evaluate_at(key: DPFKey, points: Sequence[int], level: int = -1) -> NDArray[np.uint64]:
    """Evaluate ``key`` at explicit prefixes of hierarchy ``level`` (default: full width)."""
    params = key.parameters
    level = level % len(params.levels)
    depth = params.depth(level)
    if any(not (0 <= p < 2**depth) for p in points):
        msg = f"point outside the {depth}-bit domain of level {level}"
        raise InvalidDomain(msg)
    seeds, t = _walk(key, np.asarray(points, dtype=np.uint64), depth)
    return _output(key, level, seeds, t)
