"""Helper-side aggregation: from DPF key halves to a partial histogram."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from secure_histograms.config import CombineParams, PrivacyParams
from secure_histograms.differential_privacy import NoiseSource, ZeroNoise, noise_source_for
from secure_histograms.dpf import (
    DPFKey,
    DPFParameters,
    ExpandParameters,
    combine_vectors,
    expand,
    expand_parameters_for_ids,
    expansion_points,
    generate_keys,
)
from secure_histograms.errors import InputError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from secure_histograms.conversion import AggregationIDShare, AggregationPayload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PartialAggregation:
    """One bucket of a partial histogram.

    ``partial_sum`` and ``partial_count`` are additive shares modulo 2^64;
    only the sum with the peer's entry is meaningful.
    """

    partial_sum: int
    partial_count: int
    key_share: bytes | None = None


@dataclass
class PartialHistogram:
    """A helper's expanded and summed shares, keyed by bucket prefix."""

    buckets: dict[int, PartialAggregation] = field(default_factory=dict)
    level: int = -1

    def __len__(self) -> int:
        return len(self.buckets)


def generate_dpf_key_pairs(
    id_shares: Iterable[AggregationIDShare],
    payloads: Iterable[AggregationPayload],
    params: DPFParameters,
) -> tuple[dict[str, DPFKey], dict[str, DPFKey]]:
    """Build one DPF key pair per report at its aggregation ID.

    The payload lanes are (value share, 1): the second lane counts every
    report once per helper.

    Returns
    -------
        tuple[dict[str, DPFKey], dict[str, DPFKey]]: Halves kept by this
            helper and halves for the peer, both keyed by report ID.
    """
    by_report = {p.report_id: p for p in payloads}
    own: dict[str, DPFKey] = {}
    peer: dict[str, DPFKey] = {}
    for share in id_shares:
        payload = by_report.get(share.report_id)
        if payload is None:
            msg = f"no payload for report {share.report_id}"
            raise InputError(msg)
        own[share.report_id], peer[share.report_id] = generate_keys(
            share.aggregation_id, (payload.value_share, 1), params
        )
    logger.debug("Generated %d DPF key pairs", len(own))
    return own, peer


def aggregate_dpf_keys(
    keys: Iterable[DPFKey],
    params: DPFParameters,
    expand_params: ExpandParameters,
    combine_params: CombineParams | None = None,
    noise: NoiseSource | None = None,
) -> PartialHistogram:
    """Expand every key over ``expand_params`` and sum the results.

    Args
    ------
        keys (Iterable[DPFKey]): All DPF halves held by one helper.
        params (DPFParameters): Hierarchy shared by the keys.
        expand_params (ExpandParameters): Points to evaluate.
        combine_params (CombineParams | None): Direct or segmented combine.
        noise (NoiseSource | None): Noise share added to every sum.

    Returns
    -------
        PartialHistogram: One entry per expanded point, including zeros.
    """
    combine_params = combine_params or CombineParams()
    noise = noise or ZeroNoise()
    expand_params.validate(params)
    points = expansion_points(params, expand_params)

    def _expanded():
        for key in keys:
            if key.parameters != params:
                msg = "DPF key was generated for a different hierarchy"
                raise InputError(msg)
            yield expand(key, expand_params)

    total = combine_vectors(_expanded(), len(points), combine_params)
    sums = total[:, 0] + noise.sample(len(points)).astype(np.uint64)
    logger.info(
        "Aggregated level %d over %d points (%s combine)",
        expand_params.level,
        len(points),
        "direct" if combine_params.direct_combine else "segmented",
    )
    return PartialHistogram(
        buckets={
            int(p): PartialAggregation(int(s), int(c))
            for p, s, c in zip(points, sums, total[:, 1])
        },
        level=expand_params.level,
    )


def aggregate_data_share(
    id_shares: Iterable[AggregationIDShare],
    payloads: Iterable[AggregationPayload],
    dpf_keys: Iterable[DPFKey],
    params: DPFParameters,
    *,
    combine_params: CombineParams | None = None,
    privacy: PrivacyParams | None = None,
    ignore_privacy: bool = False,
    noise: NoiseSource | None = None,
) -> PartialHistogram:
    """Aggregate one helper's shares over the identifiers it observed.

    The DPF halves are expanded only around the observed aggregation IDs.
    For each ID the key share of the smallest report ID is attached; both
    helpers hold the same report IDs, so they pick halves of the same
    report and the merged key shares reveal the bucket key.

    ``ignore_privacy`` disables noise for exact verification only.
    """
    id_shares = list(id_shares)
    key_shares = {p.report_id: p.key_share for p in payloads}
    privacy = privacy or PrivacyParams()
    noise = noise or noise_source_for(privacy, ignore_privacy=ignore_privacy)

    representative: dict[int, str] = {}
    for share in id_shares:
        current = representative.get(share.aggregation_id)
        if current is None or share.report_id < current:
            representative[share.aggregation_id] = share.report_id
    ids = sorted(representative)

    expanded = aggregate_dpf_keys(
        dpf_keys,
        params,
        expand_parameters_for_ids(ids, params),
        combine_params,
    )
    noise_shares = noise.sample(len(ids)).astype(np.uint64)
    buckets = {}
    for bucket, noise_share in zip(ids, noise_shares):
        entry = expanded.buckets[bucket]
        buckets[bucket] = PartialAggregation(
            partial_sum=(entry.partial_sum + int(noise_share)) % 2**64,
            partial_count=entry.partial_count,
            key_share=key_shares.get(representative[bucket]),
        )
    return PartialHistogram(buckets=buckets, level=len(params.levels) - 1)
