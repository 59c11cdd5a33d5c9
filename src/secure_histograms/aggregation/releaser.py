"""Merging the two helpers' partial histograms into the released result."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from secure_histograms.aggregation.aggregator import PartialHistogram
from secure_histograms.config import SUM_MODULUS
from secure_histograms.differential_privacy import center_lift
from secure_histograms.errors import InputError
from secure_histograms.secret_share import combine_bytes

logger = logging.getLogger(__name__)

MASK64 = 2**64 - 1


@dataclass(frozen=True)
class CompleteResult:
    """Final published aggregate of one bucket.

    ``count`` adds the report counts of both helpers, so every report is
    counted twice. ``key`` is the recovered bucket key when the partial
    histograms carry key shares, otherwise None.
    """

    bucket: int
    sum: int
    count: int
    key: str | None = None


def _merge_key(bucket: int, share1: bytes | None, share2: bytes | None) -> str | None:
    if share1 is None or share2 is None:
        return None
    try:
        return combine_bytes(share1, share2).decode()
    except UnicodeDecodeError as err:
        msg = f"key shares of bucket {bucket} do not combine to a UTF-8 key"
        raise InputError(msg) from err


def merge_aggregation(
    partial1: PartialHistogram,
    partial2: PartialHistogram,
) -> list[CompleteResult]:
    """Bucket-wise sum of two partial histograms.

    Sums are reduced modulo ``SUM_MODULUS`` and center-lifted so noisy sums
    near zero come out signed. Noise, if any, was already added by the
    helpers when they built their partial histograms.

    Raises
    ------
        InputError: If the histograms cover different buckets or levels.
    """
    if partial1.level != partial2.level:
        msg = f"partial histograms are for levels {partial1.level} and {partial2.level}"
        raise InputError(msg)
    missing = set(partial1.buckets) ^ set(partial2.buckets)
    if missing:
        msg = f"{len(missing)} buckets are present in only one partial histogram"
        raise InputError(msg)

    buckets = sorted(partial1.buckets)
    sums = center_lift(
        [partial1.buckets[b].partial_sum + partial2.buckets[b].partial_sum for b in buckets],
        SUM_MODULUS,
    )

    results = []
    for bucket, total in zip(buckets, sums):
        entry1, entry2 = partial1.buckets[bucket], partial2.buckets[bucket]
        results.append(
            CompleteResult(
                bucket=bucket,
                sum=int(total),
                count=(entry1.partial_count + entry2.partial_count) & MASK64,
                key=_merge_key(bucket, entry1.key_share, entry2.key_share),
            )
        )
    logger.info("Merged %d buckets", len(results))
    return results
