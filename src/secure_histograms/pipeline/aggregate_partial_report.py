"""Batch jobs run by one helper: aggregate its DPF reports, merge two partial histograms."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from secure_histograms.aggregation import (
    CompleteResult,
    PartialHistogram,
    aggregate_dpf_keys,
    merge_aggregation,
    open_dpf_key,
)
from secure_histograms.config import CombineParams, PrivacyParams
from secure_histograms.differential_privacy import noise_source_for
from secure_histograms.errors import InputError
from secure_histograms.pipeline.cryptoio import (
    read_dpf_reports,
    read_partial_histogram,
    write_complete_results,
    write_evaluation_context,
    write_partial_histogram,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    import numpy as np

    from secure_histograms.aggregation import EncryptedDPFKey
    from secure_histograms.crypto.standard import StandardPrivateKey
    from secure_histograms.dpf import DPFKey, DPFParameters, ExpandParameters

logger = logging.getLogger(__name__)


@dataclass
class AggregatePartialReportParams:
    """Inputs and settings of one helper's aggregation job.

    Attributes
    ----------
        partial_report_uri: str
            Encrypted DPF reports, or an evaluation context written by an
            earlier run.
        partial_histogram_uri: str
            Output of the partial histogram.
        helper_private_keys: Mapping[str, StandardPrivateKey]
            Transport private keys by key ID.
        expand_params: ExpandParameters
            Points to evaluate.
        dpf_params: DPFParameters
            Hierarchy the reports were generated for.
        decrypted_report_uri: str
            Where to write the evaluation context; empty to skip.
        use_evaluation_context: bool
            Accept already decrypted keys in the report input.
    """

    partial_report_uri: str | Path
    partial_histogram_uri: str | Path
    helper_private_keys: Mapping[str, StandardPrivateKey]
    expand_params: ExpandParameters
    dpf_params: DPFParameters
    combine_params: CombineParams = field(default_factory=CombineParams)
    privacy: PrivacyParams = field(default_factory=PrivacyParams)
    decrypted_report_uri: str | Path = ""
    shards: int = 1
    use_evaluation_context: bool = False
    ignore_privacy: bool = False
    rng: np.random.Generator | None = None


def decrypt_dpf_reports(
    records: Iterable[EncryptedDPFKey],
    private_keys: Mapping[str, StandardPrivateKey],
) -> dict[str, DPFKey]:
    """Open every sealed DPF key with the private key named by its key ID.

    Raises
    ------
        InputError: If a record names a key ID missing from ``private_keys``.
        DecryptionError: If a record does not open under its key.
    """
    keys = {}
    for record in records:
        private_key = private_keys.get(record.key_id)
        if private_key is None:
            msg = f"no private key with ID {record.key_id!r} for report {record.report_id}"
            raise InputError(msg)
        keys[record.report_id] = open_dpf_key(record, private_key)
    return keys


def aggregate_partial_report(params: AggregatePartialReportParams) -> PartialHistogram:
    """Decrypt, expand, combine, noise and write one helper's partial histogram."""
    encrypted, context = read_dpf_reports(params.partial_report_uri)
    if context and not params.use_evaluation_context:
        msg = f"{params.partial_report_uri} holds decrypted reports but evaluation contexts are disabled"
        raise InputError(msg)
    keys = decrypt_dpf_reports(encrypted, params.helper_private_keys)
    duplicated = set(keys) & set(context)
    if duplicated:
        msg = f"{len(duplicated)} reports appear both encrypted and decrypted"
        raise InputError(msg)
    keys.update(context)
    logger.info(
        "Read %d reports (%d decrypted now, %d from evaluation context)",
        len(keys),
        len(encrypted),
        len(context),
    )

    if params.decrypted_report_uri:
        write_evaluation_context(params.decrypted_report_uri, keys, params.shards)

    noise = noise_source_for(params.privacy, ignore_privacy=params.ignore_privacy, rng=params.rng)
    histogram = aggregate_dpf_keys(
        keys.values(),
        params.dpf_params,
        params.expand_params,
        params.combine_params,
        noise,
    )
    write_partial_histogram(params.partial_histogram_uri, histogram, params.shards)
    return histogram


def merge_partial_histograms(
    uri1: str | Path,
    uri2: str | Path,
    out_uri: str | Path,
    num_shards: int = 1,
) -> list[CompleteResult]:
    """Combine the two helpers' partial histogram files into complete results."""
    results = merge_aggregation(read_partial_histogram(uri1), read_partial_histogram(uri2))
    write_complete_results(out_uri, results, num_shards)
    return results
