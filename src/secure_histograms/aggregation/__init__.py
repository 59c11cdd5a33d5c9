"""Aggregation of DPF shares into partial histograms and their release.

Includes:
- Helper-side expansion and summation of DPF key halves.
- Sealed hand-off of DPF key halves between helpers.
- Merging of the two partial histograms into complete results.
- The ``Helper`` actor and an end-to-end driver.
"""

from .aggregator import (
    PartialAggregation,
    PartialHistogram,
    aggregate_data_share,
    aggregate_dpf_keys,
    generate_dpf_key_pairs,
)
from .helper import Helper, run_two_helper_aggregation
from .messages import (
    EncryptedDPFKey,
    decode_dpf_messages,
    encode_dpf_messages,
    open_dpf_key,
    open_dpf_keys,
    seal_dpf_keys,
)
from .releaser import CompleteResult, merge_aggregation

__all__ = [
    "CompleteResult",
    "EncryptedDPFKey",
    "Helper",
    "PartialAggregation",
    "PartialHistogram",
    "aggregate_data_share",
    "aggregate_dpf_keys",
    "decode_dpf_messages",
    "encode_dpf_messages",
    "generate_dpf_key_pairs",
    "merge_aggregation",
    "open_dpf_key",
    "open_dpf_keys",
    "run_two_helper_aggregation",
    "seal_dpf_keys",
]
