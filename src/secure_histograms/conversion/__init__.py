"""Conversion reports and the private join between the two helpers."""

from .private_join import (
    AggregationIDShare,
    AggregationPayload,
    ExponentiatedKey,
    aggregation_id_from_element,
    combine_id_shares,
    decode_exponentiated_keys,
    encode_exponentiated_keys,
    exponentiate_key,
    rekey_by_aggregation_id,
)
from .report import (
    DecryptedReport,
    EvaluationContext,
    PartialReport,
    RawConversion,
    ServerPrivateInfo,
    ServerPublicInfo,
    create_report_id,
    decrypt_partial_report,
    decrypt_partial_reports,
    parse_raw_conversion,
    split_raw_conversion,
)

__all__ = [
    # Report codec
    "RawConversion",
    "PartialReport",
    "DecryptedReport",
    "ServerPublicInfo",
    "ServerPrivateInfo",
    "EvaluationContext",
    "create_report_id",
    "parse_raw_conversion",
    "split_raw_conversion",
    "decrypt_partial_report",
    "decrypt_partial_reports",

    # Private join
    "ExponentiatedKey",
    "AggregationIDShare",
    "AggregationPayload",
    "aggregation_id_from_element",
    "exponentiate_key",
    "rekey_by_aggregation_id",
    "combine_id_shares",
    "encode_exponentiated_keys",
    "decode_exponentiated_keys",
]
