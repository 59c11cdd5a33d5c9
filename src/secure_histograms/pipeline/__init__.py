"""File-based batch jobs and the I/O they read and write."""

from .aggregate_partial_report import (
    AggregatePartialReportParams,
    aggregate_partial_report,
    decrypt_dpf_reports,
    merge_partial_histograms,
)
from .cryptoio import (
    create_keys_and_secret,
    read_complete_results,
    read_dpf_parameters,
    read_dpf_reports,
    read_expand_parameters,
    read_partial_histogram,
    read_prefixes,
    read_private_info,
    read_private_key_collection,
    read_public_info,
    save_elgamal_public_key,
    save_private_info,
    save_standard_public_key,
    write_complete_results,
    write_dpf_parameters,
    write_dpf_reports,
    write_evaluation_context,
    write_expand_parameters,
    write_partial_histogram,
    write_private_key_collection,
)

__all__ = [
    "AggregatePartialReportParams",
    "aggregate_partial_report",
    "create_keys_and_secret",
    "decrypt_dpf_reports",
    "merge_partial_histograms",
    "read_complete_results",
    "read_dpf_parameters",
    "read_dpf_reports",
    "read_expand_parameters",
    "read_partial_histogram",
    "read_prefixes",
    "read_private_info",
    "read_private_key_collection",
    "read_public_info",
    "save_elgamal_public_key",
    "save_private_info",
    "save_standard_public_key",
    "write_complete_results",
    "write_dpf_parameters",
    "write_dpf_reports",
    "write_evaluation_context",
    "write_expand_parameters",
    "write_partial_histogram",
    "write_private_key_collection",
]
