"""Command line entry point for one helper's batch jobs.

    secure-histograms aggregate --partial_report_uri=... --expand_parameters_uri=... \
        --partial_histogram_uri=... --private_key_params_uri=...
    secure-histograms merge --partial_histogram_uri1=... --partial_histogram_uri2=... \
        --complete_histogram_uri=...
    secure-histograms create-keys --key_dir=...
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import TYPE_CHECKING

import yaml

from secure_histograms.config import CombineParams, Config, DPFConfig, PrivacyParams
from secure_histograms.dpf import convert_old_params_to_expand_parameter, get_default_dpf_parameters
from secure_histograms.errors import AggregationError
from secure_histograms.logger import configure_logging, redact
from secure_histograms.pipeline import (
    AggregatePartialReportParams,
    aggregate_partial_report,
    create_keys_and_secret,
    merge_partial_histograms,
    read_dpf_parameters,
    read_expand_parameters,
    read_prefixes,
    read_private_key_collection,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from secure_histograms.dpf import ExpandParameters

logger = logging.getLogger("secure_histograms")


def _parse_bool(text: str) -> bool:
    value = text.strip().lower()
    if value in ("1", "true", "yes"):
        return True
    if value in ("0", "false", "no"):
        return False
    msg = f"expected a boolean, got {text!r}"
    raise argparse.ArgumentTypeError(msg)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="secure-histograms", description=__doc__.splitlines()[0])
    parser.add_argument("--config", default="", help="YAML configuration file.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    agg = sub.add_parser("aggregate", help="Aggregate this helper's DPF reports.")
    agg.add_argument("--partial_report_uri", required=True,
                     help="Input partial reports. It may contain the encrypted reports or an evaluation context.")
    agg.add_argument("--expand_parameters_uri", default="", help="Input URI of the expansion parameter file.")
    agg.add_argument("--partial_histogram_uri", required=True, help="Output partial aggregation.")
    agg.add_argument("--decrypted_report_uri", default="",
                     help="Output the decrypted reports so later runs skip decryption.")
    agg.add_argument("--key_bit_size", type=int, default=None, help="Bit size of the bucket IDs.")
    agg.add_argument("--private_key_params_uri", required=True,
                     help="Input file listing the standard private keys by key ID.")
    agg.add_argument("--direct_combine", type=_parse_bool, default=None,
                     help="Use direct or segmented combine when aggregating the expanded vectors.")
    agg.add_argument("--segment_length", type=int, default=None, help="Segment length for segmented combine.")
    agg.add_argument("--epsilon", type=float, default=None, help="Epsilon for the privacy budget.")
    agg.add_argument("--l1_sensitivity", type=int, default=None, help="L1-sensitivity for the privacy budget.")
    agg.add_argument("--file_shards", type=int, default=None, help="Number of shards for the output file.")
    agg.add_argument("--sum_parameters_uri", default="", help="Legacy: input file with the DPF parameters.")
    agg.add_argument("--prefixes_uri", default="", help="Legacy: input file with the hierarchical prefixes.")

    merge = sub.add_parser("merge", help="Merge both helpers' partial histograms.")
    merge.add_argument("--partial_histogram_uri1", required=True)
    merge.add_argument("--partial_histogram_uri2", required=True)
    merge.add_argument("--complete_histogram_uri", required=True)
    merge.add_argument("--file_shards", type=int, default=None)

    keys = sub.add_parser("create-keys", help="Generate a helper's key material.")
    keys.add_argument("--key_dir", required=True)
    keys.add_argument("--key_id", default=None)
    return parser


def _merge_config(args: argparse.Namespace) -> Config:
    """Config file values, overridden by any flag given on the command line."""
    config = Config.from_yaml(args.config) if args.config else Config()

    def pick(flag: str, default):
        value = getattr(args, flag, None)
        return default if value is None else value

    return Config(
        privacy=PrivacyParams(
            epsilon=pick("epsilon", config.privacy.epsilon),
            l1_sensitivity=pick("l1_sensitivity", config.privacy.l1_sensitivity),
        ),
        combine=CombineParams(
            direct_combine=pick("direct_combine", config.combine.direct_combine),
            segment_length=pick("segment_length", config.combine.segment_length),
        ),
        dpf=DPFConfig(key_bit_size=pick("key_bit_size", config.dpf.key_bit_size)),
        file_shards=pick("file_shards", config.file_shards),
        verbose=args.verbose or config.verbose,
    )


def _expand_parameters(args: argparse.Namespace) -> ExpandParameters:
    if args.expand_parameters_uri:
        return read_expand_parameters(args.expand_parameters_uri)
    if not (args.sum_parameters_uri and args.prefixes_uri):
        msg = "either --expand_parameters_uri or both --sum_parameters_uri and --prefixes_uri are required"
        raise AggregationError(msg)
    return convert_old_params_to_expand_parameter(
        read_dpf_parameters(args.sum_parameters_uri), read_prefixes(args.prefixes_uri)
    )


def run_aggregate(args: argparse.Namespace, config: Config) -> None:
    helper_keys = read_private_key_collection(args.private_key_params_uri)
    expand = _expand_parameters(args)
    # Hierarchies are defined for every prefix length of the bucket ID.
    dpf_params = get_default_dpf_parameters(config.dpf.key_bit_size)
    aggregate_partial_report(
        AggregatePartialReportParams(
            partial_report_uri=args.partial_report_uri,
            partial_histogram_uri=args.partial_histogram_uri,
            helper_private_keys=helper_keys,
            expand_params=expand,
            dpf_params=dpf_params,
            combine_params=config.combine,
            privacy=config.privacy,
            decrypted_report_uri=args.decrypted_report_uri,
            shards=config.file_shards,
            use_evaluation_context=bool(args.expand_parameters_uri),
        )
    )


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = _merge_config(args)
        configure_logging(config.verbose)
        logger.debug("Configuration: %s", redact(config.to_dict()))
        if args.command == "aggregate":
            run_aggregate(args, config)
        elif args.command == "merge":
            results = merge_partial_histograms(
                args.partial_histogram_uri1,
                args.partial_histogram_uri2,
                args.complete_histogram_uri,
                config.file_shards,
            )
            logger.info("Released %d buckets", len(results))
        else:
            create_keys_and_secret(args.key_dir, args.key_id)
    except (AggregationError, OSError, yaml.YAMLError) as err:
        logger.error("%s failed: %s", args.command, err)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
