"""Tests for key and record I/O, the batch aggregation job and the command line."""

from pathlib import Path

import pytest
import yaml

from secure_histograms.aggregation import Helper, PartialAggregation, PartialHistogram
from secure_histograms.config import CombineParams
from secure_histograms.conversion import RawConversion, split_raw_conversion
from secure_histograms.dpf import DPFParameters, ExpandParameters, get_default_dpf_parameters
from secure_histograms.errors import InputError
from secure_histograms.main import main
from secure_histograms.pipeline import (
    AggregatePartialReportParams,
    aggregate_partial_report,
    create_keys_and_secret,
    merge_partial_histograms,
    read_complete_results,
    read_dpf_parameters,
    read_dpf_reports,
    read_expand_parameters,
    read_partial_histogram,
    read_prefixes,
    read_private_info,
    read_private_key_collection,
    read_public_info,
    write_dpf_parameters,
    write_dpf_reports,
    write_expand_parameters,
    write_partial_histogram,
    write_private_key_collection,
)
from secure_histograms.pipeline.cryptoio import shard_paths

KEY_BIT_SIZE = 8


@pytest.fixture(autouse=True)
def _keep_test_logging(monkeypatch):
    """Leave the root logger to pytest while the command line runs."""
    monkeypatch.setattr("secure_histograms.main.configure_logging", lambda verbose=False: None)


@pytest.fixture(scope="module")
def batch_inputs(tmp_path_factory):
    """Key directories, key collections and sealed DPF reports for two helpers.

    Returns the working directory and the expected (sum, count) per bucket.
    """
    root = tmp_path_factory.mktemp("batch")
    priv1, pub1 = create_keys_and_secret(root / "keys1", "k1")
    priv2, pub2 = create_keys_and_secret(root / "keys2", "k2")
    write_private_key_collection(root / "collection1.yaml", {"k1": "keys1"})
    write_private_key_collection(root / "collection2.yaml", {"k2": "keys2"})

    params = get_default_dpf_parameters(KEY_BIT_SIZE)
    helper1 = Helper("helper1", priv1, pub2, params)
    helper2 = Helper("helper2", priv2, pub1, params)
    conversions = [RawConversion("foo", 1)] * 3 + [RawConversion("bar", 2)]
    split = [split_raw_conversion(c, pub1, pub2) for c in conversions]
    helper1.receive_reports(r for r, _ in split)
    helper2.receive_reports(r for _, r in split)
    to_helper2, to_helper1 = helper1.exponentiate_keys(), helper2.exponentiate_keys()
    helper1.rekey(to_helper1)
    helper2.rekey(to_helper2)
    to_helper2, to_helper1 = helper1.generate_dpf_keys(), helper2.generate_dpf_keys()
    helper1.receive_peer_dpf_keys(to_helper1)
    helper2.receive_peer_dpf_keys(to_helper2)

    write_dpf_reports(root / "reports1.jsonl", helper1.export_dpf_keys())
    write_dpf_reports(root / "reports2.jsonl", helper2.export_dpf_keys(), num_shards=3)
    write_expand_parameters(root / "expand.yaml", ExpandParameters(level=KEY_BIT_SIZE - 1))

    ids = {s.report_id: s.aggregation_id for s in helper1.id_shares}
    expected: dict[int, tuple[int, int]] = {}
    for (report, _), conversion in zip(split, conversions):
        total, count = expected.get(ids[report.report_id], (0, 0))
        expected[ids[report.report_id]] = (total + conversion.value, count + 2)
    return root, expected


def _job(root: Path, helper: int, **kwargs) -> AggregatePartialReportParams:
    options = {
        "partial_report_uri": root / f"reports{helper}.jsonl",
        "partial_histogram_uri": root / f"partial{helper}.jsonl",
        "helper_private_keys": read_private_key_collection(root / f"collection{helper}.yaml"),
        "expand_params": read_expand_parameters(root / "expand.yaml"),
        "dpf_params": get_default_dpf_parameters(KEY_BIT_SIZE),
    }
    options.update(kwargs)
    return AggregatePartialReportParams(**options)


def test_key_files_round_trip(tmp_path: Path) -> None:
    private_info, public_info = create_keys_and_secret(tmp_path / "keys", "kid")
    assert read_private_info(tmp_path / "keys") == private_info
    assert read_public_info(tmp_path / "keys") == public_info
    assert public_info.standard_public_key.key_id == "kid"


def test_key_collection(tmp_path: Path) -> None:
    private_info, _ = create_keys_and_secret(tmp_path / "a")
    write_private_key_collection(tmp_path / "keys.yaml", {"a-key": "a"})
    collection = read_private_key_collection(tmp_path / "keys.yaml")
    assert list(collection) == ["a-key"]
    assert collection["a-key"].key == private_info.standard_private_key.key

    (tmp_path / "empty.yaml").write_text("")
    with pytest.raises(InputError):
        read_private_key_collection(tmp_path / "empty.yaml")
    with pytest.raises(InputError):
        read_private_info(tmp_path / "missing")


def test_parameter_files(tmp_path: Path) -> None:
    params = DPFParameters.from_list([2, 4])
    write_dpf_parameters(tmp_path / "params.yaml", params)
    assert read_dpf_parameters(tmp_path / "params.yaml") == params

    expand = ExpandParameters(level=1, prefixes=(1, 3), previous_level=0)
    write_expand_parameters(tmp_path / "expand.yaml", expand)
    assert read_expand_parameters(tmp_path / "expand.yaml") == expand

    (tmp_path / "prefixes.yaml").write_text(yaml.safe_dump([[], [1, 2]]))
    assert read_prefixes(tmp_path / "prefixes.yaml") == [[], [1, 2]]
    (tmp_path / "prefixes.yaml").write_text(yaml.safe_dump({"a": 1}))
    with pytest.raises(InputError):
        read_prefixes(tmp_path / "prefixes.yaml")


def test_sharded_partial_histogram_round_trip(tmp_path: Path) -> None:
    histogram = PartialHistogram(
        {b: PartialAggregation(b * 10, 2, bytes([b])) for b in range(5)}, level=3
    )
    write_partial_histogram(tmp_path / "hist", histogram, num_shards=2)
    assert [p.name for p in shard_paths(tmp_path / "hist", 2)] == [
        "hist-00000-of-00002",
        "hist-00001-of-00002",
    ]
    assert all(p.exists() for p in shard_paths(tmp_path / "hist", 2))
    restored = read_partial_histogram(tmp_path / "hist")
    assert restored.buckets == histogram.buckets
    assert restored.level == 3


def test_missing_input_is_an_input_error(tmp_path: Path) -> None:
    with pytest.raises(InputError):
        read_partial_histogram(tmp_path / "nothing")
    (tmp_path / "bad.jsonl").write_text("{not json\n")
    with pytest.raises(InputError):
        read_partial_histogram(tmp_path / "bad.jsonl")


def test_duplicate_bucket_across_shards_rejected(tmp_path: Path) -> None:
    histogram = PartialHistogram({b: PartialAggregation(b, 2) for b in range(4)}, level=1)
    write_partial_histogram(tmp_path / "hist", histogram, num_shards=2)
    first, second = shard_paths(tmp_path / "hist", 2)
    second.write_text(second.read_text() + first.read_text().splitlines()[0] + "\n")
    with pytest.raises(InputError, match="more than once"):
        read_partial_histogram(tmp_path / "hist")


def test_batch_aggregation_and_merge(batch_inputs) -> None:
    root, expected = batch_inputs
    hist1 = aggregate_partial_report(_job(root, 1, shards=2))
    hist2 = aggregate_partial_report(
        _job(root, 2, combine_params=CombineParams(direct_combine=False, segment_length=7))
    )
    assert len(hist1) == len(hist2) == 2**KEY_BIT_SIZE

    results = merge_partial_histograms(root / "partial1.jsonl", root / "partial2.jsonl", root / "complete.jsonl")
    assert {r.bucket: (r.sum, r.count) for r in results if r.count} == expected
    assert read_complete_results(root / "complete.jsonl") == results


def test_evaluation_context_reuse(batch_inputs) -> None:
    root, _ = batch_inputs
    out = root / "ctx_partial1.jsonl"
    first = aggregate_partial_report(
        _job(root, 1, partial_histogram_uri=out, decrypted_report_uri=root / "context1.jsonl")
    )
    encrypted, context = read_dpf_reports(root / "context1.jsonl")
    assert encrypted == []
    assert len(context) == 8

    second = aggregate_partial_report(
        _job(root, 1, partial_histogram_uri=out, partial_report_uri=root / "context1.jsonl",
             use_evaluation_context=True)
    )
    assert second.buckets == first.buckets
    with pytest.raises(InputError):
        aggregate_partial_report(_job(root, 1, partial_histogram_uri=out, partial_report_uri=root / "context1.jsonl"))


def test_unknown_key_id_rejected(batch_inputs) -> None:
    root, _ = batch_inputs
    with pytest.raises(InputError):
        aggregate_partial_report(_job(root, 1, helper_private_keys={}))


def test_command_line_flow(batch_inputs) -> None:
    root, expected = batch_inputs
    (root / "config.yaml").write_text(yaml.safe_dump({"dpf": {"key_bit_size": KEY_BIT_SIZE}}))
    for helper in (1, 2):
        code = main([
            "--config", str(root / "config.yaml"),
            "aggregate",
            f"--partial_report_uri={root / f'reports{helper}.jsonl'}",
            f"--expand_parameters_uri={root / 'expand.yaml'}",
            f"--partial_histogram_uri={root / f'cli_partial{helper}.jsonl'}",
            f"--private_key_params_uri={root / f'collection{helper}.yaml'}",
            "--direct_combine=false",
            "--segment_length=16",
            "--file_shards=2",
        ])
        assert code == 0
    code = main([
        "merge",
        f"--partial_histogram_uri1={root / 'cli_partial1.jsonl'}",
        f"--partial_histogram_uri2={root / 'cli_partial2.jsonl'}",
        f"--complete_histogram_uri={root / 'cli_complete.jsonl'}",
    ])
    assert code == 0
    results = read_complete_results(root / "cli_complete.jsonl")
    assert {r.bucket: (r.sum, r.count) for r in results if r.count} == expected


def test_command_line_legacy_parameters(batch_inputs) -> None:
    root, expected = batch_inputs
    write_dpf_parameters(root / "sum_params.yaml", get_default_dpf_parameters(KEY_BIT_SIZE))
    (root / "prefixes.yaml").write_text(yaml.safe_dump([[]]))
    for helper in (1, 2):
        assert main([
            "aggregate",
            f"--partial_report_uri={root / f'reports{helper}.jsonl'}",
            f"--sum_parameters_uri={root / 'sum_params.yaml'}",
            f"--prefixes_uri={root / 'prefixes.yaml'}",
            f"--partial_histogram_uri={root / f'legacy{helper}.jsonl'}",
            f"--private_key_params_uri={root / f'collection{helper}.yaml'}",
            f"--key_bit_size={KEY_BIT_SIZE}",
        ]) == 0
    # The legacy prefixes select the first level: the two 1-bit halves of the domain.
    results = merge_partial_histograms(root / "legacy1.jsonl", root / "legacy2.jsonl", root / "legacy.jsonl")
    assert [r.bucket for r in results] == [0, 1]
    assert sum(r.sum for r in results) == sum(s for s, _ in expected.values())


def test_command_line_errors_exit_non_zero(tmp_path: Path, batch_inputs) -> None:
    root, _ = batch_inputs
    assert main([
        "aggregate",
        f"--partial_report_uri={root / 'reports1.jsonl'}",
        f"--partial_histogram_uri={tmp_path / 'out.jsonl'}",
        f"--private_key_params_uri={root / 'collection1.yaml'}",
    ]) == 1
    assert main(["--config", str(tmp_path / "missing.yaml"), "create-keys", f"--key_dir={tmp_path}"]) == 1


def test_command_line_create_keys(tmp_path: Path) -> None:
    assert main(["create-keys", f"--key_dir={tmp_path / 'keys'}", "--key_id=cli"]) == 0
    assert read_public_info(tmp_path / "keys").standard_public_key.key_id == "cli"
