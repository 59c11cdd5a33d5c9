"""End-to-end and unit tests for DPF aggregation and release."""

import dataclasses

import numpy as np
import pytest

from secure_histograms.aggregation import (
    CompleteResult,
    Helper,
    PartialAggregation,
    PartialHistogram,
    aggregate_dpf_keys,
    decode_dpf_messages,
    encode_dpf_messages,
    generate_dpf_key_pairs,
    merge_aggregation,
    run_two_helper_aggregation,
    seal_dpf_keys,
)
from secure_histograms.config import DEFAULT_KEY_BIT_SIZE, SUM_MODULUS, CombineParams, PrivacyParams
from secure_histograms.conversion import (
    AggregationIDShare,
    AggregationPayload,
    RawConversion,
    split_raw_conversion,
)
from secure_histograms.dpf import DPFParameters, ExpandParameters, generate_keys, get_default_dpf_parameters
from secure_histograms.errors import DecryptionError, InputError
from secure_histograms.secret_share import split_bytes, split_int
from secure_histograms.utils import generate_raw_conversions, totals_by_key


def _helpers(helper1_info, helper2_info, params=None):
    (priv1, pub1), (priv2, pub2) = helper1_info, helper2_info
    return Helper("helper1", priv1, pub2, params), Helper("helper2", priv2, pub1, params)


@pytest.fixture(scope="module")
def joined(helper1_info, helper2_info):
    """Two helpers that have completed the join and exchanged DPF keys for foo/bar."""
    (_, pub1), (_, pub2) = helper1_info, helper2_info
    helper1, helper2 = _helpers(helper1_info, helper2_info)
    results = run_two_helper_aggregation(
        [RawConversion("foo", 1), RawConversion("bar", 2)],
        helper1, helper2, pub1, pub2, ignore_privacy=True,
    )
    return helper1, helper2, results


def test_foo_bar_aggregation(joined) -> None:
    """Each report is counted once per helper, so counts are twice the report count."""
    _, _, results = joined
    assert totals_by_key(results) == {"foo": (1, 2), "bar": (2, 2)}
    assert len({r.bucket for r in results}) == 2
    assert all(0 <= r.bucket < 2**32 for r in results)


def test_helpers_agree_on_ids(joined) -> None:
    helper1, helper2, _ = joined
    assert [s.aggregation_id for s in helper1.id_shares] == [s.aggregation_id for s in helper2.id_shares]
    assert len(helper1.dpf_keys) == len(helper2.dpf_keys) == 4


def test_helper_defaults_to_configured_key_bit_size(helper1_info, helper2_info) -> None:
    helper1, _ = _helpers(helper1_info, helper2_info)
    assert helper1.params == get_default_dpf_parameters(DEFAULT_KEY_BIT_SIZE)
    assert helper1.params.log_domain_size == DEFAULT_KEY_BIT_SIZE


def test_segmented_combine_gives_identical_partials(joined) -> None:
    helper1, _, _ = joined
    direct = helper1.aggregate(ignore_privacy=True)
    segmented = helper1.aggregate(
        combine_params=CombineParams(direct_combine=False, segment_length=1), ignore_privacy=True
    )
    assert direct.buckets == segmented.buckets
    assert direct.level == segmented.level == 31


def test_aggregation_at_scale(helper1_info, helper2_info) -> None:
    """100 conversions over 10 keys."""
    (_, pub1), (_, pub2) = helper1_info, helper2_info
    conversions, expected = generate_raw_conversions(100, 10)
    helper1, helper2 = _helpers(helper1_info, helper2_info)
    results = run_two_helper_aggregation(conversions, helper1, helper2, pub1, pub2, ignore_privacy=True)
    assert totals_by_key(results) == expected
    assert all(count == 20 for _, count in expected.values())


def test_aggregation_is_independent_of_report_order(helper1_info, helper2_info) -> None:
    """Shuffling the conversions and reversing one helper's input leaves the result unchanged."""
    (_, pub1), (_, pub2) = helper1_info, helper2_info
    conversions, expected = generate_raw_conversions(100, 10)
    baseline_helpers = _helpers(helper1_info, helper2_info)
    baseline = run_two_helper_aggregation(conversions, *baseline_helpers, pub1, pub2, ignore_privacy=True)

    order = np.random.default_rng(11).permutation(len(conversions))
    split = [split_raw_conversion(conversions[i], pub1, pub2) for i in order]
    helper1, helper2 = _helpers(helper1_info, helper2_info)
    helper1.receive_reports(r1 for r1, _ in split)
    helper2.receive_reports(r2 for _, r2 in reversed(split))
    to_helper2, to_helper1 = helper1.exponentiate_keys(), helper2.exponentiate_keys()
    helper1.rekey(to_helper1)
    helper2.rekey(to_helper2)
    keys_for_helper2, keys_for_helper1 = helper1.generate_dpf_keys(), helper2.generate_dpf_keys()
    helper1.receive_peer_dpf_keys(keys_for_helper1)
    helper2.receive_peer_dpf_keys(keys_for_helper2)
    shuffled = merge_aggregation(
        helper1.aggregate(ignore_privacy=True), helper2.aggregate(ignore_privacy=True)
    )

    def triples(results):
        return sorted((r.key, r.sum, r.count) for r in results)

    assert triples(shuffled) == triples(baseline)
    assert totals_by_key(shuffled) == expected


def test_small_domain_collisions_merge_buckets(helper1_info, helper2_info) -> None:
    """With a 1-bit domain all keys land in at most two buckets; totals are preserved."""
    (_, pub1), (_, pub2) = helper1_info, helper2_info
    params = DPFParameters.from_list([1])
    helper1, helper2 = _helpers(helper1_info, helper2_info, params)
    conversions = [RawConversion(f"k{i}", i + 1) for i in range(5)]
    results = run_two_helper_aggregation(conversions, helper1, helper2, pub1, pub2, ignore_privacy=True)
    assert {r.bucket for r in results} <= {0, 1}
    assert sum(r.sum for r in results) == 15
    assert sum(r.count for r in results) == 10


def test_noisy_release_keeps_counts_exact(helper1_info, helper2_info) -> None:
    (_, pub1), (_, pub2) = helper1_info, helper2_info
    conversions, expected = generate_raw_conversions(20, 2, max_value=5)
    helper1, helper2 = _helpers(helper1_info, helper2_info)
    results = run_two_helper_aggregation(
        conversions, helper1, helper2, pub1, pub2,
        privacy=PrivacyParams(epsilon=1.0, l1_sensitivity=5), l1_sensitivity=5,
    )
    released = totals_by_key(results)
    assert set(released) == set(expected)
    for key, (true_sum, count) in expected.items():
        noisy_sum, released_count = released[key]
        assert released_count == count
        assert abs(noisy_sum - true_sum) < 200


def test_peer_keys_for_unknown_reports_rejected(helper1_info, helper2_info) -> None:
    _, pub1 = helper1_info
    stranger, _ = _helpers(helper1_info, helper2_info)
    _, k1 = generate_keys(1, (1, 1), stranger.params)
    message = encode_dpf_messages(seal_dpf_keys({"unknown": k1}, pub1.standard_public_key))
    with pytest.raises(InputError):
        stranger.receive_peer_dpf_keys(message)


def test_tampered_dpf_message_rejected(helper1_info, helper2_info) -> None:
    _, pub2 = helper2_info
    _, helper2 = _helpers(helper1_info, helper2_info)
    _, k1 = generate_keys(1, (1, 1), helper2.params)
    records = seal_dpf_keys({"r1": k1}, pub2.standard_public_key)
    forged = [dataclasses.replace(records[0], report_id="r2")]
    with pytest.raises(DecryptionError):
        helper2.receive_peer_dpf_keys(encode_dpf_messages(forged))
    with pytest.raises(InputError):
        decode_dpf_messages(b"{")


def test_generate_dpf_key_pairs_requires_payload(small_params) -> None:
    with pytest.raises(InputError):
        generate_dpf_key_pairs([AggregationIDShare("r1", 3, 6)], [], small_params)


def test_generate_and_aggregate_dpf_keys(small_params) -> None:
    """Own and peer halves of all reports sum to (value, count) per bucket."""
    shares = [AggregationIDShare("r1", 5, 6), AggregationIDShare("r2", 5, 6), AggregationIDShare("r3", 40, 6)]
    payloads = [AggregationPayload("r1", 3, b""), AggregationPayload("r2", 4, b""), AggregationPayload("r3", 1, b"")]
    own, peer = generate_dpf_key_pairs(shares, payloads, small_params)
    assert sorted(own) == sorted(peer) == ["r1", "r2", "r3"]

    expand_params = ExpandParameters(level=2)
    partial1 = aggregate_dpf_keys(own.values(), small_params, expand_params)
    partial2 = aggregate_dpf_keys(peer.values(), small_params, expand_params)
    assert len(partial1) == 64
    results = {r.bucket: (r.sum, r.count) for r in merge_aggregation(partial1, partial2)}
    assert results[5] == (7, 2)
    assert results[40] == (1, 1)
    assert sum(s for s, _ in results.values()) == 8


def test_aggregate_rejects_foreign_keys(small_params) -> None:
    k0, _ = generate_keys(1, 1, DPFParameters.from_list([6]))
    with pytest.raises(InputError):
        aggregate_dpf_keys([k0], small_params, ExpandParameters(level=0))


def test_merge_aggregation_recovers_key_and_lifts_negative_sums() -> None:
    share1, share2 = split_bytes(b"foo")
    partial1 = PartialHistogram({7: PartialAggregation(2**64 - 5, 3, share1)}, level=0)
    partial2 = PartialHistogram({7: PartialAggregation(2, 1, share2)}, level=0)
    assert merge_aggregation(partial1, partial2) == [CompleteResult(bucket=7, sum=-3, count=4, key="foo")]


def test_merge_aggregation_keeps_sums_above_2_31() -> None:
    value = 2**31 + 5
    share1, share2 = split_int(value, SUM_MODULUS)
    partial1 = PartialHistogram({3: PartialAggregation(share1, 1)}, level=0)
    partial2 = PartialHistogram({3: PartialAggregation(share2, 1)}, level=0)
    assert merge_aggregation(partial1, partial2) == [CompleteResult(bucket=3, sum=value, count=2)]


def test_dpf_aggregation_of_large_value_is_exact(small_params) -> None:
    """Value shares wrap in the 64-bit lanes, yet the released sum is exact."""
    value = 65535 * 40000
    share1, share2 = split_int(value, SUM_MODULUS)
    id_share = [AggregationIDShare("r1", 9, 6)]
    own1, peer1 = generate_dpf_key_pairs(id_share, [AggregationPayload("r1", share1, b"")], small_params)
    own2, peer2 = generate_dpf_key_pairs(id_share, [AggregationPayload("r1", share2, b"")], small_params)
    expand_params = ExpandParameters(level=2)
    partial1 = aggregate_dpf_keys([*own1.values(), *peer2.values()], small_params, expand_params)
    partial2 = aggregate_dpf_keys([*own2.values(), *peer1.values()], small_params, expand_params)
    results = {r.bucket: (r.sum, r.count) for r in merge_aggregation(partial1, partial2)}
    assert results[9] == (value, 2)
    assert all(results[b] == (0, 0) for b in results if b != 9)


def test_merge_aggregation_without_key_shares() -> None:
    partial = PartialHistogram({1: PartialAggregation(1, 1)}, level=0)
    assert merge_aggregation(partial, partial)[0].key is None


def test_merge_aggregation_rejects_mismatches() -> None:
    partial = PartialHistogram({1: PartialAggregation(1, 1)}, level=0)
    with pytest.raises(InputError):
        merge_aggregation(partial, PartialHistogram({2: PartialAggregation(1, 1)}, level=0))
    with pytest.raises(InputError):
        merge_aggregation(partial, PartialHistogram({1: PartialAggregation(1, 1)}, level=1))


def test_partial_sums_wrap_modulo_2_64(small_params) -> None:
    """A lone helper's partial sums look random; only the merged sum is meaningful."""
    own, _ = generate_dpf_key_pairs(
        [AggregationIDShare("r1", 5, 6)], [AggregationPayload("r1", 3, b"")], small_params
    )
    partial = aggregate_dpf_keys(own.values(), small_params, ExpandParameters(level=2))
    sums = np.array([e.partial_sum for e in partial.buckets.values()], dtype=np.uint64)
    assert np.count_nonzero(sums) > 1
