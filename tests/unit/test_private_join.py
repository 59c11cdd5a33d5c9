"""Unit tests for the two-round private join."""

import pytest

from secure_histograms.conversion import (
    AggregationIDShare,
    RawConversion,
    aggregation_id_from_element,
    combine_id_shares,
    decode_exponentiated_keys,
    decrypt_partial_reports,
    encode_exponentiated_keys,
    exponentiate_key,
    rekey_by_aggregation_id,
    split_raw_conversion,
)
from secure_histograms.crypto import elgamal
from secure_histograms.errors import CryptoError, InputError, InvalidDomain


def _join(conversions, helper1_info, helper2_info, key_bit_size=32, drop_from_helper2=0):
    (priv1, pub1), (priv2, pub2) = helper1_info, helper2_info
    split = [split_raw_conversion(c, pub1, pub2) for c in conversions]
    reports1 = decrypt_partial_reports([r1 for r1, _ in split], priv1.standard_private_key)
    reports2 = decrypt_partial_reports([r2 for _, r2 in split], priv2.standard_private_key)
    reports2 = reports2[drop_from_helper2:]

    to_helper2 = encode_exponentiated_keys(
        exponentiate_key(r, priv1.secret, pub2.elgamal_public_key) for r in reports1
    )
    to_helper1 = encode_exponentiated_keys(
        exponentiate_key(r, priv2.secret, pub1.elgamal_public_key) for r in reports2
    )
    shares1, payloads1 = rekey_by_aggregation_id(
        decode_exponentiated_keys(to_helper1), reports1,
        priv1.elgamal_private_key, priv1.secret, key_bit_size,
    )
    shares2, payloads2 = rekey_by_aggregation_id(
        decode_exponentiated_keys(to_helper2), reports2,
        priv2.elgamal_private_key, priv2.secret, key_bit_size,
    )
    return split, (shares1, payloads1), (shares2, payloads2)


def test_both_helpers_derive_the_same_ids(helper1_info, helper2_info) -> None:
    """Equal keys share an ID, distinct keys do not, and both helpers agree."""
    conversions = [RawConversion("foo", 1), RawConversion("foo", 2), RawConversion("bar", 3)]
    split, (shares1, payloads1), (shares2, _) = _join(conversions, helper1_info, helper2_info)

    assert [s.report_id for s in shares1] == [s.report_id for s in shares2]
    assert [p.report_id for p in payloads1] == [s.report_id for s in shares1]
    ids = {s.report_id: combine_id_shares(s, t) for s, t in zip(shares1, shares2)}

    foo1, foo2, bar = (r1.report_id for r1, _ in split)
    assert ids[foo1] == ids[foo2]
    assert ids[foo1] != ids[bar]
    assert all(0 <= i < 2**32 for i in ids.values())


def test_ids_respect_key_bit_size(helper1_info, helper2_info) -> None:
    _, (shares1, _), _ = _join([RawConversion("foo", 1)], helper1_info, helper2_info, key_bit_size=8)
    assert 0 <= shares1[0].aggregation_id < 2**8
    assert shares1[0].key_bit_size == 8


def test_unmatched_reports_are_dropped(helper1_info, helper2_info, caplog) -> None:
    """The join is an inner join on report ID."""
    conversions = [RawConversion("foo", 1), RawConversion("bar", 2)]
    with caplog.at_level("WARNING"):
        _, (shares1, payloads1), (shares2, _) = _join(
            conversions, helper1_info, helper2_info, drop_from_helper2=1
        )
    assert len(shares1) == len(payloads1) == 1
    assert len(shares2) == 1
    assert "Dropped 1 reports" in caplog.text


def test_exponentiated_keys_round_trip(helper1_info, helper2_info) -> None:
    (priv1, pub1), (_, pub2) = helper1_info, helper2_info
    report1, _ = split_raw_conversion(RawConversion("foo", 1), pub1, pub2)
    decrypted = decrypt_partial_reports([report1], priv1.standard_private_key)[0]
    message = exponentiate_key(decrypted, priv1.secret, pub2.elgamal_public_key)
    assert decode_exponentiated_keys(encode_exponentiated_keys([message])) == [message]


@pytest.mark.parametrize("data", [b"not json", b'[{"report_id": "r"}]', b'[{"report_id": "r", "ciphertext": "abc"}]'])
def test_decode_exponentiated_keys_rejects_malformed(data: bytes) -> None:
    with pytest.raises(InputError):
        decode_exponentiated_keys(data)


def test_aggregation_id_from_element_range() -> None:
    element = elgamal.hash_to_group(b"k")
    assert aggregation_id_from_element(element, 1) in (0, 1)
    assert aggregation_id_from_element(element, 64) < 2**64
    assert aggregation_id_from_element(element, 16) == aggregation_id_from_element(element, 64) >> 48
    with pytest.raises(InvalidDomain):
        aggregation_id_from_element(element, 0)


def test_combine_id_shares_mismatch() -> None:
    with pytest.raises(InputError):
        combine_id_shares(AggregationIDShare("a", 1), AggregationIDShare("b", 1))
    with pytest.raises(CryptoError):
        combine_id_shares(AggregationIDShare("a", 1), AggregationIDShare("a", 2))
