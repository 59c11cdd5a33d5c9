"""Unit tests for XOR and additive secret sharing."""

import pytest

from secure_histograms.errors import InputError, LengthMismatch
from secure_histograms.secret_share import combine_bytes, combine_int, split_bytes, split_int


def test_split_bytes_combines_back() -> None:
    """Recombining XOR shares gives the original bytes."""
    share1, share2 = split_bytes(b"abcd")
    assert len(share1) == len(share2) == 4
    assert combine_bytes(share1, share2) == b"abcd"


def test_split_bytes_is_randomized() -> None:
    """Independent splits of the same input never repeat a share pair."""
    data = b"a fairly long conversion key"
    splits = [split_bytes(data) for _ in range(2000)]
    assert len(set(splits)) == len(splits)
    assert len({share1 for share1, _ in splits}) == len(splits)
    assert all(combine_bytes(*pair) == data for pair in splits)


def test_split_bytes_empty() -> None:
    assert split_bytes(b"") == (b"", b"")


def test_combine_bytes_length_mismatch() -> None:
    with pytest.raises(LengthMismatch):
        combine_bytes(b"abc", b"ab")


@pytest.mark.parametrize("value", [0, 1, 65535, 2**32 - 1])
def test_split_int_combines_back(value: int) -> None:
    """Additive shares recombine modulo 2^32."""
    share1, share2 = split_int(value, 2**32)
    assert 0 <= share1 < 2**32
    assert 0 <= share2 < 2**32
    assert combine_int(share1, share2, 2**32) == value


def test_combine_int_wraps() -> None:
    assert combine_int(2**32 - 1, 2, 2**32) == 1


@pytest.mark.parametrize(("value", "modulus"), [(-1, 2**32), (2**32, 2**32), (0, 1)])
def test_split_int_rejects_bad_input(value: int, modulus: int) -> None:
    with pytest.raises(InputError):
        split_int(value, modulus)
