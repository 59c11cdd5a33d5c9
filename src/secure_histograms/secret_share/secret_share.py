"""Two-party additive and XOR secret sharing."""

from __future__ import annotations

import secrets

from secure_histograms.errors import InputError, LengthMismatch


def split_bytes(data: bytes) -> tuple[bytes, bytes]:
    """Split ``data`` into two XOR shares.

    The first share is fresh random bytes of the same length, the second is
    ``data`` XOR the first, so each share alone is uniformly distributed.
    """
    share1 = secrets.token_bytes(len(data))
    share2 = bytes(a ^ b for a, b in zip(data, share1))
    return share1, share2


def combine_bytes(share1: bytes, share2: bytes) -> bytes:
    """Recover the bytes from two XOR shares.

    Raises
    ------
        LengthMismatch: If the shares differ in length.
    """
    if len(share1) != len(share2):
        msg = f"byte shares differ in length: {len(share1)} != {len(share2)}"
        raise LengthMismatch(msg)
    return bytes(a ^ b for a, b in zip(share1, share2))


def split_int(value: int, modulus: int) -> tuple[int, int]:
    """Split ``value`` into two additive shares modulo ``modulus``.

    Args
    ------
        value (int): Secret in [0, modulus).
        modulus (int): Share group size, > 1.

    Returns
    -------
        tuple[int, int]: ``share1`` uniform in [0, modulus) and
            ``share2 = (value - share1) mod modulus``.
    """
    if modulus <= 1:
        msg = f"modulus must be > 1, got {modulus}"
        raise InputError(msg)
    if not (0 <= value < modulus):
        msg = f"value {value} outside [0, {modulus})"
        raise InputError(msg)
    share1 = secrets.randbelow(modulus)
    return share1, (value - share1) % modulus


def combine_int(share1: int, share2: int, modulus: int) -> int:
    """Recover an additively shared integer."""
    return (share1 + share2) % modulus
