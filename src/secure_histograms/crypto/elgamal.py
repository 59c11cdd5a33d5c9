"""ElGamal encryption and commutative exponentiation over a safe-prime group.

The group is the subgroup of quadratic residues modulo the RFC 3526 2048-bit
MODP prime ``p = 2q + 1``. It has prime order ``q``, so every element other
than 1 generates it and any secret exponent in ``[1, q)`` is invertible.

Exponentiation by a helper secret is commutative: raising an element (or an
ElGamal ciphertext, component-wise) to ``s1`` and then ``s2`` gives the same
result as ``s2`` then ``s1``. Two helpers use this to derive the same
pseudonym ``H(k)^(s1*s2)`` for a bucket key without either one seeing ``k``.
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass

from secure_histograms.errors import InvalidGroupElement

PRIME = int(
    "FFFFFFFFFFFFFFFFC90FDAA22168C234C4C6628B80DC1CD1"
    "29024E088A67CC74020BBEA63B139B22514A08798E3404DD"
    "EF9519B3CD3A431B302B0A6DF25F14374FE1356D6D51C245"
    "E485B576625E7EC6F44C42E9A637ED6B0BFF5CB6F406B7ED"
    "EE386BFB5A899FA5AE9F24117C4B1FE649286651ECE45B3D"
    "C2007CB8A163BF0598DA48361C55D39A69163FA8FD24CF5F"
    "83655D23DCA3AD961C62F356208552BB9ED529077096966D"
    "670C354E4ABC9804F1746C08CA18217C32905E462E36CE3B"
    "E39E772C180E86039B2783A2EC07A28FB5C55DF06F4C52C9"
    "DE2BCBF6955817183995497CEA956AE515D2261898FA0510"
    "15728E5A8AACAA68FFFFFFFFFFFFFFFF",
    16,
)
SUBGROUP_ORDER = (PRIME - 1) // 2
# 4 = 2^2 is a quadratic residue, hence a generator of the order-q subgroup.
GENERATOR = 4
ELEMENT_BYTES = (PRIME.bit_length() + 7) // 8


def _random_exponent() -> int:
    return secrets.randbelow(SUBGROUP_ORDER - 1) + 1


def validate_element(x: int) -> int:
    """Return ``x`` if it lies in the order-q subgroup.

    Raises
    ------
        InvalidGroupElement: If ``x`` is not in (1, p) or not a quadratic residue.
    """
    if not (1 < x < PRIME) or pow(x, SUBGROUP_ORDER, PRIME) != 1:
        msg = "value is not an element of the prime-order subgroup"
        raise InvalidGroupElement(msg)
    return x


def element_to_bytes(x: int) -> bytes:
    return x.to_bytes(ELEMENT_BYTES, "big")


def element_from_bytes(data: bytes) -> int:
    if len(data) != ELEMENT_BYTES:
        msg = f"group element must be {ELEMENT_BYTES} bytes, got {len(data)}"
        raise InvalidGroupElement(msg)
    return validate_element(int.from_bytes(data, "big"))


def hash_to_group(data: bytes) -> int:
    """Map bytes to a subgroup element.

    SHAKE-256 output 128 bits longer than ``p`` keeps the reduction bias
    negligible; squaring lands in the quadratic residues.
    """
    digest = hashlib.shake_256(b"secure-histograms/h2g" + data).digest(ELEMENT_BYTES + 16)
    x = pow(int.from_bytes(digest, "big") % PRIME, 2, PRIME)
    return validate_element(x)


@dataclass(frozen=True)
class ElGamalPublicKey:
    """Public key ``h = g^x``."""

    h: int

    def to_bytes(self) -> bytes:
        return element_to_bytes(self.h)

    @classmethod
    def from_bytes(cls, data: bytes) -> ElGamalPublicKey:
        return cls(element_from_bytes(data))


@dataclass(frozen=True, repr=False)
class ElGamalPrivateKey:
    """Private exponent ``x``."""

    x: int

    def __repr__(self) -> str:
        return "ElGamalPrivateKey(<REDACTED>)"

    def to_bytes(self) -> bytes:
        return self.x.to_bytes(ELEMENT_BYTES, "big")

    @classmethod
    def from_bytes(cls, data: bytes) -> ElGamalPrivateKey:
        return cls(int.from_bytes(data, "big"))


@dataclass(frozen=True, repr=False)
class ElGamalSecret:
    """Helper secret exponent ``s`` used for commutative re-keying."""

    s: int

    def __repr__(self) -> str:
        return "ElGamalSecret(<REDACTED>)"

    def to_bytes(self) -> bytes:
        return self.s.to_bytes(ELEMENT_BYTES, "big")

    @classmethod
    def from_bytes(cls, data: bytes) -> ElGamalSecret:
        return cls(int.from_bytes(data, "big"))


@dataclass(frozen=True)
class ElGamalCiphertext:
    """ElGamal ciphertext ``(g^r, m * h^r)``."""

    u: int
    e: int

    def to_bytes(self) -> bytes:
        return element_to_bytes(self.u) + element_to_bytes(self.e)

    @classmethod
    def from_bytes(cls, data: bytes) -> ElGamalCiphertext:
        if len(data) != 2 * ELEMENT_BYTES:
            msg = f"ciphertext must be {2 * ELEMENT_BYTES} bytes, got {len(data)}"
            raise InvalidGroupElement(msg)
        return cls(
            element_from_bytes(data[:ELEMENT_BYTES]),
            element_from_bytes(data[ELEMENT_BYTES:]),
        )


def generate_elgamal_key_pair() -> tuple[ElGamalPrivateKey, ElGamalPublicKey]:
    x = _random_exponent()
    return ElGamalPrivateKey(x), ElGamalPublicKey(pow(GENERATOR, x, PRIME))


def generate_secret() -> ElGamalSecret:
    """Draw a fresh helper secret; it never leaves the helper."""
    return ElGamalSecret(_random_exponent())


def encrypt(message: int, public_key: ElGamalPublicKey) -> ElGamalCiphertext:
    """Encrypt a group element under ``public_key``."""
    validate_element(message)
    r = _random_exponent()
    return ElGamalCiphertext(
        pow(GENERATOR, r, PRIME),
        message * pow(public_key.h, r, PRIME) % PRIME,
    )


def decrypt(ciphertext: ElGamalCiphertext, private_key: ElGamalPrivateKey) -> int:
    """Recover the group element from an ElGamal ciphertext."""
    shared = pow(ciphertext.u, private_key.x, PRIME)
    return ciphertext.e * pow(shared, -1, PRIME) % PRIME


def rerandomize(ciphertext: ElGamalCiphertext, public_key: ElGamalPublicKey) -> ElGamalCiphertext:
    """Multiply in a fresh encryption of 1 so the ciphertext is unlinkable."""
    r = _random_exponent()
    return ElGamalCiphertext(
        ciphertext.u * pow(GENERATOR, r, PRIME) % PRIME,
        ciphertext.e * pow(public_key.h, r, PRIME) % PRIME,
    )


def exponentiate_element(element: int, secret: ElGamalSecret) -> int:
    """Raise a group element to the helper secret.

    Raises
    ------
        InvalidGroupElement: If ``element`` is not in the group.
    """
    return pow(validate_element(element), secret.s, PRIME)


def exponentiate(ciphertext: ElGamalCiphertext, secret: ElGamalSecret) -> ElGamalCiphertext:
    """Raise both ciphertext components to the helper secret.

    The result decrypts to ``m^s`` under the same key pair, and exponentiating
    by two secrets commutes.
    """
    return ElGamalCiphertext(
        exponentiate_element(ciphertext.u, secret),
        exponentiate_element(ciphertext.e, secret),
    )
