"""Cryptographic building blocks.

- ``elgamal``: commutative exponentiation and ElGamal over a safe-prime group,
  used by the private join.
- ``standard``: hybrid public-key encryption protecting reports in transit.
"""

from . import elgamal, standard
from .elgamal import (
    ElGamalCiphertext,
    ElGamalPrivateKey,
    ElGamalPublicKey,
    ElGamalSecret,
    generate_elgamal_key_pair,
    generate_secret,
    hash_to_group,
)
from .standard import (
    StandardPrivateKey,
    StandardPublicKey,
    generate_standard_key_pair,
)

__all__ = [
    "elgamal",
    "standard",
    "ElGamalCiphertext",
    "ElGamalPrivateKey",
    "ElGamalPublicKey",
    "ElGamalSecret",
    "StandardPrivateKey",
    "StandardPublicKey",
    "generate_elgamal_key_pair",
    "generate_secret",
    "generate_standard_key_pair",
    "hash_to_group",
]
