"""Fixed-key AES pseudorandom generator for the DPF tree.

Matyas-Meyer-Oseas: ``G_k(s) = AES_k(s) XOR s``. Three public keys give the
left child, the right child and the value conversion of a seed. All
functions work on a batch of seeds stored as an ``(N, 16)`` ``uint8`` array,
so a whole tree level is one AES call.
"""

from __future__ import annotations

import hashlib

import numpy as np
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from numpy.typing import NDArray

SEED_BYTES = 16
VALUE_LANES = 2

_KEY_LEFT = hashlib.sha256(b"secure-histograms/dpf/left").digest()[:SEED_BYTES]
_KEY_RIGHT = hashlib.sha256(b"secure-histograms/dpf/right").digest()[:SEED_BYTES]
_KEY_VALUE = hashlib.sha256(b"secure-histograms/dpf/value").digest()[:SEED_BYTES]


def _mmo(key: bytes, seeds: NDArray[np.uint8]) -> NDArray[np.uint8]:
    encryptor = Cipher(algorithms.AES(key), modes.ECB()).encryptor()
    block = encryptor.update(seeds.tobytes()) + encryptor.finalize()
    return np.frombuffer(block, dtype=np.uint8).reshape(-1, SEED_BYTES) ^ seeds


def _split_control_bit(blocks: NDArray[np.uint8]) -> tuple[NDArray[np.uint8], NDArray[np.uint8]]:
    # Low bit of the first byte becomes the control bit and is cleared in the seed.
    t = blocks[:, 0] & 1
    blocks[:, 0] &= 0xFE
    return blocks, t


def expand_seeds(
    seeds: NDArray[np.uint8],
) -> tuple[NDArray[np.uint8], NDArray[np.uint8], NDArray[np.uint8], NDArray[np.uint8]]:
    """Expand every seed into (left seed, left bit, right seed, right bit)."""
    seeds = np.ascontiguousarray(seeds, dtype=np.uint8)
    left, t_left = _split_control_bit(_mmo(_KEY_LEFT, seeds))
    right, t_right = _split_control_bit(_mmo(_KEY_RIGHT, seeds))
    return left, t_left, right, t_right


def convert_seeds(seeds: NDArray[np.uint8]) -> NDArray[np.uint64]:
    """Map every seed to ``VALUE_LANES`` pseudorandom ``uint64`` values."""
    seeds = np.ascontiguousarray(seeds, dtype=np.uint8)
    block = _mmo(_KEY_VALUE, seeds)
    return block.view(np.dtype("<u8")).reshape(-1, VALUE_LANES).astype(np.uint64)
