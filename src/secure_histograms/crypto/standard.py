"""Transport-layer public-key encryption of report payloads.

Hybrid scheme: ephemeral X25519 key agreement, HKDF-SHA256 key derivation
and AES-256-GCM. The ciphertext carries the ephemeral public key and nonce.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from secure_histograms.errors import DecryptionError, InputError

HKDF_INFO_REPORT_ENCRYPTION = b"secure-histograms-report-encryption"
PUBLIC_KEY_BYTES = 32
NONCE_BYTES = 12


@dataclass(frozen=True)
class StandardPublicKey:
    key: bytes
    key_id: str = ""


@dataclass(frozen=True, repr=False)
class StandardPrivateKey:
    key: bytes
    key_id: str = ""

    def __repr__(self) -> str:
        return f"StandardPrivateKey(key_id={self.key_id!r}, key=<REDACTED>)"


def _raw_public(private_key: X25519PrivateKey) -> bytes:
    return private_key.public_key().public_bytes(
        serialization.Encoding.Raw, serialization.PublicFormat.Raw
    )


def _load_private(private_key: StandardPrivateKey) -> X25519PrivateKey:
    try:
        return X25519PrivateKey.from_private_bytes(private_key.key)
    except ValueError as err:
        msg = f"invalid X25519 private key {private_key.key_id!r}: {len(private_key.key)} bytes"
        raise InputError(msg) from err


def _load_public(raw: bytes) -> X25519PublicKey:
    try:
        return X25519PublicKey.from_public_bytes(raw)
    except ValueError as err:
        msg = f"invalid X25519 public key: {len(raw)} bytes"
        raise InputError(msg) from err


def _derive_key(shared: bytes, ephemeral_public: bytes, recipient_public: bytes) -> bytes:
    return HKDF(
        algorithm=SHA256(),
        length=32,
        salt=ephemeral_public + recipient_public,
        info=HKDF_INFO_REPORT_ENCRYPTION,
    ).derive(shared)


def generate_standard_key_pair(key_id: str = "") -> tuple[StandardPrivateKey, StandardPublicKey]:
    private_key = X25519PrivateKey.generate()
    raw_private = private_key.private_bytes(
        serialization.Encoding.Raw,
        serialization.PrivateFormat.Raw,
        serialization.NoEncryption(),
    )
    return (
        StandardPrivateKey(raw_private, key_id),
        StandardPublicKey(_raw_public(private_key), key_id),
    )


def public_key_of(private_key: StandardPrivateKey) -> StandardPublicKey:
    """Public key matching ``private_key``, with the same key ID."""
    raw = _raw_public(_load_private(private_key))
    return StandardPublicKey(raw, private_key.key_id)


def encrypt(plaintext: bytes, public_key: StandardPublicKey, associated_data: bytes = b"") -> bytes:
    """Encrypt ``plaintext`` for the holder of ``public_key``.

    Returns
    -------
        bytes: ``ephemeral_public || nonce || AES-GCM ciphertext``.
    """
    ephemeral = X25519PrivateKey.generate()
    ephemeral_public = _raw_public(ephemeral)
    shared = ephemeral.exchange(_load_public(public_key.key))
    key = _derive_key(shared, ephemeral_public, public_key.key)
    nonce = os.urandom(NONCE_BYTES)
    return ephemeral_public + nonce + AESGCM(key).encrypt(nonce, plaintext, associated_data)


def decrypt(ciphertext: bytes, private_key: StandardPrivateKey, associated_data: bytes = b"") -> bytes:
    """Open a ciphertext produced by :func:`encrypt`.

    Raises
    ------
        DecryptionError: On a wrong key, a truncated ciphertext or tampering.
        InputError: If the private key is not a raw X25519 key.
    """
    if len(ciphertext) < PUBLIC_KEY_BYTES + NONCE_BYTES + 16:
        msg = f"ciphertext too short: {len(ciphertext)} bytes"
        raise DecryptionError(msg)
    ephemeral_public = ciphertext[:PUBLIC_KEY_BYTES]
    nonce = ciphertext[PUBLIC_KEY_BYTES : PUBLIC_KEY_BYTES + NONCE_BYTES]
    body = ciphertext[PUBLIC_KEY_BYTES + NONCE_BYTES :]

    recipient = _load_private(private_key)
    try:
        shared = recipient.exchange(X25519PublicKey.from_public_bytes(ephemeral_public))
    except ValueError as err:
        msg = "failed to decrypt: invalid ephemeral key"
        raise DecryptionError(msg) from err
    key = _derive_key(shared, ephemeral_public, _raw_public(recipient))
    try:
        return AESGCM(key).decrypt(nonce, body, associated_data)
    except InvalidTag as err:
        msg = "failed to decrypt: wrong key or corrupted ciphertext"
        raise DecryptionError(msg) from err
