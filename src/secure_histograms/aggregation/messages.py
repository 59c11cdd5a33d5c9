"""DPF key halves in transit between helpers.

A helper keeps one half of every DPF key pair it generates and hands the
other half to its peer, sealed under the peer's transport key with the
report ID as associated data.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import TYPE_CHECKING

from secure_histograms.crypto import standard
from secure_histograms.dpf import DPFKey
from secure_histograms.errors import InputError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


@dataclass(frozen=True)
class EncryptedDPFKey:
    """A DPF key half encrypted for the helper that will expand it."""

    report_id: str
    ciphertext: bytes
    key_id: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "report_id": self.report_id,
            "ciphertext": base64.b64encode(self.ciphertext).decode(),
            "key_id": self.key_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, str]) -> EncryptedDPFKey:
        try:
            return cls(
                report_id=data["report_id"],
                ciphertext=base64.b64decode(data["ciphertext"]),
                key_id=data.get("key_id", ""),
            )
        except (KeyError, TypeError, binascii.Error) as err:
            msg = "malformed encrypted DPF key record"
            raise InputError(msg) from err


def seal_dpf_keys(
    keys: Mapping[str, DPFKey],
    public_key: standard.StandardPublicKey,
) -> list[EncryptedDPFKey]:
    """Encrypt DPF key halves, keyed by report ID, for the holder of ``public_key``."""
    return [
        EncryptedDPFKey(
            report_id,
            standard.encrypt(key.to_bytes(), public_key, report_id.encode()),
            public_key.key_id,
        )
        for report_id, key in sorted(keys.items())
    ]


def open_dpf_key(record: EncryptedDPFKey, private_key: standard.StandardPrivateKey) -> DPFKey:
    """Decrypt one sealed DPF key half.

    Raises
    ------
        DecryptionError: On a wrong key or a corrupted record.
    """
    return DPFKey.from_bytes(
        standard.decrypt(record.ciphertext, private_key, record.report_id.encode())
    )


def open_dpf_keys(
    records: Iterable[EncryptedDPFKey],
    private_key: standard.StandardPrivateKey,
) -> dict[str, DPFKey]:
    return {r.report_id: open_dpf_key(r, private_key) for r in records}


def encode_dpf_messages(records: Iterable[EncryptedDPFKey]) -> bytes:
    return json.dumps([r.to_dict() for r in records]).encode()


def decode_dpf_messages(data: bytes) -> list[EncryptedDPFKey]:
    try:
        return [EncryptedDPFKey.from_dict(r) for r in json.loads(data)]
    except json.JSONDecodeError as err:
        msg = "malformed DPF key message"
        raise InputError(msg) from err
