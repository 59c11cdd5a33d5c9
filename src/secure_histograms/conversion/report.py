"""Client-side report creation and helper-side report decryption.

A raw conversion ``(key, value)`` is turned into one ``PartialReport`` per
helper. Each partial report carries, encrypted under that helper's transport
key:

- the hashed bucket key ElGamal-encrypted under the *peer* helper's key, so
  the holder can blind it but never open it;
- an XOR share of the UTF-8 bucket key;
- an additive share of the value modulo ``SUM_MODULUS``.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from secure_histograms.config import DEFAULT_L1_SENSITIVITY, SUM_MODULUS, VALUE_BIT_SIZE
from secure_histograms.crypto import elgamal, standard
from secure_histograms.differential_privacy import clip_contribution
from secure_histograms.errors import InputError, InvalidGroupElement
from secure_histograms.secret_share import split_bytes, split_int

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawConversion:
    """A client event before any cryptography."""

    key: str
    value: int

    def __post_init__(self) -> None:
        if not (0 <= self.value < 2**VALUE_BIT_SIZE):
            msg = f"conversion value must be in [0, 2^{VALUE_BIT_SIZE}), got {self.value}"
            raise InputError(msg)


@dataclass(frozen=True)
class ServerPublicInfo:
    """Public half of a helper's key material, distributed to clients and the peer."""

    elgamal_public_key: elgamal.ElGamalPublicKey
    standard_public_key: standard.StandardPublicKey


@dataclass(frozen=True)
class ServerPrivateInfo:
    """Private half of a helper's key material; read-only once loaded."""

    elgamal_private_key: elgamal.ElGamalPrivateKey
    standard_private_key: standard.StandardPrivateKey
    secret: elgamal.ElGamalSecret


@dataclass(frozen=True)
class PartialReport:
    """One helper's encrypted half of a raw conversion."""

    report_id: str
    encrypted_payload: bytes
    key_id: str = ""


@dataclass(frozen=True)
class DecryptedReport:
    """Transport layer removed; the bucket key is still ElGamal-encrypted."""

    report_id: str
    encrypted_key: elgamal.ElGamalCiphertext
    key_share: bytes
    value_share: int


def parse_raw_conversion(line: str) -> RawConversion:
    """Parse a ``key,value`` line."""
    key, sep, value = line.strip().rpartition(",")
    if not sep or not key:
        msg = f"expected 'key,value', got {line!r}"
        raise InputError(msg)
    try:
        return RawConversion(key, int(value))
    except ValueError as err:
        if isinstance(err, InputError):
            raise
        msg = f"conversion value is not an integer: {value!r}"
        raise InputError(msg) from err


def create_report_id() -> str:
    """Random, globally unique report ID shared by both halves of a report."""
    return uuid.uuid4().hex


def _encode_payload(encrypted_key: elgamal.ElGamalCiphertext, key_share: bytes, value_share: int) -> bytes:
    return json.dumps(
        {
            "encrypted_key": base64.b64encode(encrypted_key.to_bytes()).decode(),
            "key_share": base64.b64encode(key_share).decode(),
            "value_share": value_share,
        }
    ).encode()


def split_raw_conversion(
    conversion: RawConversion,
    helper1: ServerPublicInfo,
    helper2: ServerPublicInfo,
    *,
    l1_sensitivity: int = DEFAULT_L1_SENSITIVITY,
) -> tuple[PartialReport, PartialReport]:
    """Create the two partial reports for a raw conversion.

    Both halves are built before either is returned, so an encryption error
    never leaves a single orphaned half.

    Args
    ------
        conversion (RawConversion): The client event.
        helper1, helper2 (ServerPublicInfo): Public keys of the two helpers.
        l1_sensitivity (int): Contribution bound applied to the value.

    Returns
    -------
        tuple[PartialReport, PartialReport]: Reports for helper 1 and helper 2.
    """
    key_bytes = conversion.key.encode()
    value = clip_contribution(conversion.value, l1_sensitivity)
    element = elgamal.hash_to_group(key_bytes)

    key_share1, key_share2 = split_bytes(key_bytes)
    value_share1, value_share2 = split_int(value, SUM_MODULUS)
    # Each helper receives the key encrypted under its peer's ElGamal key.
    encrypted_key1 = elgamal.encrypt(element, helper2.elgamal_public_key)
    encrypted_key2 = elgamal.encrypt(element, helper1.elgamal_public_key)

    report_id = create_report_id()
    payload1 = standard.encrypt(
        _encode_payload(encrypted_key1, key_share1, value_share1),
        helper1.standard_public_key,
        report_id.encode(),
    )
    payload2 = standard.encrypt(
        _encode_payload(encrypted_key2, key_share2, value_share2),
        helper2.standard_public_key,
        report_id.encode(),
    )
    return (
        PartialReport(report_id, payload1, helper1.standard_public_key.key_id),
        PartialReport(report_id, payload2, helper2.standard_public_key.key_id),
    )


def decrypt_partial_report(
    report: PartialReport,
    private_key: standard.StandardPrivateKey,
) -> DecryptedReport:
    """Remove the transport encryption of a partial report.

    Raises
    ------
        DecryptionError: On key mismatch or a corrupted ciphertext.
        InputError: If the decrypted payload is malformed.
    """
    plaintext = standard.decrypt(report.encrypted_payload, private_key, report.report_id.encode())
    try:
        payload = json.loads(plaintext)
        return DecryptedReport(
            report_id=report.report_id,
            encrypted_key=elgamal.ElGamalCiphertext.from_bytes(
                base64.b64decode(payload["encrypted_key"])
            ),
            key_share=base64.b64decode(payload["key_share"]),
            value_share=int(payload["value_share"]),
        )
    except InvalidGroupElement:
        raise
    except (KeyError, TypeError, ValueError, binascii.Error) as err:
        msg = f"malformed payload in report {report.report_id}"
        raise InputError(msg) from err


class EvaluationContext:
    """Cache of decrypted reports keyed by report ID.

    Lets a helper re-run its pipeline without decrypting the same reports
    again. Purely an optimisation: results are identical with or without it.
    """

    def __init__(self) -> None:
        self._reports: dict[str, DecryptedReport] = {}

    def __len__(self) -> int:
        return len(self._reports)

    def __contains__(self, report_id: object) -> bool:
        return report_id in self._reports

    def get_or_decrypt(
        self,
        report: PartialReport,
        private_key: standard.StandardPrivateKey,
    ) -> DecryptedReport:
        cached = self._reports.get(report.report_id)
        if cached is None:
            cached = decrypt_partial_report(report, private_key)
            self._reports[report.report_id] = cached
        return cached

    def reports(self) -> list[DecryptedReport]:
        return list(self._reports.values())


def decrypt_partial_reports(
    reports: Iterable[PartialReport],
    private_key: standard.StandardPrivateKey,
    context: EvaluationContext | None = None,
) -> list[DecryptedReport]:
    """Decrypt a batch of partial reports, reusing ``context`` when given."""
    if context is None:
        decrypted = [decrypt_partial_report(r, private_key) for r in reports]
    else:
        decrypted = [context.get_or_decrypt(r, private_key) for r in reports]
    logger.debug("Decrypted %d partial reports", len(decrypted))
    return decrypted
