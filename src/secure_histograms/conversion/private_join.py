"""Two-round private join that turns encrypted bucket keys into aggregation IDs.

Per report, at one helper::

    Decrypted -> Exponentiated(own secret) -> ReceivedPeerExponentiated -> Rekeyed

Round 1 (``exponentiate_key``): the helper holds ``Enc_peer(H(k))``; it raises
the ciphertext to its own secret ``s_own``, re-randomises it and sends
``Enc_peer(H(k)^s_own)`` to the peer.

Round 2 (``rekey_by_aggregation_id``): the helper receives
``Enc_own(H(k)^s_peer)`` from the peer, decrypts it with its ElGamal private
key and raises it to ``s_own``. Both helpers end up with
``H(k)^(s1*s2)``, which is hashed into the DPF domain. Reports with equal
bucket keys get equal identifiers; other keys collide only with negligible
probability. Neither helper ever sees ``k`` or ``H(k)``.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from secure_histograms.config import DEFAULT_KEY_BIT_SIZE
from secure_histograms.crypto import elgamal
from secure_histograms.errors import CryptoError, InputError, InvalidDomain
from secure_histograms.transforms import co_group_by_key

if TYPE_CHECKING:
    from collections.abc import Iterable

    from secure_histograms.conversion.report import DecryptedReport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExponentiatedKey:
    """Round-1 message: the bucket key blinded by the sender's secret."""

    report_id: str
    ciphertext: elgamal.ElGamalCiphertext


@dataclass(frozen=True)
class AggregationIDShare:
    """A helper's copy of the jointly derived aggregation identifier."""

    report_id: str
    aggregation_id: int
    key_bit_size: int = DEFAULT_KEY_BIT_SIZE


@dataclass(frozen=True)
class AggregationPayload:
    """The helper's value and key shares carried forward to DPF generation."""

    report_id: str
    value_share: int
    key_share: bytes


def encode_exponentiated_keys(keys: Iterable[ExponentiatedKey]) -> bytes:
    """Serialize round-1 messages for hand-off to the peer helper."""
    return json.dumps(
        [
            {
                "report_id": k.report_id,
                "ciphertext": base64.b64encode(k.ciphertext.to_bytes()).decode(),
            }
            for k in keys
        ]
    ).encode()


def decode_exponentiated_keys(data: bytes) -> list[ExponentiatedKey]:
    """Parse round-1 messages, validating every group element."""
    try:
        records = json.loads(data)
        return [
            ExponentiatedKey(
                r["report_id"],
                elgamal.ElGamalCiphertext.from_bytes(base64.b64decode(r["ciphertext"])),
            )
            for r in records
        ]
    except (KeyError, TypeError, binascii.Error, json.JSONDecodeError) as err:
        msg = "malformed exponentiated key message"
        raise InputError(msg) from err


def aggregation_id_from_element(element: int, key_bit_size: int = DEFAULT_KEY_BIT_SIZE) -> int:
    """Map the shared pseudonym ``H(k)^(s1*s2)`` to ``[0, 2^key_bit_size)``."""
    if not (1 <= key_bit_size <= 64):
        msg = f"key_bit_size must be in [1, 64], got {key_bit_size}"
        raise InvalidDomain(msg)
    digest = hashlib.sha256(b"secure-histograms/aggregation-id" + elgamal.element_to_bytes(element)).digest()
    return int.from_bytes(digest[:8], "big") >> (64 - key_bit_size)


def exponentiate_key(
    report: DecryptedReport,
    secret: elgamal.ElGamalSecret,
    peer_public_key: elgamal.ElGamalPublicKey,
) -> ExponentiatedKey:
    """Round 1: blind the peer-encrypted bucket key with the own secret.

    Raises
    ------
        InvalidGroupElement: If the report's ciphertext is not in the group.
    """
    blinded = elgamal.exponentiate(report.encrypted_key, secret)
    return ExponentiatedKey(report.report_id, elgamal.rerandomize(blinded, peer_public_key))


def rekey_by_aggregation_id(
    peer_keys: Iterable[ExponentiatedKey],
    reports: Iterable[DecryptedReport],
    elgamal_private_key: elgamal.ElGamalPrivateKey,
    secret: elgamal.ElGamalSecret,
    key_bit_size: int = DEFAULT_KEY_BIT_SIZE,
) -> tuple[list[AggregationIDShare], list[AggregationPayload]]:
    """Round 2: derive the aggregation ID of every report held by both helpers.

    The join on report ID is an inner join: reports without a peer message
    (or messages without a local report) are dropped and logged.

    Returns
    -------
        tuple[list[AggregationIDShare], list[AggregationPayload]]: ID shares
            and the matching payloads, in the same order.
    """
    grouped = co_group_by_key(
        peer_keys,
        reports,
        left_key=lambda k: k.report_id,
        right_key=lambda r: r.report_id,
    )
    id_shares: list[AggregationIDShare] = []
    payloads: list[AggregationPayload] = []
    dropped = 0
    for report_id in sorted(grouped):
        keys, local = grouped[report_id]
        if len(keys) != 1 or len(local) != 1:
            dropped += 1
            continue
        peer_blinded = elgamal.decrypt(keys[0].ciphertext, elgamal_private_key)
        pseudonym = elgamal.exponentiate_element(peer_blinded, secret)
        id_shares.append(
            AggregationIDShare(
                report_id,
                aggregation_id_from_element(pseudonym, key_bit_size),
                key_bit_size,
            )
        )
        payloads.append(AggregationPayload(report_id, local[0].value_share, local[0].key_share))
    if dropped:
        logger.warning("Dropped %d reports without exactly one match on both helpers", dropped)
    logger.info("Rekeyed %d reports by aggregation ID", len(id_shares))
    return id_shares, payloads


def combine_id_shares(share1: AggregationIDShare, share2: AggregationIDShare) -> int:
    """Combine the two helpers' shares for one report into its identifier.

    Raises
    ------
        InputError: If the shares belong to different reports.
        CryptoError: If the helpers derived different identifiers, which means
            their key material does not match.
    """
    if share1.report_id != share2.report_id:
        msg = f"ID shares belong to different reports: {share1.report_id} != {share2.report_id}"
        raise InputError(msg)
    if share1.aggregation_id != share2.aggregation_id:
        msg = f"helpers derived different aggregation IDs for report {share1.report_id}"
        raise CryptoError(msg)
    return share1.aggregation_id
