"""One aggregation helper as an isolated actor.

A ``Helper`` owns its private key material and every intermediate value of
the protocol. It talks to its peer only through the serialized messages its
methods return and accept, so nothing is shared in memory between the two
helpers, not even in tests.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from secure_histograms.aggregation.aggregator import (
    PartialHistogram,
    aggregate_data_share,
    generate_dpf_key_pairs,
)
from secure_histograms.aggregation.messages import (
    EncryptedDPFKey,
    decode_dpf_messages,
    encode_dpf_messages,
    open_dpf_keys,
    seal_dpf_keys,
)
from secure_histograms.aggregation.releaser import CompleteResult, merge_aggregation
from secure_histograms.config import (
    DEFAULT_KEY_BIT_SIZE,
    DEFAULT_L1_SENSITIVITY,
    CombineParams,
    PrivacyParams,
)
from secure_histograms.conversion import (
    AggregationIDShare,
    AggregationPayload,
    DecryptedReport,
    EvaluationContext,
    PartialReport,
    RawConversion,
    ServerPrivateInfo,
    ServerPublicInfo,
    decode_exponentiated_keys,
    decrypt_partial_reports,
    encode_exponentiated_keys,
    exponentiate_key,
    rekey_by_aggregation_id,
    split_raw_conversion,
)
from secure_histograms.crypto import standard
from secure_histograms.dpf import DPFKey, DPFParameters, get_default_dpf_parameters
from secure_histograms.errors import InputError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from secure_histograms.differential_privacy import NoiseSource

logger = logging.getLogger(__name__)


class Helper:
    """State holder for one helper of the two-helper protocol."""

    def __init__(
        self,
        name: str,
        private_info: ServerPrivateInfo,
        peer_public_info: ServerPublicInfo,
        params: DPFParameters | None = None,
    ) -> None:
        self.name = name
        self.params = params or get_default_dpf_parameters(DEFAULT_KEY_BIT_SIZE)
        self._private = private_info
        self._peer = peer_public_info
        self._context = EvaluationContext()
        self._reports: list[DecryptedReport] = []
        self._id_shares: list[AggregationIDShare] = []
        self._payloads: list[AggregationPayload] = []
        self._own_keys: dict[str, DPFKey] = {}
        self._peer_keys: dict[str, DPFKey] = {}

    def __repr__(self) -> str:
        return f"Helper(name={self.name!r}, reports={len(self._reports)})"

    @property
    def id_shares(self) -> list[AggregationIDShare]:
        return list(self._id_shares)

    def receive_reports(self, reports: Iterable[PartialReport]) -> None:
        """Decrypt this helper's partial reports (cached across re-runs)."""
        self._reports = decrypt_partial_reports(
            reports, self._private.standard_private_key, self._context
        )
        logger.info("%s received %d partial reports", self.name, len(self._reports))

    def exponentiate_keys(self) -> bytes:
        """Round 1 of the private join; the result goes to the peer."""
        blinded = [
            exponentiate_key(r, self._private.secret, self._peer.elgamal_public_key)
            for r in self._reports
        ]
        return encode_exponentiated_keys(blinded)

    def rekey(self, peer_message: bytes) -> None:
        """Round 2 of the private join, using the peer's round-1 message."""
        self._id_shares, self._payloads = rekey_by_aggregation_id(
            decode_exponentiated_keys(peer_message),
            self._reports,
            self._private.elgamal_private_key,
            self._private.secret,
            self.params.log_domain_size,
        )

    def generate_dpf_keys(self) -> bytes:
        """Generate DPF key pairs; keep one half, return the other sealed for the peer."""
        if not self._id_shares:
            logger.warning("%s has no rekeyed reports to generate DPF keys for", self.name)
        self._own_keys, peer_keys = generate_dpf_key_pairs(
            self._id_shares, self._payloads, self.params
        )
        return encode_dpf_messages(seal_dpf_keys(peer_keys, self._peer.standard_public_key))

    def receive_peer_dpf_keys(self, message: bytes) -> None:
        self._peer_keys = open_dpf_keys(
            decode_dpf_messages(message), self._private.standard_private_key
        )
        unknown = set(self._peer_keys) - set(self._own_keys)
        if unknown:
            msg = f"{self.name} received DPF keys for {len(unknown)} unknown reports"
            raise InputError(msg)

    def aggregate(
        self,
        *,
        combine_params: CombineParams | None = None,
        privacy: PrivacyParams | None = None,
        ignore_privacy: bool = False,
        noise: NoiseSource | None = None,
    ) -> PartialHistogram:
        """Expand all DPF halves held here into this helper's partial histogram."""
        return aggregate_data_share(
            self._id_shares,
            self._payloads,
            self.dpf_keys,
            self.params,
            combine_params=combine_params,
            privacy=privacy,
            ignore_privacy=ignore_privacy,
            noise=noise,
        )

    @property
    def dpf_keys(self) -> list[DPFKey]:
        """Every DPF half this helper holds, its own and the peer's."""
        return [*self._own_keys.values(), *self._peer_keys.values()]

    def export_dpf_keys(self) -> list[EncryptedDPFKey]:
        """Seal every held DPF half under this helper's own transport key.

        The records are the input of the batch aggregation job, which may run
        later and elsewhere than the join.
        """
        own_public = standard.public_key_of(self._private.standard_private_key)
        held = {f"{rid}/own": key for rid, key in self._own_keys.items()}
        held.update({f"{rid}/peer": key for rid, key in self._peer_keys.items()})
        return seal_dpf_keys(held, own_public)


def run_two_helper_aggregation(
    conversions: Iterable[RawConversion],
    helper1: Helper,
    helper2: Helper,
    public_info1: ServerPublicInfo,
    public_info2: ServerPublicInfo,
    *,
    combine_params: CombineParams | None = None,
    privacy: PrivacyParams | None = None,
    ignore_privacy: bool = False,
    l1_sensitivity: int = DEFAULT_L1_SENSITIVITY,
) -> list[CompleteResult]:
    """Run split, decrypt, join, DPF generation, aggregation and merge end to end."""
    split = [
        split_raw_conversion(c, public_info1, public_info2, l1_sensitivity=l1_sensitivity)
        for c in conversions
    ]
    helper1.receive_reports(r1 for r1, _ in split)
    helper2.receive_reports(r2 for _, r2 in split)

    to_helper2 = helper1.exponentiate_keys()
    to_helper1 = helper2.exponentiate_keys()
    helper1.rekey(to_helper1)
    helper2.rekey(to_helper2)

    keys_for_helper2 = helper1.generate_dpf_keys()
    keys_for_helper1 = helper2.generate_dpf_keys()
    helper1.receive_peer_dpf_keys(keys_for_helper1)
    helper2.receive_peer_dpf_keys(keys_for_helper2)

    options = {
        "combine_params": combine_params,
        "privacy": privacy,
        "ignore_privacy": ignore_privacy,
    }
    return merge_aggregation(helper1.aggregate(**options), helper2.aggregate(**options))
