"""Shared fixtures: key material for two helpers and small DPF hierarchies."""

import pytest

from secure_histograms.conversion import ServerPrivateInfo, ServerPublicInfo
from secure_histograms.crypto import (
    generate_elgamal_key_pair,
    generate_secret,
    generate_standard_key_pair,
)
from secure_histograms.dpf import DPFParameters, get_default_dpf_parameters


def _server_info(key_id: str) -> tuple[ServerPrivateInfo, ServerPublicInfo]:
    elgamal_private, elgamal_public = generate_elgamal_key_pair()
    standard_private, standard_public = generate_standard_key_pair(key_id)
    return (
        ServerPrivateInfo(elgamal_private, standard_private, generate_secret()),
        ServerPublicInfo(elgamal_public, standard_public),
    )


@pytest.fixture(scope="session")
def helper1_info() -> tuple[ServerPrivateInfo, ServerPublicInfo]:
    """Key material of the first helper."""
    return _server_info("helper1")


@pytest.fixture(scope="session")
def helper2_info() -> tuple[ServerPrivateInfo, ServerPublicInfo]:
    """Key material of the second helper."""
    return _server_info("helper2")


@pytest.fixture
def small_params() -> DPFParameters:
    """A 6-bit domain with three evaluable prefix lengths."""
    return DPFParameters.from_list([2, 4, 6])


@pytest.fixture
def bitwise_params() -> DPFParameters:
    """A 5-bit domain with one level per prefix length."""
    return get_default_dpf_parameters(5)
