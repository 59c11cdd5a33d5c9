"""Logging helpers shared by the library and the command line entry point."""

from __future__ import annotations

import logging
from typing import Any

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_SENSITIVE_KEYS = {
    "secret",
    "private_key",
    "elgamal_private_key",
    "standard_private_key",
    "seed",
    "key_share",
    "value_share",
}


def configure_logging(verbose: bool = False) -> None:
    """Install the root handler; DEBUG when ``verbose`` else INFO."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        force=True,
    )


def redact(obj: Any) -> Any:
    """Recursively replace values stored under sensitive keys.

    Only plain containers are walked; anything else is returned as-is.
    """
    if isinstance(obj, dict):
        return {
            k: "<REDACTED>" if str(k).lower() in _SENSITIVE_KEYS else redact(v)
            for k, v in obj.items()
        }
    if isinstance(obj, (list, tuple)):
        return type(obj)(redact(x) for x in obj)
    return obj
