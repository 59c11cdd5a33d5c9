"""Reading and writing keys, parameters and intermediate results.

Key material and query parameters are small YAML documents. Record streams
(DPF reports, evaluation contexts, partial histograms, complete results)
are JSON lines with bytes in base64. A stream written with more than one
shard is split into ``<uri>-SSSSS-of-NNNNN`` files.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from secure_histograms.aggregation import (
    CompleteResult,
    EncryptedDPFKey,
    PartialAggregation,
    PartialHistogram,
)
from secure_histograms.conversion import ServerPrivateInfo, ServerPublicInfo
from secure_histograms.crypto import elgamal, standard
from secure_histograms.dpf import DPFKey, DPFParameters, ExpandParameters
from secure_histograms.errors import InputError
from secure_histograms.transforms import shard

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping, Sequence

logger = logging.getLogger(__name__)

STANDARD_PUBLIC_KEY_FILE = "standard_public_key.yaml"
ELGAMAL_PUBLIC_KEY_FILE = "elgamal_public_key.yaml"
PRIVATE_INFO_FILE = "private_info.yaml"


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


def _unb64(text: str) -> bytes:
    return base64.b64decode(text, validate=True)


def _read_yaml(path: str | Path) -> Any:
    path = Path(path)
    if not path.exists():
        msg = f"file not found: {path}"
        raise InputError(msg)
    with path.open() as f:
        return yaml.safe_load(f)


def _write_yaml(path: str | Path, data: Any) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w") as f:
        yaml.safe_dump(data, f, sort_keys=False)


# ---------------------------------------------------------------------------
# Key material
# ---------------------------------------------------------------------------


def save_standard_public_key(path: str | Path, key: standard.StandardPublicKey) -> None:
    _write_yaml(path, {"key_id": key.key_id, "key": _b64(key.key)})


def save_elgamal_public_key(path: str | Path, key: elgamal.ElGamalPublicKey) -> None:
    _write_yaml(path, {"key": _b64(key.to_bytes())})


def save_private_info(path: str | Path, info: ServerPrivateInfo) -> None:
    _write_yaml(
        path,
        {
            "key_id": info.standard_private_key.key_id,
            "standard_private_key": _b64(info.standard_private_key.key),
            "elgamal_private_key": _b64(info.elgamal_private_key.to_bytes()),
            "secret": _b64(info.secret.to_bytes()),
        },
    )


def create_keys_and_secret(
    key_dir: str | Path,
    key_id: str | None = None,
) -> tuple[ServerPrivateInfo, ServerPublicInfo]:
    """Generate a helper's key material and store it under ``key_dir``.

    The public keys go to files meant for distribution; the private keys
    and the exponentiation secret go to a separate file.
    """
    key_dir = Path(key_dir)
    key_id = key_id or uuid.uuid4().hex
    elgamal_private, elgamal_public = elgamal.generate_elgamal_key_pair()
    standard_private, standard_public = standard.generate_standard_key_pair(key_id)
    private_info = ServerPrivateInfo(elgamal_private, standard_private, elgamal.generate_secret())
    public_info = ServerPublicInfo(elgamal_public, standard_public)

    save_standard_public_key(key_dir / STANDARD_PUBLIC_KEY_FILE, standard_public)
    save_elgamal_public_key(key_dir / ELGAMAL_PUBLIC_KEY_FILE, elgamal_public)
    save_private_info(key_dir / PRIVATE_INFO_FILE, private_info)
    logger.info("Created keys %s in %s", key_id, key_dir)
    return private_info, public_info


def read_public_info(key_dir: str | Path) -> ServerPublicInfo:
    key_dir = Path(key_dir)
    standard_doc = _read_yaml(key_dir / STANDARD_PUBLIC_KEY_FILE)
    elgamal_doc = _read_yaml(key_dir / ELGAMAL_PUBLIC_KEY_FILE)
    try:
        return ServerPublicInfo(
            elgamal_public_key=elgamal.ElGamalPublicKey.from_bytes(_unb64(elgamal_doc["key"])),
            standard_public_key=standard.StandardPublicKey(
                _unb64(standard_doc["key"]), standard_doc.get("key_id", "")
            ),
        )
    except (KeyError, TypeError, binascii.Error) as err:
        msg = f"malformed public key files in {key_dir}"
        raise InputError(msg) from err


def read_private_info(key_dir: str | Path) -> ServerPrivateInfo:
    doc = _read_yaml(Path(key_dir) / PRIVATE_INFO_FILE)
    try:
        return ServerPrivateInfo(
            elgamal_private_key=elgamal.ElGamalPrivateKey.from_bytes(
                _unb64(doc["elgamal_private_key"])
            ),
            standard_private_key=standard.StandardPrivateKey(
                _unb64(doc["standard_private_key"]), doc.get("key_id", "")
            ),
            secret=elgamal.ElGamalSecret.from_bytes(_unb64(doc["secret"])),
        )
    except (KeyError, TypeError, binascii.Error) as err:
        msg = f"malformed private key file in {key_dir}"
        raise InputError(msg) from err


def read_private_key_collection(uri: str | Path) -> dict[str, standard.StandardPrivateKey]:
    """Load the transport private keys listed in a key collection file.

    The file maps key IDs to key directories; relative directories are
    resolved against the file's own directory.
    """
    uri = Path(uri)
    doc = _read_yaml(uri)
    if not isinstance(doc, dict) or not doc:
        msg = f"private key collection {uri} must map key IDs to key directories"
        raise InputError(msg)
    keys = {}
    for key_id, key_dir in doc.items():
        private = read_private_info(uri.parent / key_dir).standard_private_key
        keys[str(key_id)] = standard.StandardPrivateKey(private.key, str(key_id))
    return keys


def write_private_key_collection(uri: str | Path, key_dirs: Mapping[str, str | Path]) -> None:
    _write_yaml(uri, {key_id: str(path) for key_id, path in key_dirs.items()})


# ---------------------------------------------------------------------------
# Query parameters
# ---------------------------------------------------------------------------


def read_dpf_parameters(uri: str | Path) -> DPFParameters:
    doc = _read_yaml(uri)
    try:
        return DPFParameters.from_list(doc["levels"])
    except (KeyError, TypeError) as err:
        msg = f"malformed DPF parameters in {uri}"
        raise InputError(msg) from err


def write_dpf_parameters(uri: str | Path, params: DPFParameters) -> None:
    _write_yaml(uri, {"levels": params.to_list()})


def read_prefixes(uri: str | Path) -> list[list[int]]:
    """Legacy per-level prefix lists."""
    doc = _read_yaml(uri)
    if not isinstance(doc, list) or any(not isinstance(p, list) for p in doc):
        msg = f"prefixes in {uri} must be a list of lists"
        raise InputError(msg)
    return [[int(p) for p in level] for level in doc]


def read_expand_parameters(uri: str | Path) -> ExpandParameters:
    doc = _read_yaml(uri)
    try:
        return ExpandParameters(
            level=int(doc["level"]),
            prefixes=tuple(int(p) for p in doc.get("prefixes") or ()),
            previous_level=int(doc.get("previous_level", -1)),
        )
    except (KeyError, TypeError, ValueError) as err:
        msg = f"malformed expand parameters in {uri}"
        raise InputError(msg) from err


def write_expand_parameters(uri: str | Path, expand: ExpandParameters) -> None:
    _write_yaml(
        uri,
        {
            "level": expand.level,
            "prefixes": list(expand.prefixes),
            "previous_level": expand.previous_level,
        },
    )


# ---------------------------------------------------------------------------
# Sharded JSON-lines record streams
# ---------------------------------------------------------------------------


def shard_paths(uri: str | Path, num_shards: int) -> list[Path]:
    """Output paths for ``num_shards`` shards; a single shard keeps ``uri`` as is."""
    if num_shards < 1:
        msg = f"num_shards must be >= 1, got {num_shards}"
        raise InputError(msg)
    if num_shards == 1:
        return [Path(uri)]
    return [Path(f"{uri}-{i:05d}-of-{num_shards:05d}") for i in range(num_shards)]


def _input_paths(uri: str | Path) -> list[Path]:
    path = Path(uri)
    if path.exists():
        return [path]
    shards = sorted(path.parent.glob(f"{path.name}-?????-of-?????"))
    if not shards:
        msg = f"no input found at {uri}"
        raise InputError(msg)
    return shards


def write_lines(uri: str | Path, records: Sequence[dict[str, Any]], num_shards: int = 1) -> None:
    paths = shard_paths(uri, num_shards)
    for path, part in zip(paths, shard(records, num_shards)):
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w") as f:
            for record in part:
                f.write(json.dumps(record) + "\n")
    logger.debug("Wrote %d records to %d file(s) at %s", len(records), len(paths), uri)


def read_lines(uri: str | Path) -> Iterator[dict[str, Any]]:
    for path in _input_paths(uri):
        with path.open() as f:
            for lineno, line in enumerate(f, 1):
                if not line.strip():
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError as err:
                    msg = f"{path}:{lineno}: invalid JSON record"
                    raise InputError(msg) from err


def write_dpf_reports(uri: str | Path, records: Sequence[EncryptedDPFKey], num_shards: int = 1) -> None:
    write_lines(uri, [r.to_dict() for r in records], num_shards)


def write_evaluation_context(uri: str | Path, keys: Mapping[str, DPFKey], num_shards: int = 1) -> None:
    """Write decrypted DPF keys so a later run can skip decryption."""
    write_lines(
        uri,
        [{"report_id": rid, "dpf_key": _b64(key.to_bytes())} for rid, key in sorted(keys.items())],
        num_shards,
    )


def read_dpf_reports(uri: str | Path) -> tuple[list[EncryptedDPFKey], dict[str, DPFKey]]:
    """Read a report stream holding encrypted DPF keys, decrypted ones, or both.

    Returns
    -------
        tuple[list[EncryptedDPFKey], dict[str, DPFKey]]: Encrypted records and
            already decrypted keys (evaluation context) keyed by report ID.
    """
    encrypted: list[EncryptedDPFKey] = []
    context: dict[str, DPFKey] = {}
    for record in read_lines(uri):
        if "dpf_key" in record:
            try:
                context[record["report_id"]] = DPFKey.from_bytes(_unb64(record["dpf_key"]))
            except (KeyError, TypeError, binascii.Error) as err:
                msg = f"malformed evaluation context record in {uri}"
                raise InputError(msg) from err
        else:
            encrypted.append(EncryptedDPFKey.from_dict(record))
    return encrypted, context


def write_partial_histogram(uri: str | Path, histogram: PartialHistogram, num_shards: int = 1) -> None:
    records = []
    for bucket, entry in sorted(histogram.buckets.items()):
        record = {
            "bucket": bucket,
            "level": histogram.level,
            "partial_sum": entry.partial_sum,
            "partial_count": entry.partial_count,
        }
        if entry.key_share is not None:
            record["key_share"] = _b64(entry.key_share)
        records.append(record)
    write_lines(uri, records, num_shards)


def read_partial_histogram(uri: str | Path) -> PartialHistogram:
    """Read a (possibly sharded) partial histogram.

    Raises
    ------
        InputError: On malformed records, a bucket repeated across records
            or shards, or records of different levels.
    """
    histogram = PartialHistogram()
    levels = set()
    for record in read_lines(uri):
        try:
            bucket = int(record["bucket"])
            key_share = record.get("key_share")
            entry = PartialAggregation(
                partial_sum=int(record["partial_sum"]),
                partial_count=int(record["partial_count"]),
                key_share=None if key_share is None else _unb64(key_share),
            )
            level = int(record.get("level", -1))
        except (KeyError, TypeError, ValueError) as err:
            msg = f"malformed partial histogram record in {uri}"
            raise InputError(msg) from err
        if bucket in histogram.buckets:
            msg = f"bucket {bucket} appears more than once in {uri}"
            raise InputError(msg)
        histogram.buckets[bucket] = entry
        levels.add(level)
    if len(levels) > 1:
        msg = f"partial histogram {uri} mixes levels {sorted(levels)}"
        raise InputError(msg)
    histogram.level = levels.pop() if levels else -1
    return histogram


def write_complete_results(uri: str | Path, results: Iterable[CompleteResult], num_shards: int = 1) -> None:
    records = [
        {"bucket": r.bucket, "sum": r.sum, "count": r.count, "key": r.key}
        for r in results
    ]
    write_lines(uri, records, num_shards)


def read_complete_results(uri: str | Path) -> list[CompleteResult]:
    try:
        results = [
            CompleteResult(
                bucket=int(r["bucket"]), sum=int(r["sum"]), count=int(r["count"]), key=r.get("key")
            )
            for r in read_lines(uri)
        ]
    except (KeyError, TypeError, ValueError) as err:
        msg = f"malformed complete result record in {uri}"
        raise InputError(msg) from err
    return sorted(results, key=lambda r: r.bucket)
