"""Configuration module for the two-helper aggregation service."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, ClassVar

import yaml

from secure_histograms.errors import InputError, PrivacyConfigError

DEFAULT_KEY_BIT_SIZE = 32
DEFAULT_SEGMENT_LENGTH = 32768
VALUE_BIT_SIZE = 16
# Consistent with the conversion measurement API privacy budgeting: one
# report may contribute at most the full value range.
DEFAULT_L1_SENSITIVITY = 2**VALUE_BIT_SIZE
# Value shares and released sums live in Z_{2^64}, the width of a DPF lane.
SUM_MODULUS = 2**64


@dataclass(frozen=True)
class PrivacyParams:
    """Differential-privacy parameters.

    Attributes
    ----------
        epsilon: float
            Privacy budget for the released histogram. 0 disables noise.
        l1_sensitivity: int
            Maximum L1 contribution of a single report.

    Raises
    ------
        PrivacyConfigError: If epsilon is negative or not finite, or if
            l1_sensitivity is not positive.
    """

    epsilon: float = 0.0
    l1_sensitivity: int = DEFAULT_L1_SENSITIVITY

    def __post_init__(self) -> None:
        """Validate values after initialization."""
        if not math.isfinite(self.epsilon) or self.epsilon < 0:
            msg = f"epsilon must be finite and >= 0, got {self.epsilon}"
            raise PrivacyConfigError(msg)
        if self.l1_sensitivity < 1:
            msg = f"l1_sensitivity must be >= 1, got {self.l1_sensitivity}"
            raise PrivacyConfigError(msg)

    @property
    def enabled(self) -> bool:
        """Whether noise has to be added to released sums."""
        return self.epsilon > 0


@dataclass(frozen=True)
class CombineParams:
    """How expanded DPF vectors are summed.

    Attributes
    ----------
        direct_combine: bool
            Sum whole vectors in memory when True, otherwise sum
            ``segment_length``-sized chunks.
        segment_length: int
            Chunk size for segmented combine.

    Raises
    ------
        InputError: If segment_length is not positive.
    """

    direct_combine: bool = True
    segment_length: int = DEFAULT_SEGMENT_LENGTH

    def __post_init__(self) -> None:
        """Validate values after initialization."""
        if self.segment_length <= 0:
            msg = f"segment_length must be > 0, got {self.segment_length}"
            raise InputError(msg)


@dataclass(frozen=True)
class DPFConfig:
    """DPF domain parameters.

    Attributes
    ----------
        key_bit_size: int
            Bit length of the aggregation identifiers (bucket domain).
    """

    key_bit_size: int = DEFAULT_KEY_BIT_SIZE

    def __post_init__(self) -> None:
        """Validate values after initialization."""
        if not (1 <= self.key_bit_size <= 64):
            msg = f"key_bit_size must be in [1, 64], got {self.key_bit_size}"
            raise InputError(msg)


@dataclass(frozen=True)
class Config:
    """
    Top-level configuration for one helper run.

    Groups
    ----------
        privacy: PrivacyParams
            Parameters for differential privacy.
        combine: CombineParams
            Parameters for combining expanded vectors.
        dpf: DPFConfig
            Parameters of the DPF domain.
        file_shards: int
            Number of shards for output files.
        verbose: bool
            Flag to enable debug logging.

    Raises
    ------
        ValueError: If any of the sub-configs contain invalid values.
    """

    privacy: PrivacyParams = field(default_factory=PrivacyParams)
    combine: CombineParams = field(default_factory=CombineParams)
    dpf: DPFConfig = field(default_factory=DPFConfig)
    file_shards: int = 1
    verbose: bool = False

    SUM_MODULUS: ClassVar[int] = SUM_MODULUS

    def __post_init__(self) -> None:
        """Validate values after initialization."""
        if self.file_shards < 1:
            msg = f"file_shards must be >= 1, got {self.file_shards}"
            raise InputError(msg)

    def to_dict(self) -> dict[str, Any]:
        """Recursively convert to plain dict (for logging, serialization)."""
        return asdict(self)

    def to_yaml(self) -> str:
        """Dump entire config as a YAML string."""
        return yaml.safe_dump(self.to_dict(), sort_keys=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        """Build Config by unpacking each sub-dict into its sub-config."""
        return cls(
            privacy=PrivacyParams(**data.get("privacy", {})),
            combine=CombineParams(**data.get("combine", {})),
            dpf=DPFConfig(**data.get("dpf", {})),
            file_shards=data.get("file_shards", 1),
            verbose=data.get("verbose", False),
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> Config:
        """Load a YAML file and return a Config."""
        path = Path(path)
        with path.open() as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)
