from .config import (
    DEFAULT_KEY_BIT_SIZE,
    DEFAULT_L1_SENSITIVITY,
    DEFAULT_SEGMENT_LENGTH,
    SUM_MODULUS,
    VALUE_BIT_SIZE,
    CombineParams,
    Config,
    DPFConfig,
    PrivacyParams,
)

__all__ = [
    "DEFAULT_KEY_BIT_SIZE",
    "DEFAULT_L1_SENSITIVITY",
    "DEFAULT_SEGMENT_LENGTH",
    "SUM_MODULUS",
    "VALUE_BIT_SIZE",
    "CombineParams",
    "Config",
    "DPFConfig",
    "PrivacyParams",
]
