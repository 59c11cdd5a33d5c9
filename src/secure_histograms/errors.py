"""Error taxonomy for the two-helper aggregation protocol.

Every error raised by the protocol core derives from ``AggregationError``.
Errors that signal bad input also derive from ``ValueError`` so callers that
only care about validation can keep catching that.
"""


class AggregationError(Exception):
    """Base class for all protocol errors."""


class InputError(AggregationError, ValueError):
    """Malformed or missing report, parameter, or key."""


class LengthMismatch(InputError):
    """Two byte shares that should be combined differ in length."""


class CryptoError(AggregationError):
    """Decryption or exponentiation failed."""


class DecryptionError(CryptoError):
    """Ciphertext could not be opened with the given private key."""


class InvalidGroupElement(CryptoError, ValueError):
    """Value is not an element of the commutative-encryption group."""


class DomainError(AggregationError, ValueError):
    """Aggregation identifier or hierarchy outside the configured domain."""


class InvalidDomain(DomainError):
    """DPF point or domain size outside the configured bit length."""


class PrivacyConfigError(AggregationError, ValueError):
    """Invalid epsilon / L1-sensitivity combination."""
