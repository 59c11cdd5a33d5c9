"""Secret sharing primitives used by the report codec and the aggregators."""

from .secret_share import combine_bytes, combine_int, split_bytes, split_int

__all__ = [
    "combine_bytes",
    "combine_int",
    "split_bytes",
    "split_int",
]
