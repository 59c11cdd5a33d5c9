"""Distributed Point Function engine.

Includes:
- Hierarchy and expansion parameters, with the legacy parameter adapter.
- Key generation and hierarchical expansion of incremental DPF keys.
- Direct and segmented combination of expanded vectors.
"""

from .combine import combine_direct, combine_segmented, combine_vectors
from .dpf import DPFKey, evaluate_at, expand, generate_keys
from .params import (
    DPFParameters,
    ExpandParameters,
    HierarchyLevel,
    convert_old_params_to_expand_parameter,
    expand_parameters_for_ids,
    expansion_points,
    get_default_dpf_parameters,
)
from .prg import VALUE_LANES

__all__ = [
    "VALUE_LANES",
    "DPFKey",
    "DPFParameters",
    "ExpandParameters",
    "HierarchyLevel",
    "combine_direct",
    "combine_segmented",
    "combine_vectors",
    "convert_old_params_to_expand_parameter",
    "evaluate_at",
    "expand",
    "expand_parameters_for_ids",
    "expansion_points",
    "generate_keys",
    "get_default_dpf_parameters",
]
