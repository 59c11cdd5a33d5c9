"""Hierarchical histogram queries over incremental DPF keys."""

from .prefix_tree import PrefixNode, PrefixTree
from .query import HierarchicalQuery

__all__ = ["HierarchicalQuery", "PrefixNode", "PrefixTree"]
