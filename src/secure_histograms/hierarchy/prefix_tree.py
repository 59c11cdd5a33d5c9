"""Prefix tree over bucket identifiers for hierarchical histogram queries."""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING

from secure_histograms.dpf import ExpandParameters
from secure_histograms.dpf.params import MAX_EXPANSION_POINTS
from secure_histograms.errors import InputError, InvalidDomain

if TYPE_CHECKING:
    from collections.abc import Iterable

    from secure_histograms.aggregation import CompleteResult
    from secure_histograms.dpf import DPFParameters

NodeId = tuple[int, int]


class PrefixNode:
    """Node of a prefix tree: a bucket prefix at one hierarchy level."""

    __slots__ = ("prefix", "level", "parent", "children")

    def __init__(self, prefix: int, level: int, parent: PrefixNode | None = None) -> None:
        """
        Initialize a node with its prefix, hierarchy level and optional parent.

        Args
        -----
        prefix (int): Bucket prefix, ``depth(level)`` bits wide.
        level (int): Hierarchy level; -1 for the root (empty prefix).
        parent (PrefixNode, optional): Parent node. Defaults to None.
        """
        self.prefix = prefix
        self.level = level
        self.parent = parent
        # Maps child prefix to PrefixNode
        self.children: dict[int, PrefixNode] = {}

    @property
    def id(self) -> NodeId:
        return (self.level, self.prefix)

    def __repr__(self) -> str:
        return f"PrefixNode(level={self.level}, prefix={self.prefix}, children={len(self.children)})"


class PrefixTree:
    """Tree of the bucket prefixes still under consideration, level by level."""

    def __init__(self, params: DPFParameters) -> None:
        """
        Initialize the tree with a root node at level -1.

        The root stands for the empty prefix; its children are every prefix
        of the first hierarchy level.
        """
        self.params = params
        self.root = PrefixNode(0, -1)
        self.nodes: dict[NodeId, PrefixNode] = {self.root.id: self.root}
        self._mutation_counter: int = 0
        self._cached_frontier: list[PrefixNode] = []
        self._cached_frontier_version: int = -1

    def _mark_mutated(self) -> None:
        self._mutation_counter += 1

    def get_node(self, level: int, prefix: int) -> PrefixNode | None:
        return self.nodes.get((level, prefix))

    def _add_node(self, prefix: int, level: int, parent: PrefixNode) -> PrefixNode:
        if (level, prefix) in self.nodes:
            return self.nodes[(level, prefix)]
        node = PrefixNode(prefix, level, parent)
        self.nodes[node.id] = node
        parent.children[prefix] = node
        self._mark_mutated()
        return node

    def split_node(self, level: int, prefix: int) -> bool:
        """Create every child of a node at the next hierarchy level.

        Returns
        -------
            bool: True if any child was created, False if the node is
                unknown, at the last level, or already split.

        Raises
        ------
            InvalidDomain: If the node has more children than one expansion
                may produce.
        """
        node = self.get_node(level, prefix)
        if node is None or node.level >= len(self.params.levels) - 1:
            return False
        bits = self.params.depth(level + 1) - self.params.depth(level)
        if 2**bits > MAX_EXPANSION_POINTS:
            msg = f"splitting level {level} creates 2^{bits} children"
            raise InvalidDomain(msg)
        created = False
        for suffix in range(2**bits):
            child = (prefix << bits) | suffix
            if child not in node.children:
                self._add_node(child, level + 1, node)
                created = True
        return created

    def collapse_node(self, level: int, prefix: int) -> bool:
        """Delete a node and its whole subtree.

        Returns
        -------
            bool: True if the node was removed, False if it is the root or
                unknown.
        """
        node = self.get_node(level, prefix)
        if node is None or node.parent is None:
            return False
        to_delete = deque([node])
        while to_delete:
            curr = to_delete.popleft()
            to_delete.extend(curr.children.values())
            self.nodes.pop(curr.id, None)
        node.parent.children.pop(node.prefix, None)
        self._mark_mutated()
        return True

    def nodes_at(self, level: int) -> list[PrefixNode]:
        """Nodes of one hierarchy level, ordered by prefix."""
        return sorted((n for n in self.nodes.values() if n.level == level), key=lambda n: n.prefix)

    def get_frontier_ordered(self) -> list[PrefixNode]:
        """Leaves of the tree, ordered by (level, prefix). Cached until the tree changes."""
        if self._cached_frontier_version != self._mutation_counter:
            frontier = [n for n in self.nodes.values() if not n.children]
            frontier.sort(key=lambda n: n.id)
            self._cached_frontier = frontier
            self._cached_frontier_version = self._mutation_counter
        return self._cached_frontier

    def expand_parameters(self, level: int) -> ExpandParameters:
        """Expansion that evaluates every child of the nodes kept at ``level - 1``."""
        if not (0 <= level < len(self.params.levels)):
            msg = f"level {level} outside hierarchy of {len(self.params.levels)} levels"
            raise InputError(msg)
        if level == 0:
            return ExpandParameters(level=0)
        return ExpandParameters(
            level=level,
            prefixes=tuple(n.prefix for n in self.nodes_at(level - 1)),
            previous_level=level - 1,
        )

    def update(self, results: Iterable[CompleteResult], level: int, threshold: float) -> PrefixTree:
        """Keep the level-``level`` buckets whose released sum meets ``threshold``.

        Kept buckets are split so the next level refines them; the rest are
        collapsed.
        """
        for result in results:
            node = self.get_node(level, result.bucket)
            if node is None:
                continue
            if result.sum >= threshold:
                self.split_node(level, result.bucket)
            else:
                self.collapse_node(level, result.bucket)
        return self
