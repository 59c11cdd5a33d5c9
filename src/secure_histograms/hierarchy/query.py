"""Level-by-level histogram query over incremental DPF keys."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from secure_histograms.aggregation import aggregate_dpf_keys, merge_aggregation
from secure_histograms.config import CombineParams, PrivacyParams
from secure_histograms.differential_privacy import noise_source_for, split_epsilon
from secure_histograms.errors import InputError
from secure_histograms.hierarchy.prefix_tree import PrefixTree

if TYPE_CHECKING:
    from collections.abc import Sequence

    import numpy as np

    from secure_histograms.aggregation import CompleteResult
    from secure_histograms.dpf import DPFKey, DPFParameters

logger = logging.getLogger(__name__)


class HierarchicalQuery:
    """Adaptive hierarchical histogram over both helpers' DPF halves."""

    def __init__(
        self,
        params: DPFParameters,
        *,
        privacy: PrivacyParams | None = None,
        combine_params: CombineParams | None = None,
        ignore_privacy: bool = False,
        rng: np.random.Generator | None = None,
    ) -> None:
        """
        Initialize with the DPF hierarchy and release settings.

        Args
        ------
            params (DPFParameters): Hierarchy shared by all keys.
            privacy (PrivacyParams | None): Total budget, split evenly over
                the levels.
            combine_params (CombineParams | None): Direct or segmented combine.
            ignore_privacy (bool): Release exact sums; testing only.
            rng (np.random.Generator | None): Noise generator.
        """
        self.params = params
        self.privacy = privacy or PrivacyParams()
        self.combine_params = combine_params or CombineParams()
        self.ignore_privacy = ignore_privacy
        self.rng = rng
        self.level_results: list[list[CompleteResult]] = []
        self.tree = PrefixTree(params)

    def _query_level(
        self,
        level: int,
        keys1: Sequence[DPFKey],
        keys2: Sequence[DPFKey],
        level_privacy: PrivacyParams,
    ) -> list[CompleteResult]:
        expand = self.tree.expand_parameters(level)
        partials = [
            aggregate_dpf_keys(
                keys,
                self.params,
                expand,
                self.combine_params,
                noise_source_for(level_privacy, ignore_privacy=self.ignore_privacy, rng=self.rng),
            )
            for keys in (keys1, keys2)
        ]
        return merge_aggregation(*partials)

    def run(
        self,
        keys1: Sequence[DPFKey],
        keys2: Sequence[DPFKey],
        thresholds: Sequence[float],
    ) -> list[CompleteResult]:
        """
        Walk the hierarchy from the first level to the full bucket width.

        At every level both helpers expand their keys over the children of the
        surviving prefixes, the partial histograms are merged, and only
        buckets whose released sum reaches that level's threshold are refined.

        Args
        -----
            keys1 (Sequence[DPFKey]): All DPF halves held by the first helper.
            keys2 (Sequence[DPFKey]): All DPF halves held by the second helper.
            thresholds (Sequence[float]): One threshold per level except the last.

        Returns
        -------
            list[CompleteResult]: Released buckets of the last level.
        """
        num_levels = len(self.params.levels)
        if len(thresholds) != num_levels - 1:
            msg = f"expected {num_levels - 1} thresholds, got {len(thresholds)}"
            raise InputError(msg)
        level_privacy = split_epsilon(self.privacy, num_levels)

        self.tree = PrefixTree(self.params)
        self.tree.split_node(-1, 0)
        self.level_results = []
        results: list[CompleteResult] = []
        for level in range(num_levels):
            results = self._query_level(level, keys1, keys2, level_privacy)
            self.level_results.append(results)
            if level < num_levels - 1:
                self.tree.update(results, level, thresholds[level])
                kept = len(self.tree.nodes_at(level))
                logger.info("Level %d: kept %d of %d prefixes", level, kept, len(results))
                if kept == 0:
                    logger.info("No prefix passed the threshold at level %d", level)
                    return []
        return results
