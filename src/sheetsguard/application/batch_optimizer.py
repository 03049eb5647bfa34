"""Batch planning for multi-range requests.

Decides how a list of independent range requests is grouped into remote
batch calls: optional stable regrouping, splitting at ``max_batch_size``
and merging of undersized neighbours that can share a call.
"""

import itertools
import logging
from typing import Callable, Dict, Hashable, Iterable, List, Optional, Tuple

from sheetsguard.domain.config.batch import BatchConfig
from sheetsguard.domain.models.range_request import Batch, BatchStats, RangeRequest

logger = logging.getLogger(__name__)

KeyFunction = Callable[[RangeRequest], Hashable]


def default_key(request: RangeRequest) -> Hashable:
    """Requests can share a call when they hit the same resource in the same direction"""
    return (request.resource_id, request.kind)


class BatchOptimizer:
    """Plans batches for range requests.

    Two caller-supplied keys drive planning:

    - ``group_key`` decides which requests belong together (ordering and
      splitting happen per group, e.g. one group per sheet tab);
    - ``compatibility_key`` decides which requests may travel in the same
      remote call (e.g. same spreadsheet and same direction). Undersized
      batches are only merged with neighbours of equal compatibility key.

    Both default to ``(resource_id, kind)``. Targets are never parsed.
    """

    def __init__(
        self,
        max_batch_size: int = 100,
        min_batch_size: int = 2,
        merge_adjacent_ranges: bool = True,
        sort_ranges: bool = True,
        *,
        group_key: Optional[KeyFunction] = None,
        compatibility_key: Optional[KeyFunction] = None,
    ):
        """Initialize optimizer

        Raises:
            ValueError: If the size bounds are invalid
        """
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be >= 1")
        if min_batch_size < 1:
            raise ValueError("min_batch_size must be >= 1")
        if min_batch_size > max_batch_size:
            raise ValueError("min_batch_size must not exceed max_batch_size")

        self.max_batch_size = max_batch_size
        self.min_batch_size = min_batch_size
        self.merge_adjacent_ranges = merge_adjacent_ranges
        self.sort_ranges = sort_ranges
        self.compatibility_key = compatibility_key or default_key
        self.group_key = group_key or self.compatibility_key

    @classmethod
    def from_config(cls, config: BatchConfig, **kwargs) -> "BatchOptimizer":
        """Create optimizer from validated configuration"""
        return cls(
            max_batch_size=config.max_batch_size,
            min_batch_size=config.min_batch_size,
            merge_adjacent_ranges=config.merge_adjacent_ranges,
            sort_ranges=config.sort_ranges,
            **kwargs,
        )

    def order(self, requests: Iterable[RangeRequest]) -> List[RangeRequest]:
        """Stable regrouping: groups ordered by first appearance, members keep their order"""
        requests = list(requests)
        first_seen: Dict[Hashable, int] = {}
        for position, request in enumerate(requests):
            first_seen.setdefault(self.group_key(request), position)
        return sorted(requests, key=lambda r: first_seen[self.group_key(r)])

    def _runs(self, requests: List[RangeRequest]) -> List[Tuple[Hashable, List[RangeRequest]]]:
        """Maximal runs of consecutive requests sharing group and compatibility key"""
        runs = []
        for (_, compat), run in itertools.groupby(
            requests, key=lambda r: (self.group_key(r), self.compatibility_key(r))
        ):
            runs.append((compat, list(run)))
        return runs

    def _split(self, compat: Hashable, run: List[RangeRequest]) -> List[Batch]:
        return [
            Batch(tuple(run[start : start + self.max_batch_size]), key=compat)
            for start in range(0, len(run), self.max_batch_size)
        ]

    def _merge(self, batches: List[Batch]) -> List[Batch]:
        merged: List[Batch] = []
        for batch in batches:
            if merged:
                previous = merged[-1]
                undersized = len(previous) < self.min_batch_size or len(batch) < self.min_batch_size
                if (
                    undersized
                    and previous.key == batch.key
                    and len(previous) + len(batch) <= self.max_batch_size
                ):
                    merged[-1] = Batch(previous.requests + batch.requests, key=previous.key)
                    continue
            merged.append(batch)
        return merged

    def plan(self, requests: Iterable[RangeRequest]) -> List[Batch]:
        """Group requests into batches

        Every input request appears in exactly one batch, unmodified. No
        batch is empty or larger than ``max_batch_size``. Output depends
        only on the input order and configuration.

        Args:
            requests: Requests to plan

        Returns:
            Batches in execution order
        """
        requests = list(requests)
        if not requests:
            return []

        # Too few requests to be worth regrouping or merging
        optimize = len(requests) >= self.min_batch_size
        ordered = self.order(requests) if optimize and self.sort_ranges else requests

        batches: List[Batch] = []
        for compat, run in self._runs(ordered):
            batches.extend(self._split(compat, run))

        if optimize and self.merge_adjacent_ranges:
            batches = self._merge(batches)

        logger.debug(f"Planned {len(requests)} requests into {len(batches)} batches")
        return batches

    def plan_with_stats(self, requests: Iterable[RangeRequest]) -> Tuple[List[Batch], BatchStats]:
        """Plan batches and report how many remote calls were saved"""
        requests = list(requests)
        batches = self.plan(requests)
        return batches, BatchStats(original_count=len(requests), batch_count=len(batches))
