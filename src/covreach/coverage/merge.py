"""Snapshot aggregation with sum semantics.

Each snapshot's counts are translated through the counter map it was
produced with and added into the dataset:

- hits[unit] = sum of hits[unit] across all merged snapshots
- contexts[unit] = union of the contexts that reached unit

Both are commutative and associative, so parallel shards can be merged in
any order.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable

import structlog

from covreach.core.errors import CounterDesyncError, CovReachError, MergeConflictError
from covreach.coverage.models import CoverageDataset, UnitInventory
from covreach.instrument.counter_map import CounterMap
from covreach.runtime.tracker import ExecutionSnapshot
from covreach.source.models import CountableUnit

logger = structlog.get_logger()


def _resolve(
    snapshot: ExecutionSnapshot, counter_map: CounterMap
) -> list[tuple[CountableUnit, int]]:
    """Translate a snapshot's indices to units, validating all of them first."""
    if snapshot.map_fingerprint != counter_map.fingerprint:
        raise CounterDesyncError.unknown_map(snapshot.unit, snapshot.map_fingerprint)
    if snapshot.unit != counter_map.unit:
        raise MergeConflictError.unit_mismatch(
            snapshot.unit, counter_map.unit, snapshot.map_fingerprint
        )
    return [
        (counter_map.unit_at(index, phase="merge"), hits)
        for index, hits in sorted(snapshot.counts.items())
    ]


def merge_snapshot(
    dataset: CoverageDataset,
    snapshot: ExecutionSnapshot,
    counter_map: CounterMap,
) -> CoverageDataset:
    """Return a new dataset with ``snapshot`` added. ``dataset`` is left untouched.

    Raises:
        CounterDesyncError: The snapshot was not produced with ``counter_map``,
            or references an index outside it.
        MergeConflictError: The snapshot names a different unit than the map.
    """
    resolved = _resolve(snapshot, counter_map)
    merged = dataset.copy()
    for unit, hits in resolved:
        merged.add(unit, hits, snapshot.context)
    return merged


def combine(*datasets: CoverageDataset) -> CoverageDataset:
    """Merge whole datasets (e.g. from parallel shards)."""
    result = CoverageDataset()
    for dataset in datasets:
        for unit, hits in dataset.hits.items():
            result.add(unit, hits)
        for unit, labels in dataset.contexts.items():
            if labels:
                result.contexts[unit] = result.contexts_of(unit) | labels
        for unit, error in dataset.failures.items():
            result.fail(unit, error)
    return result


class Aggregator:
    """Owns one CoverageDataset for a report generation cycle.

    Counter maps are registered by fingerprint, so snapshots from different
    map versions of the same unit can all be merged into one dataset. Merges
    are serialized; nothing else may mutate the dataset until ``release``.
    """

    def __init__(
        self,
        counter_maps: Iterable[CounterMap] = (),
        inventories: Iterable[UnitInventory] | None = None,
    ) -> None:
        self._maps: dict[str, CounterMap] = {}
        self._lock = threading.Lock()
        self._merged = 0
        maps = list(counter_maps)
        for counter_map in maps:
            self.register(counter_map)
        self._dataset = CoverageDataset.seed(maps if inventories is None else inventories)

    @property
    def merged_count(self) -> int:
        return self._merged

    def register(self, counter_map: CounterMap) -> None:
        """Make snapshots produced with ``counter_map`` mergeable."""
        with self._lock:
            existing = self._maps.get(counter_map.fingerprint)
            if existing is not None and (
                existing.unit != counter_map.unit or existing.entries != counter_map.entries
            ):
                raise MergeConflictError.fingerprint_collision(
                    counter_map.unit, counter_map.fingerprint
                )
            self._maps[counter_map.fingerprint] = counter_map

    def seed(self, inventories: Iterable[UnitInventory]) -> None:
        """Add explicit zeros for units no snapshot may mention."""
        with self._lock:
            for inventory in inventories:
                for unit in inventory.units:
                    self._dataset.hits.setdefault(unit, 0)

    def fail(self, unit: str, error: CovReachError) -> None:
        """Carry a unit-scoped failure into the dataset."""
        with self._lock:
            self._dataset.fail(unit, error)

    def merge(self, snapshot: ExecutionSnapshot) -> None:
        with self._lock:
            counter_map = self._maps.get(snapshot.map_fingerprint)
            if counter_map is None:
                raise CounterDesyncError.unknown_map(snapshot.unit, snapshot.map_fingerprint)
            # Validate before mutating so a bad snapshot leaves no partial merge behind.
            for unit, hits in _resolve(snapshot, counter_map):
                self._dataset.add(unit, hits, snapshot.context)
            self._merged += 1
        logger.debug(
            "snapshot_merged",
            unit=snapshot.unit,
            context=snapshot.context,
            hits=snapshot.total_hits,
        )

    def merge_all(self, snapshots: Iterable[ExecutionSnapshot]) -> None:
        for snapshot in snapshots:
            self.merge(snapshot)

    @property
    def dataset(self) -> CoverageDataset:
        """A copy of the current dataset."""
        with self._lock:
            return self._dataset.copy()

    def release(self) -> CoverageDataset:
        """Hand the dataset over and start a fresh, empty one."""
        with self._lock:
            dataset, self._dataset = self._dataset, CoverageDataset()
            merged, self._merged = self._merged, 0
        logger.info("dataset_released", units=len(dataset.hits), snapshots=merged)
        return dataset
