"""Coverage dataset: CountableUnit -> total hit count.

Keyed by CountableUnit rather than counter index, so counts produced by
different counter-map versions of one unit land on the same key as long as
the line or branch itself is unchanged.

Merging sums hits and unions context labels. Both operations are
commutative and associative, so merge order never changes the result, and
``to_json`` sorts everything so equal datasets serialize byte-identically.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

from covreach.core.errors import CovReachError
from covreach.source.models import BranchUnit, CountableUnit, LineUnit


class UnitInventory(Protocol):
    """Anything that can enumerate the countable units of one SourceUnit.

    Both StructuralModel and CounterMap qualify.
    """

    @property
    def unit(self) -> str: ...

    @property
    def units(self) -> tuple[CountableUnit, ...]: ...


@dataclass
class CoverageDataset:
    """Merged hit counts, plus which contexts (tests) reached each unit.

    ``failures`` holds SourceUnits that could not be modelled or instrumented.
    They have no countable units and are never reported as 0% covered.
    """

    hits: dict[CountableUnit, int] = field(default_factory=dict)
    contexts: dict[CountableUnit, frozenset[str]] = field(default_factory=dict)
    failures: dict[str, CovReachError] = field(default_factory=dict)

    @classmethod
    def seed(cls, inventories: Iterable[UnitInventory]) -> CoverageDataset:
        """Dataset with an explicit zero for every known unit."""
        dataset = cls()
        for inventory in inventories:
            for unit in inventory.units:
                dataset.hits.setdefault(unit, 0)
        return dataset

    def hit_count(self, unit: CountableUnit) -> int:
        """Hits for a unit; a unit nobody reported reads as 0."""
        return self.hits.get(unit, 0)

    def contexts_of(self, unit: CountableUnit) -> frozenset[str]:
        return self.contexts.get(unit, frozenset())

    def copy(self) -> CoverageDataset:
        return CoverageDataset(
            hits=dict(self.hits), contexts=dict(self.contexts), failures=dict(self.failures)
        )

    def add(self, unit: CountableUnit, hits: int, context: str | None = None) -> None:
        self.hits[unit] = self.hits.get(unit, 0) + hits
        if context is not None and hits > 0:
            self.contexts[unit] = self.contexts.get(unit, frozenset()) | {context}

    def fail(self, unit: str, error: CovReachError) -> None:
        """Record a unit-scoped failure. The first failure of a unit wins."""
        self.failures.setdefault(unit, error)

    # -- serialization ------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        units: dict[str, dict[str, Any]] = {}
        for unit in sorted(self.hits, key=lambda u: u.sort_key):
            entry = units.setdefault(unit.unit, {"lines": {}, "branches": []})
            if isinstance(unit, LineUnit):
                entry["lines"][str(unit.line)] = self.hits[unit]
            else:
                entry["branches"].append(
                    {
                        "site": unit.site,
                        "label": unit.label,
                        "line": unit.line,
                        "hits": self.hits[unit],
                    }
                )
        for unit, labels in self.contexts.items():
            if not labels:
                continue
            entry = units.setdefault(unit.unit, {"lines": {}, "branches": []})
            entry.setdefault("contexts", {})[unit.key] = sorted(labels)
        result: dict[str, Any] = {"units": units}
        if self.failures:
            result["failures"] = {
                unit: error.to_dict() for unit, error in sorted(self.failures.items())
            }
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, sort_keys=True)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CoverageDataset:
        dataset = cls()
        keyed: dict[str, CountableUnit] = {}
        for name, entry in data.get("units", {}).items():
            for line, hits in entry.get("lines", {}).items():
                line_unit = LineUnit(name, int(line))
                dataset.hits[line_unit] = int(hits)
                keyed[line_unit.key] = line_unit
            for branch in entry.get("branches", []):
                branch_unit = BranchUnit(name, branch["site"], branch["label"], int(branch["line"]))
                dataset.hits[branch_unit] = int(branch["hits"])
                keyed[branch_unit.key] = branch_unit
            for key, labels in entry.get("contexts", {}).items():
                if key in keyed:
                    dataset.contexts[keyed[key]] = frozenset(labels)
        for unit, error in data.get("failures", {}).items():
            dataset.failures[unit] = CovReachError.from_dict(error)
        return dataset
