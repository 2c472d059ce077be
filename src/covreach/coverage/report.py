"""Coverage report generation.

Turns a CoverageDataset plus the inventories of the units it covers into
per-unit and aggregate ratios:

    line_coverage   = |lines hit| / |lines|
    branch_coverage = |branches hit| / |branches|

A ratio with a zero denominator is 0.0 and flagged not applicable, so "no
branches" is never confused with "no branch covered". Units that failed to
parse or instrument are listed separately and never counted as 0%.

Output schema of ``CoverageReport.to_dict``:
{
    "summary": {
        "units": int,
        "failed_units": int,
        "lines_found": int,
        "lines_hit": int,
        "line_coverage_percent": float | null,
        "branches_found": int,
        "branches_hit": int,
        "branch_coverage_percent": float | null
    },
    "units": [
        {
            "unit": str,
            "lines_found": int,
            "lines_hit": int,
            "line_coverage_percent": float | null,
            "branches_found": int,
            "branches_hit": int,
            "branch_coverage_percent": float | null,
            "missed_lines": [int, ...],
            "missed_branches": [str, ...],
            "partial_sites": [str, ...]
        },
        ...
    ],
    "zero_hit": [str, ...],
    "failures": [{"unit": str, "error": {...}}, ...],
    "unverified_outcomes": [...],
    "advisories": [...]
}
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from covreach.config.models import ThresholdsConfig
from covreach.core.errors import CovReachError
from covreach.coverage.audit import AuditResult
from covreach.coverage.models import CoverageDataset, UnitInventory
from covreach.source.models import BranchUnit, CountableUnit, LineUnit


def _ratio(hit: int, found: int) -> float:
    return hit / found if found else 0.0


def _percent(hit: int, found: int) -> float | None:
    return round(hit / found * 100.0, 2) if found else None


@dataclass(frozen=True)
class UnitFailure:
    """A SourceUnit that produced no coverage because it failed."""

    unit: str
    error: CovReachError

    def to_dict(self) -> dict[str, Any]:
        return {"unit": self.unit, "error": self.error.to_dict()}


@dataclass(frozen=True)
class UnitCoverage:
    """Coverage figures for one SourceUnit."""

    unit: str
    lines_found: int
    lines_hit: int
    branches_found: int
    branches_hit: int
    zero_hit: tuple[CountableUnit, ...] = ()
    partial_sites: tuple[str, ...] = ()

    @property
    def line_coverage(self) -> float:
        return _ratio(self.lines_hit, self.lines_found)

    @property
    def branch_coverage(self) -> float:
        return _ratio(self.branches_hit, self.branches_found)

    @property
    def line_applicable(self) -> bool:
        return self.lines_found > 0

    @property
    def branch_applicable(self) -> bool:
        return self.branches_found > 0

    @property
    def missed_lines(self) -> list[int]:
        return [u.line for u in self.zero_hit if isinstance(u, LineUnit)]

    @property
    def missed_branches(self) -> list[BranchUnit]:
        return [u for u in self.zero_hit if isinstance(u, BranchUnit)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "unit": self.unit,
            "lines_found": self.lines_found,
            "lines_hit": self.lines_hit,
            "line_coverage_percent": _percent(self.lines_hit, self.lines_found),
            "branches_found": self.branches_found,
            "branches_hit": self.branches_hit,
            "branch_coverage_percent": _percent(self.branches_hit, self.branches_found),
            "missed_lines": self.missed_lines,
            "missed_branches": [branch.key for branch in self.missed_branches],
            "partial_sites": list(self.partial_sites),
        }


@dataclass(frozen=True)
class CoverageReport:
    units: tuple[UnitCoverage, ...] = ()
    failures: tuple[UnitFailure, ...] = ()
    audit: AuditResult = field(default_factory=AuditResult)

    @property
    def lines_found(self) -> int:
        return sum(u.lines_found for u in self.units)

    @property
    def lines_hit(self) -> int:
        return sum(u.lines_hit for u in self.units)

    @property
    def branches_found(self) -> int:
        return sum(u.branches_found for u in self.units)

    @property
    def branches_hit(self) -> int:
        return sum(u.branches_hit for u in self.units)

    @property
    def line_coverage(self) -> float:
        return _ratio(self.lines_hit, self.lines_found)

    @property
    def branch_coverage(self) -> float:
        return _ratio(self.branches_hit, self.branches_found)

    @property
    def line_applicable(self) -> bool:
        return self.lines_found > 0

    @property
    def branch_applicable(self) -> bool:
        return self.branches_found > 0

    @property
    def zero_hit(self) -> list[CountableUnit]:
        return [unit for coverage in self.units for unit in coverage.zero_hit]

    @property
    def failed(self) -> bool:
        return bool(self.failures)

    def unit(self, name: str) -> UnitCoverage | None:
        for coverage in self.units:
            if coverage.unit == name:
                return coverage
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": {
                "units": len(self.units),
                "failed_units": len(self.failures),
                "lines_found": self.lines_found,
                "lines_hit": self.lines_hit,
                "line_coverage_percent": _percent(self.lines_hit, self.lines_found),
                "branches_found": self.branches_found,
                "branches_hit": self.branches_hit,
                "branch_coverage_percent": _percent(self.branches_hit, self.branches_found),
            },
            "units": [coverage.to_dict() for coverage in self.units],
            "zero_hit": [unit.key for unit in self.zero_hit],
            "failures": [failure.to_dict() for failure in self.failures],
            **self.audit.to_dict(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, sort_keys=True)


def compute_unit_coverage(dataset: CoverageDataset, inventory: UnitInventory) -> UnitCoverage:
    """Coverage of one unit. Units the dataset never mentions count as 0 hits."""
    lines_found = lines_hit = branches_found = branches_hit = 0
    zero_hit: list[CountableUnit] = []
    site_hits: dict[str, list[bool]] = {}

    for unit in inventory.units:
        covered = dataset.hit_count(unit) > 0
        if not covered:
            zero_hit.append(unit)
        if isinstance(unit, LineUnit):
            lines_found += 1
            lines_hit += covered
        else:
            branches_found += 1
            branches_hit += covered
            site_hits.setdefault(unit.site, []).append(covered)

    # A partial site has at least one branch taken and one never taken
    partial = tuple(site for site, taken in site_hits.items() if any(taken) and not all(taken))
    return UnitCoverage(
        unit=inventory.unit,
        lines_found=lines_found,
        lines_hit=lines_hit,
        branches_found=branches_found,
        branches_hit=branches_hit,
        zero_hit=tuple(zero_hit),
        partial_sites=partial,
    )


def build_report(
    dataset: CoverageDataset,
    inventories: Iterable[UnitInventory],
    *,
    failures: Mapping[str, CovReachError] | None = None,
    audit: AuditResult | None = None,
) -> CoverageReport:
    """Build the report for every inventoried unit that did not fail.

    Args:
        dataset: Merged hit counts.
        inventories: Structural models or counter maps of the covered units.
        failures: Unit-scoped errors beyond those recorded in the dataset.
        audit: Result of the outcome auditor, if it ran.
    """
    failed: dict[str, CovReachError] = dict(dataset.failures)
    for unit, error in (failures or {}).items():
        failed.setdefault(unit, error)

    units = [
        compute_unit_coverage(dataset, inventory)
        for inventory in sorted(inventories, key=lambda inv: inv.unit)
        if inventory.unit not in failed
    ]
    return CoverageReport(
        units=tuple(units),
        failures=tuple(UnitFailure(unit, error) for unit, error in sorted(failed.items())),
        audit=audit or AuditResult(),
    )


def _format_ratio(hit: int, found: int, nouns: str) -> str:
    if not found:
        return f"n/a (no {nouns})"
    return f"{hit / found * 100.0:.1f}% ({hit}/{found} {nouns})"


def build_text_summary(report: CoverageReport) -> str:
    """Plain human-readable summary of a report."""
    if not report.units and not report.failures:
        return "No coverage data"

    line_ratio = _format_ratio(report.lines_hit, report.lines_found, "lines")
    branch_ratio = _format_ratio(report.branches_hit, report.branches_found, "branches")
    lines = [f"Line coverage: {line_ratio}", f"Branch coverage: {branch_ratio}"]
    for coverage in report.units:
        lines.append(
            f"  {coverage.unit}: lines "
            f"{_format_ratio(coverage.lines_hit, coverage.lines_found, 'lines')}, branches "
            f"{_format_ratio(coverage.branches_hit, coverage.branches_found, 'branches')}"
        )
    for failure in report.failures:
        lines.append(f"  {failure.unit}: FAILED {failure.error}")
    for outcome in report.audit.unverified:
        lines.append(f"Unverified: {outcome.message}")
    for advisory in report.audit.advisories:
        keys = ", ".join(branch.key for branch in advisory.branches)
        lines.append(f"Advisory: branches {keys} are reached by identical tests")
    return "\n".join(lines)


@dataclass(frozen=True, slots=True)
class ThresholdViolation:
    metric: str
    required: float
    actual: float

    @property
    def message(self) -> str:
        return (
            f"{self.metric} coverage {self.actual * 100.0:.1f}% "
            f"is below the required {self.required * 100.0:.1f}%"
        )


def check_thresholds(
    report: CoverageReport, thresholds: ThresholdsConfig
) -> list[ThresholdViolation]:
    """Compare aggregate ratios with the configured minimums.

    A metric that is not applicable (nothing to count) never violates.
    """
    violations: list[ThresholdViolation] = []
    if thresholds.line is not None and report.line_applicable:
        if report.line_coverage < thresholds.line:
            violations.append(ThresholdViolation("line", thresholds.line, report.line_coverage))
    if thresholds.branch is not None and report.branch_applicable:
        if report.branch_coverage < thresholds.branch:
            violations.append(
                ThresholdViolation("branch", thresholds.branch, report.branch_coverage)
            )
    return violations
