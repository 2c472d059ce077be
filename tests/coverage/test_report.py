"""Tests for coverage report generation and thresholds."""

from __future__ import annotations

import json

import pytest

from covreach.config.models import ThresholdsConfig
from covreach.core.errors import MalformedSourceError
from covreach.coverage import (
    AuditResult,
    CoverageDataset,
    CoverageReport,
    UnitCoverage,
    UnverifiedOutcome,
    build_report,
    build_text_summary,
    check_thresholds,
    compute_unit_coverage,
)
from covreach.source import LineUnit, SourceUnit, StructuralModel, build

BRANCHY = "def f(x):\n    if x:\n        return 1\n    return 2\n"
SITE = "if@2:4-2:8"


@pytest.fixture
def model() -> StructuralModel:
    return build(SourceUnit("f.py", BRANCHY))


def _dataset(model: StructuralModel, **hits_by_key: int) -> CoverageDataset:
    dataset = CoverageDataset.seed([model])
    for unit in model.units:
        key = unit.key.split(":", 1)[1]
        if key in hits_by_key:
            dataset.hits[unit] = hits_by_key[key]
    return dataset


class TestUnitCoverage:
    def test_counts_and_ratios(self, model: StructuralModel) -> None:
        dataset = _dataset(model, **{"1": 1, "2": 1, "4": 1, f"{SITE}:false": 1})

        coverage = compute_unit_coverage(dataset, model)

        assert (coverage.lines_found, coverage.lines_hit) == (4, 3)
        assert (coverage.branches_found, coverage.branches_hit) == (2, 1)
        assert coverage.line_coverage == 0.75
        assert coverage.branch_coverage == 0.5
        assert coverage.missed_lines == [3]
        assert [b.label for b in coverage.missed_branches] == ["true"]
        assert coverage.partial_sites == (SITE,)

    def test_unmentioned_units_count_as_zero(self, model: StructuralModel) -> None:
        coverage = compute_unit_coverage(CoverageDataset(), model)

        assert coverage.lines_hit == 0
        assert len(coverage.zero_hit) == len(model.units)
        assert coverage.partial_sites == ()

    def test_no_branches_is_not_applicable(self) -> None:
        flat = build(SourceUnit("flat.py", "x = 1\n"))

        coverage = compute_unit_coverage(CoverageDataset(), flat)

        assert coverage.branch_coverage == 0.0
        assert not coverage.branch_applicable
        assert coverage.to_dict()["branch_coverage_percent"] is None

    @pytest.mark.parametrize(("hit", "found"), [(0, 0), (0, 3), (2, 3), (3, 3)])
    def test_ratios_bounded(self, hit: int, found: int) -> None:
        coverage = UnitCoverage("u.py", found, hit, found, hit)
        assert 0.0 <= coverage.line_coverage <= 1.0
        assert 0.0 <= coverage.branch_coverage <= 1.0


class TestBuildReport:
    def test_aggregates_over_units(self, model: StructuralModel) -> None:
        flat = build(SourceUnit("flat.py", "x = 1\ny = 2\n"))
        dataset = CoverageDataset.seed([model, flat])
        dataset.hits[LineUnit("flat.py", 1)] = 4

        report = build_report(dataset, [model, flat])

        assert [u.unit for u in report.units] == ["f.py", "flat.py"]
        assert (report.lines_hit, report.lines_found) == (1, 6)
        assert report.branches_found == 2
        assert report.branch_coverage == 0.0
        assert report.unit("flat.py") is not None
        assert report.unit("missing.py") is None

    def test_failed_unit_listed_not_counted(self, model: StructuralModel) -> None:
        dataset = CoverageDataset.seed([model])
        error = MalformedSourceError.syntax_error("f.py", "invalid syntax", 2)
        dataset.fail("f.py", error)

        report = build_report(dataset, [model])

        assert report.units == ()
        assert report.failed
        assert report.failures[0].unit == "f.py"
        assert not report.line_applicable

    def test_extra_failures_argument(self) -> None:
        error = MalformedSourceError.unreadable("gone.py", "missing")

        report = build_report(CoverageDataset(), [], failures={"gone.py": error})

        assert [f.unit for f in report.failures] == ["gone.py"]

    def test_json_schema(self, model: StructuralModel) -> None:
        dataset = _dataset(model, **{"1": 1, "2": 1, f"{SITE}:true": 1, "3": 1})
        audit = AuditResult(unverified=(UnverifiedOutcome("test_x", "cart.total"),))

        data = json.loads(build_report(dataset, [model], audit=audit).to_json())

        assert data["summary"] == {
            "units": 1,
            "failed_units": 0,
            "lines_found": 4,
            "lines_hit": 3,
            "line_coverage_percent": 75.0,
            "branches_found": 2,
            "branches_hit": 1,
            "branch_coverage_percent": 50.0,
        }
        assert data["units"][0]["missed_lines"] == [4]
        assert data["zero_hit"] == ["f.py:if@2:4-2:8:false", "f.py:4"]
        assert data["failures"] == []
        assert data["unverified_outcomes"][0]["subject"] == "cart.total"
        assert data["advisories"] == []


class TestTextSummary:
    def test_empty(self) -> None:
        assert build_text_summary(CoverageReport()) == "No coverage data"

    def test_lines_and_branches(self) -> None:
        report = CoverageReport(units=(UnitCoverage("u.py", 5, 1, 0, 0),))

        text = build_text_summary(report)

        assert "Line coverage: 20.0% (1/5 lines)" in text
        assert "Branch coverage: n/a" in text
        assert "u.py" in text

    def test_failures_and_warnings(self) -> None:
        error = MalformedSourceError.syntax_error("bad.py", "invalid syntax", 1)
        report = build_report(
            CoverageDataset(),
            [],
            failures={"bad.py": error},
            audit=AuditResult(unverified=(UnverifiedOutcome("test_y", "order.state"),)),
        )

        text = build_text_summary(report)

        assert "bad.py: FAILED" in text
        assert "Unverified: order.state is mutated in test_y" in text


class TestThresholds:
    REPORT = CoverageReport(units=(UnitCoverage("u.py", 10, 8, 4, 1),))

    def test_no_thresholds_no_violations(self) -> None:
        assert check_thresholds(self.REPORT, ThresholdsConfig()) == []

    def test_violations(self) -> None:
        violations = check_thresholds(self.REPORT, ThresholdsConfig(line=0.9, branch=0.5))

        assert [(v.metric, v.required, v.actual) for v in violations] == [
            ("line", 0.9, 0.8),
            ("branch", 0.5, 0.25),
        ]
        assert violations[0].message == "line coverage 80.0% is below the required 90.0%"

    def test_met_thresholds(self) -> None:
        assert check_thresholds(self.REPORT, ThresholdsConfig(line=0.8, branch=0.25)) == []

    def test_not_applicable_metric_never_violates(self) -> None:
        report = CoverageReport(units=(UnitCoverage("u.py", 2, 2, 0, 0),))

        assert check_thresholds(report, ThresholdsConfig(branch=1.0)) == []
