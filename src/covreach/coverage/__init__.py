"""Coverage aggregation, reporting and outcome auditing.

Usage:
    from covreach.coverage import Aggregator, build_report, OutcomeAuditor

    aggregator = Aggregator(counter_maps)
    aggregator.merge_all(snapshots)
    dataset = aggregator.release()

    audit = OutcomeAuditor().audit(records, dataset, counter_maps)
    report = build_report(dataset, counter_maps, audit=audit)
    print(build_text_summary(report))
"""

from covreach.coverage.audit import (
    AuditResult,
    CoupledBranchAdvisory,
    OutcomeAuditor,
    OutcomeKind,
    OutcomeRecord,
    UnverifiedOutcome,
    audit_outcomes,
    find_coupled_branches,
    read_outcome_records,
)
from covreach.coverage.merge import Aggregator, combine, merge_snapshot
from covreach.coverage.models import CoverageDataset, UnitInventory
from covreach.coverage.report import (
    CoverageReport,
    ThresholdViolation,
    UnitCoverage,
    UnitFailure,
    build_report,
    build_text_summary,
    check_thresholds,
    compute_unit_coverage,
)

__all__ = [
    # Models
    "CoverageDataset",
    "UnitInventory",
    # Merge
    "Aggregator",
    "combine",
    "merge_snapshot",
    # Report
    "CoverageReport",
    "ThresholdViolation",
    "UnitCoverage",
    "UnitFailure",
    "build_report",
    "build_text_summary",
    "check_thresholds",
    "compute_unit_coverage",
    # Audit
    "AuditResult",
    "CoupledBranchAdvisory",
    "OutcomeAuditor",
    "OutcomeKind",
    "OutcomeRecord",
    "UnverifiedOutcome",
    "audit_outcomes",
    "find_coupled_branches",
    "read_outcome_records",
]
