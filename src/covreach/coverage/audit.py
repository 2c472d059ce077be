"""Outcome auditor: signals that coverage ratios cannot express.

Executing a line is not the same as verifying what it did. Two passes run
over the inputs a test harness can supply:

1. ``audit_outcomes`` - every observable mutation that no assertion in the
   same test referenced becomes an UnverifiedOutcome warning.
2. ``find_coupled_branches`` - covered branches of different decision sites
   that were reached by exactly the same tests, the same number of times,
   are reported together. One assertion may be satisfying all of them.

Neither pass changes coverage ratios, and neither is ever a failure.
"""

from __future__ import annotations

import json
from collections import defaultdict
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict

from covreach.coverage.models import CoverageDataset, UnitInventory
from covreach.source.models import BranchUnit

logger = structlog.get_logger()


class OutcomeKind(StrEnum):
    EXPLICIT_RETURN = "explicit_return"
    OBSERVABLE_MUTATION = "observable_mutation"


@dataclass(frozen=True, slots=True)
class OutcomeRecord:
    """One observable outcome of a test, as reported by the harness.

    ``subject`` identifies what changed or was returned, e.g. ``"cart.total"``
    or ``"pricing.py:apply_discount:return"``.
    """

    test: str
    subject: str
    kind: OutcomeKind
    asserted: bool


@dataclass(frozen=True, slots=True, order=True)
class UnverifiedOutcome:
    test: str
    subject: str

    @property
    def message(self) -> str:
        return f"{self.subject} is mutated in {self.test} but no assertion checks it"

    def to_dict(self) -> dict[str, str]:
        return {"test": self.test, "subject": self.subject, "message": self.message}


@dataclass(frozen=True, slots=True)
class CoupledBranchAdvisory:
    """Branches that no test can tell apart by coverage alone."""

    unit: str
    branches: tuple[BranchUnit, ...]
    contexts: frozenset[str]
    hits: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "unit": self.unit,
            "branches": [branch.key for branch in self.branches],
            "contexts": sorted(self.contexts),
            "hits": self.hits,
        }


@dataclass(frozen=True)
class AuditResult:
    unverified: tuple[UnverifiedOutcome, ...] = ()
    advisories: tuple[CoupledBranchAdvisory, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "unverified_outcomes": [outcome.to_dict() for outcome in self.unverified],
            "advisories": [advisory.to_dict() for advisory in self.advisories],
        }


def audit_outcomes(records: Iterable[OutcomeRecord]) -> set[UnverifiedOutcome]:
    """Warn about mutations no assertion in the same test referenced.

    A mutation counts as verified only by an asserted mutation record for the
    same subject in the same test. Asserting a return value does not verify a
    side effect, even on the same subject.
    """
    mutated: set[tuple[str, str]] = set()
    asserted: set[tuple[str, str]] = set()
    for record in records:
        if record.kind != OutcomeKind.OBSERVABLE_MUTATION:
            continue
        key = (record.test, record.subject)
        mutated.add(key)
        if record.asserted:
            asserted.add(key)
    return {UnverifiedOutcome(test, subject) for test, subject in mutated - asserted}


def find_coupled_branches(
    dataset: CoverageDataset,
    inventories: Iterable[UnitInventory],
) -> list[CoupledBranchAdvisory]:
    """Group covered branches of one unit that share an outcome signature.

    The signature is (contexts that reached the branch, total hits). Only
    branches with context labels take part; without them every covered branch
    would look alike.
    """
    advisories: list[CoupledBranchAdvisory] = []
    for inventory in sorted(inventories, key=lambda inv: inv.unit):
        groups: dict[tuple[frozenset[str], int], list[BranchUnit]] = defaultdict(list)
        for unit in inventory.units:
            if not isinstance(unit, BranchUnit):
                continue
            hits = dataset.hit_count(unit)
            contexts = dataset.contexts_of(unit)
            if hits > 0 and contexts:
                groups[(contexts, hits)].append(unit)

        for (contexts, hits), branches in groups.items():
            if len({branch.site for branch in branches}) < 2:
                continue
            advisories.append(
                CoupledBranchAdvisory(inventory.unit, tuple(branches), contexts, hits)
            )

    advisories.sort(key=lambda a: (a.unit, a.branches[0].sort_key))
    return advisories


class OutcomeAuditor:
    """Runs both audit passes; a disabled auditor reports nothing."""

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled

    def audit(
        self,
        records: Iterable[OutcomeRecord] = (),
        dataset: CoverageDataset | None = None,
        inventories: Iterable[UnitInventory] = (),
    ) -> AuditResult:
        if not self.enabled:
            return AuditResult()

        unverified = tuple(sorted(audit_outcomes(records)))
        advisories: tuple[CoupledBranchAdvisory, ...] = ()
        if dataset is not None:
            advisories = tuple(find_coupled_branches(dataset, inventories))

        logger.info(
            "outcome_audit_complete",
            unverified=len(unverified),
            advisories=len(advisories),
        )
        for outcome in unverified:
            logger.warning("unverified_outcome", test=outcome.test, subject=outcome.subject)
        return AuditResult(unverified, advisories)


# -- outcome record files -----------------------------------------------------


class OutcomeRecordDocument(BaseModel):
    """Wire form of one OutcomeRecord (one JSON object per line)."""

    model_config = ConfigDict(extra="forbid")

    test: str
    subject: str
    kind: OutcomeKind
    asserted: bool = False

    def to_record(self) -> OutcomeRecord:
        return OutcomeRecord(self.test, self.subject, self.kind, self.asserted)


def read_outcome_records(path: Path) -> Iterator[OutcomeRecord]:
    """Read a JSON-lines outcome file written by a test harness.

    Raises:
        ValueError: A line is not valid JSON or not a valid record.
    """
    with path.open(encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError as e:
                raise ValueError(f"{path}:{lineno}: invalid JSON: {e}") from e
            try:
                yield OutcomeRecordDocument.model_validate(data).to_record()
            except ValueError as e:
                raise ValueError(f"{path}:{lineno}: invalid outcome record: {e}") from e
