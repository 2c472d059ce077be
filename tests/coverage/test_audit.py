"""Tests for the outcome auditor."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from covreach.coverage import (
    CoverageDataset,
    OutcomeAuditor,
    OutcomeKind,
    OutcomeRecord,
    UnverifiedOutcome,
    audit_outcomes,
    find_coupled_branches,
    read_outcome_records,
)
from covreach.source import BranchUnit, SourceUnit, StructuralModel, build

MUTATION = OutcomeKind.OBSERVABLE_MUTATION
RETURN = OutcomeKind.EXPLICIT_RETURN

TWO_IFS = "def f(a, b):\n    if a:\n        x = 1\n    if b:\n        x = 2\n"
FIRST = "if@2:4-2:8"
SECOND = "if@4:4-4:8"


class TestAuditOutcomes:
    """Mutations need an assertion in the same test."""

    def test_unasserted_mutation_warns(self) -> None:
        records = [OutcomeRecord("test_checkout", "cart.total", MUTATION, asserted=False)]

        assert audit_outcomes(records) == {UnverifiedOutcome("test_checkout", "cart.total")}

    def test_asserted_mutation_is_verified(self) -> None:
        records = [
            OutcomeRecord("test_checkout", "cart.total", MUTATION, asserted=False),
            OutcomeRecord("test_checkout", "cart.total", MUTATION, asserted=True),
        ]

        assert audit_outcomes(records) == set()

    def test_assertion_in_other_test_does_not_count(self) -> None:
        records = [
            OutcomeRecord("test_a", "cart.total", MUTATION, asserted=False),
            OutcomeRecord("test_b", "cart.total", MUTATION, asserted=True),
        ]

        assert audit_outcomes(records) == {UnverifiedOutcome("test_a", "cart.total")}

    def test_asserted_return_does_not_verify_mutation(self) -> None:
        records = [
            OutcomeRecord("test_a", "cart.total", MUTATION, asserted=False),
            OutcomeRecord("test_a", "cart.total", RETURN, asserted=True),
        ]

        assert len(audit_outcomes(records)) == 1

    def test_returns_alone_never_warn(self) -> None:
        records = [OutcomeRecord("test_a", "f:return", RETURN, asserted=False)]

        assert audit_outcomes(records) == set()

    def test_message(self) -> None:
        outcome = UnverifiedOutcome("test_a", "cart.total")

        assert outcome.message == "cart.total is mutated in test_a but no assertion checks it"
        assert outcome.to_dict()["message"] == outcome.message


class TestCoupledBranches:
    """Branches reached by the same tests the same number of times."""

    @pytest.fixture
    def model(self) -> StructuralModel:
        return build(SourceUnit("f.py", TWO_IFS))

    @staticmethod
    def _branch(site: str, label: str) -> BranchUnit:
        return BranchUnit("f.py", site, label, int(site.split("@")[1].split(":")[0]))

    def _hit(
        self, dataset: CoverageDataset, site: str, label: str, hits: int, *contexts: str
    ) -> None:
        branch = self._branch(site, label)
        dataset.hits[branch] = hits
        dataset.contexts[branch] = frozenset(contexts)

    def test_identical_signatures_across_sites(self, model: StructuralModel) -> None:
        dataset = CoverageDataset.seed([model])
        self._hit(dataset, FIRST, "true", 1, "test_one")
        self._hit(dataset, SECOND, "true", 1, "test_one")

        (advisory,) = find_coupled_branches(dataset, [model])

        assert advisory.unit == "f.py"
        assert advisory.branches == (self._branch(FIRST, "true"), self._branch(SECOND, "true"))
        assert advisory.contexts == {"test_one"}
        assert advisory.to_dict()["branches"] == [
            "f.py:if@2:4-2:8:true",
            "f.py:if@4:4-4:8:true",
        ]

    def test_different_hits_not_coupled(self, model: StructuralModel) -> None:
        dataset = CoverageDataset.seed([model])
        self._hit(dataset, FIRST, "true", 1, "test_one")
        self._hit(dataset, SECOND, "true", 2, "test_one")

        assert find_coupled_branches(dataset, [model]) == []

    def test_arms_of_one_site_not_coupled(self, model: StructuralModel) -> None:
        dataset = CoverageDataset.seed([model])
        self._hit(dataset, FIRST, "true", 1, "test_one")
        self._hit(dataset, FIRST, "false", 1, "test_one")

        assert find_coupled_branches(dataset, [model]) == []

    def test_branches_without_contexts_ignored(self, model: StructuralModel) -> None:
        dataset = CoverageDataset.seed([model])
        self._hit(dataset, FIRST, "true", 1)
        self._hit(dataset, SECOND, "true", 1)

        assert find_coupled_branches(dataset, [model]) == []


class TestOutcomeAuditor:
    RECORDS = (
        OutcomeRecord("test_b", "order.state", MUTATION, asserted=False),
        OutcomeRecord("test_a", "cart.total", MUTATION, asserted=False),
    )

    def test_sorted_unverified(self) -> None:
        result = OutcomeAuditor().audit(self.RECORDS)

        assert [o.test for o in result.unverified] == ["test_a", "test_b"]
        assert result.advisories == ()

    def test_disabled_reports_nothing(self) -> None:
        result = OutcomeAuditor(enabled=False).audit(self.RECORDS)

        assert result.unverified == ()
        assert result.to_dict() == {"unverified_outcomes": [], "advisories": []}


class TestReadOutcomeRecords:
    def test_reads_jsonl(self, tmp_path: Path) -> None:
        path = tmp_path / "outcomes.jsonl"
        path.write_text(
            json.dumps({"test": "t", "subject": "s", "kind": "observable_mutation"})
            + "\n\n"
            + json.dumps({"test": "t", "subject": "s", "kind": "explicit_return", "asserted": True})
            + "\n"
        )

        records = list(read_outcome_records(path))

        assert records == [
            OutcomeRecord("t", "s", MUTATION, asserted=False),
            OutcomeRecord("t", "s", RETURN, asserted=True),
        ]

    @pytest.mark.parametrize(
        "line",
        ["{broken", json.dumps({"test": "t", "subject": "s", "kind": "side_effect"})],
    )
    def test_invalid_line_names_location(self, tmp_path: Path, line: str) -> None:
        path = tmp_path / "outcomes.jsonl"
        path.write_text(line + "\n")

        with pytest.raises(ValueError, match="outcomes.jsonl:1"):
            list(read_outcome_records(path))
