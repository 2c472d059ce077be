"""End-to-end coverage scenarios: source -> instrument -> run -> merge -> report."""

from __future__ import annotations

import textwrap
from collections.abc import Callable
from typing import Any

import pytest

from covreach.coverage import (
    Aggregator,
    OutcomeAuditor,
    OutcomeKind,
    OutcomeRecord,
    UnverifiedOutcome,
    build_report,
)
from covreach.instrument import CounterMap, InstrumentedArtifact, instrument
from covreach.runtime import ExecutionRun, ExecutionSnapshot
from covreach.source import SourceUnit, build


def _instrument(name: str, text: str) -> tuple[InstrumentedArtifact, CounterMap]:
    return instrument(build(SourceUnit(name, textwrap.dedent(text).lstrip("\n"))))


def _run(
    artifact: InstrumentedArtifact, exercise: Callable[[Any], object], context: str | None = None
) -> list[ExecutionSnapshot]:
    with ExecutionRun() as run:
        exercise(run.load_module(artifact, "subject"))
        return run.snapshots(context)


def test_one_of_two_branches_is_half_branch_coverage() -> None:
    artifact, counter_map = _instrument(
        "switch.py",
        """
        def check(flag):
            if flag:
                return "on"
            return "off"
        """,
    )
    aggregator = Aggregator([counter_map])
    aggregator.merge_all(_run(artifact, lambda m: m.check(True)))

    report = build_report(aggregator.release(), [counter_map])

    assert report.branch_coverage == 0.5
    assert report.unit("switch.py").partial_sites == ("if@2:4-2:11",)  # type: ignore[union-attr]


def test_one_of_five_lines_is_twenty_percent() -> None:
    artifact, counter_map = _instrument(
        "lines.py",
        """
        def never_called():
            a = 1
            b = 2
            c = a + b
            return c
        """,
    )
    aggregator = Aggregator([counter_map])
    aggregator.merge_all(_run(artifact, lambda m: None))

    report = build_report(aggregator.release(), [counter_map])

    assert report.lines_found == 5
    assert report.line_coverage == 0.2
    assert not report.branch_applicable


def test_full_coverage_still_flags_unasserted_mutation() -> None:
    artifact, counter_map = _instrument(
        "cart.py",
        """
        def add_item(cart, price):
            if price > 0:
                cart.append(price)
            else:
                cart.append(0)
            return len(cart)
        """,
    )

    def exercise(module: Any) -> None:
        cart: list[int] = []
        assert module.add_item(cart, 5) == 1
        assert module.add_item(cart, -1) == 2

    aggregator = Aggregator([counter_map])
    aggregator.merge_all(_run(artifact, exercise, context="test_add_item"))
    dataset = aggregator.release()
    records = [
        OutcomeRecord(
            "test_add_item", "cart.py:add_item:return", OutcomeKind.EXPLICIT_RETURN, True
        ),
        OutcomeRecord("test_add_item", "cart", OutcomeKind.OBSERVABLE_MUTATION, False),
    ]

    audit = OutcomeAuditor().audit(records, dataset, [counter_map])
    report = build_report(dataset, [counter_map], audit=audit)

    assert report.line_coverage == 1.0
    assert report.branch_coverage == 1.0
    assert report.audit.unverified == (UnverifiedOutcome("test_add_item", "cart"),)


def test_merge_order_does_not_change_dataset() -> None:
    artifact, counter_map = _instrument(
        "calc.py",
        """
        def sign(n):
            return "neg" if n < 0 else "pos" if n else "zero"
        """,
    )
    first = _run(artifact, lambda m: m.sign(-3), context="test_negative")
    second = _run(artifact, lambda m: [m.sign(n) for n in (0, 4, 5)], context="test_rest")

    forward = Aggregator([counter_map])
    forward.merge_all([*first, *second])
    backward = Aggregator([counter_map])
    backward.merge_all([*second, *first])

    assert forward.release().to_json() == backward.release().to_json()


@pytest.mark.parametrize("calls", [0, 1, 3])
def test_every_unit_reported_and_ratios_bounded(calls: int) -> None:
    artifact, counter_map = _instrument(
        "loop.py",
        """
        def total(items):
            result = 0
            for item in items:
                result += item if item > 0 else 0
            return result
        """,
    )
    aggregator = Aggregator([counter_map])
    aggregator.merge_all(
        _run(artifact, lambda m: [m.total(range(-1, n)) for n in range(calls)])
    )

    dataset = aggregator.release()
    report = build_report(dataset, [counter_map])

    assert set(dataset.hits) == set(counter_map.entries)
    assert 0.0 <= report.line_coverage <= 1.0
    assert 0.0 <= report.branch_coverage <= 1.0
    assert len(report.zero_hit) == sum(1 for hits in dataset.hits.values() if hits == 0)
