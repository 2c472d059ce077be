"""Instrumentor: StructuralModel -> (InstrumentedArtifact, CounterMap).

Counter increments are injected as calls to hooks that an ExecutionRun binds
into the module namespace:

    __covreach_hit__(i)            count slot i
    __covreach_test__(v, t, f)     truth-test v once, count t or f, park v,
                                   return the plain bool
    __covreach_take__()            unpark and return the parked value
    __covreach_drop__()            unpark and discard
    __covreach_truth__(v, t, f)    truth-test v once, count t or f, return the bool

Placement:

- Line: a ``hit`` statement right before the first statement of the line.
- if/while/for: ``hit`` first in the body (true) and first in the ``else``
  block (false), creating the ``else`` when absent. A loop ``else`` runs
  exactly when the loop ends without ``break``.
- match: ``hit`` first in each case body; ``no-match`` becomes an appended
  ``case _:`` that only counts.
- ifexp: ``a if c else b`` -> ``(hit(t), a)[1] if c else (hit(f), b)[1]``.
- boolop: ``a and rest`` -> ``(drop(), rest)[1] if test(a, t, f) else take()``
  and ``a or rest`` -> ``take() if test(a, t, f) else (drop(), rest)[1]``.
  Each operand is still truth-tested exactly once and the parked value is
  released on both arms. Where the result is only ever truth-tested (the
  test of if, while, assert, a conditional expression or a comprehension
  filter) the operand becomes ``truth(a, t, f)`` instead and nothing is
  parked.

The rewritten tree keeps the original line numbers, so tracebacks from an
instrumented module point at the original source.
"""

from __future__ import annotations

import ast
from dataclasses import dataclass, field
from functools import cached_property
from types import CodeType
from typing import TYPE_CHECKING, Any

import structlog

from covreach.core.errors import InstrumentationError
from covreach.instrument.counter_map import CounterMap
from covreach.source.builder import (
    SKIPPED_FIELDS,
    header_span,
    node_span,
    parse_unit,
    statement_ref,
)
from covreach.source.models import (
    CountableUnit,
    DecisionSite,
    LineUnit,
    SourceUnit,
    StructuralModel,
)

if TYPE_CHECKING:
    from covreach.runtime.tracker import ExecutionRun

logger = structlog.get_logger()

HIT = "__covreach_hit__"
TEST = "__covreach_test__"
TAKE = "__covreach_take__"
DROP = "__covreach_drop__"
TRUTH = "__covreach_truth__"

HOOK_NAMES = (HIT, TEST, TAKE, DROP, TRUTH)


@dataclass(frozen=True)
class InstrumentedArtifact:
    """Instrumented, compiled form of one SourceUnit."""

    source_unit: SourceUnit
    counter_map: CounterMap
    tree: ast.Module = field(compare=False, repr=False)
    code: CodeType = field(compare=False, repr=False)

    @property
    def unit(self) -> str:
        return self.source_unit.name

    @cached_property
    def source(self) -> str:
        """Instrumented source text. Line numbers differ from the original."""
        return ast.unparse(self.tree) + "\n"

    def execute(
        self, run: ExecutionRun, namespace: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Run this unit under ``run``; see ExecutionRun.execute."""
        return run.execute(self, namespace)


def _call(name: str, *args: ast.expr) -> ast.Call:
    return ast.Call(func=ast.Name(id=name, ctx=ast.Load()), args=list(args), keywords=[])


def _hit(index: int) -> ast.Call:
    return _call(HIT, ast.Constant(index))


def _hit_stmt(index: int, at: ast.AST) -> ast.stmt:
    return ast.copy_location(ast.Expr(_hit(index)), at)


def _then(first: ast.expr, value: ast.expr) -> ast.expr:
    """``(first, value)[1]``: evaluate first, then yield value."""
    return ast.Subscript(
        value=ast.Tuple(elts=[first, value], ctx=ast.Load()),
        slice=ast.Constant(1),
        ctx=ast.Load(),
    )


class _Rewriter(ast.NodeTransformer):
    """Inserts counters into one parsed unit, driven by its model."""

    def __init__(self, model: StructuralModel, counter_map: CounterMap) -> None:
        self._model = model
        self._map = counter_map
        self._seen_sites: set[str] = set()
        # ids of expressions whose value is only used for its truthiness
        self._truth_only: set[int] = set()

    @property
    def seen_sites(self) -> set[str]:
        return self._seen_sites

    def _index(self, unit: CountableUnit) -> int:
        return self._map.index_of(unit)

    def _site(self, kind: str, span: tuple[int, int, int, int]) -> DecisionSite | None:
        site = self._model.site_for_span(kind, span)
        if site is not None:
            self._seen_sites.add(site.site_id)
        return site

    def _branch_index(self, site: DecisionSite, label: str) -> int:
        return self._index(site.branches[site.labels.index(label)])

    def _mark_truth(self, node: ast.expr) -> None:
        self._truth_only.add(id(node))

    def _test(self, hook: str, value: ast.expr, site: DecisionSite) -> ast.Call:
        return _call(
            hook,
            value,
            ast.Constant(self._branch_index(site, "true")),
            ast.Constant(self._branch_index(site, "false")),
        )

    # -- statements ---------------------------------------------------------

    def rewrite_module(self, tree: ast.Module) -> ast.Module:
        tree.body = self._block(tree.body)
        return tree

    def _block(self, stmts: list[ast.stmt]) -> list[ast.stmt]:
        out: list[ast.stmt] = []
        for stmt in stmts:
            units = self._model.statements.get(statement_ref(stmt), ())
            for unit in units:
                if isinstance(unit, LineUnit):
                    out.append(_hit_stmt(self._index(unit), stmt))
            out.append(self._statement(stmt))
        return out

    def _statement(self, stmt: ast.stmt) -> ast.stmt:
        if isinstance(stmt, (ast.If, ast.While, ast.Assert)):
            self._mark_truth(stmt.test)
        for name, value in ast.iter_fields(stmt):
            if name in SKIPPED_FIELDS:
                continue
            if isinstance(value, list):
                if value and isinstance(value[0], ast.stmt):
                    setattr(stmt, name, self._block(value))
                else:
                    setattr(stmt, name, [self._child(v) for v in value])
            elif isinstance(value, ast.AST):
                setattr(stmt, name, self._child(value))

        match stmt:
            case ast.If():
                self._two_way(stmt, "if")
            case ast.While():
                self._two_way(stmt, "while")
            case ast.For() | ast.AsyncFor():
                self._two_way(stmt, "for")
            case ast.Match():
                self._match(stmt)
        return stmt

    def _two_way(self, stmt: ast.If | ast.While | ast.For | ast.AsyncFor, kind: str) -> None:
        site = self._site(kind, header_span(stmt))
        if site is None:
            return
        stmt.body.insert(0, _hit_stmt(self._branch_index(site, "true"), stmt.body[0]))
        anchor = stmt.orelse[0] if stmt.orelse else stmt
        stmt.orelse.insert(0, _hit_stmt(self._branch_index(site, "false"), anchor))

    def _match(self, stmt: ast.Match) -> None:
        site = self._site("match", header_span(stmt))
        if site is None:
            return
        for position, case in enumerate(stmt.cases):
            case.body.insert(
                0, _hit_stmt(self._branch_index(site, f"case-{position}"), case.body[0])
            )
        if "no-match" in site.labels:
            fallback = ast.match_case(
                pattern=ast.MatchAs(pattern=None, name=None),
                guard=None,
                body=[_hit_stmt(self._branch_index(site, "no-match"), stmt)],
            )
            ast.copy_location(fallback.pattern, stmt)
            stmt.cases.append(fallback)

    def _child(self, node: object) -> object:
        match node:
            case ast.arguments():
                node.defaults = [self.visit(d) for d in node.defaults]
                node.kw_defaults = [None if d is None else self.visit(d) for d in node.kw_defaults]
                return node
            case ast.ExceptHandler() | ast.match_case():
                self._statement(node)  # type: ignore[arg-type]
                return node
            case ast.AST():
                return self.visit(node)
        return node

    # -- expressions --------------------------------------------------------

    def visit_Lambda(self, node: ast.Lambda) -> ast.AST:
        node.args = self._child(node.args)  # type: ignore[assignment]
        node.body = self.visit(node.body)
        return node

    def visit_UnaryOp(self, node: ast.UnaryOp) -> ast.AST:
        if isinstance(node.op, ast.Not) and id(node) in self._truth_only:
            self._mark_truth(node.operand)
        self.generic_visit(node)
        return node

    def visit_comprehension(self, node: ast.comprehension) -> ast.AST:
        for condition in node.ifs:
            self._mark_truth(condition)
        self.generic_visit(node)
        return node

    def visit_IfExp(self, node: ast.IfExp) -> ast.AST:
        span = node_span(node)
        self._mark_truth(node.test)
        self.generic_visit(node)
        site = self._site("ifexp", span)
        if site is None:
            return node
        node.body = ast.copy_location(
            _then(_hit(self._branch_index(site, "true")), node.body), node.body
        )
        node.orelse = ast.copy_location(
            _then(_hit(self._branch_index(site, "false")), node.orelse), node.orelse
        )
        return node

    def visit_BoolOp(self, node: ast.BoolOp) -> ast.AST:
        spans = [node_span(value) for value in node.values]
        truth_only = id(node) in self._truth_only
        if truth_only:
            for value in node.values:
                self._mark_truth(value)
        self.generic_visit(node)
        sites = [self._site("boolop", span) for span in spans[:-1]]
        if not any(sites):
            return node

        if truth_only:
            node.values = [
                value if site is None else ast.copy_location(self._test(TRUTH, value, site), value)
                for value, site in zip(node.values[:-1], sites, strict=True)
            ] + [node.values[-1]]
            return node

        rest: ast.expr = node.values[-1]
        for value, site in reversed(list(zip(node.values[:-1], sites, strict=True))):
            if site is None:
                rest = ast.copy_location(ast.BoolOp(op=node.op, values=[value, rest]), value)
                continue
            test = self._test(TEST, value, site)
            carry_on = _then(_call(DROP), rest)
            take = _call(TAKE)
            if isinstance(node.op, ast.And):
                rest = ast.IfExp(test=test, body=carry_on, orelse=take)
            else:
                rest = ast.IfExp(test=test, body=take, orelse=carry_on)
            ast.copy_location(rest, value)
        return ast.copy_location(rest, node)


def _reserved_name(node: ast.AST) -> str | None:
    match node:
        case ast.Name(id=name) | ast.arg(arg=name):
            pass
        case ast.FunctionDef(name=name) | ast.AsyncFunctionDef(name=name) | ast.ClassDef(name=name):
            pass
        case ast.alias(name=imported, asname=alias):
            name = alias or imported
        case _:
            return None
    return name if name in HOOK_NAMES else None


def check_reserved_names(unit: str, tree: ast.Module) -> None:
    """Reject units that bind or read a hook name themselves."""
    for node in ast.walk(tree):
        name = _reserved_name(node)
        if name is not None:
            line = getattr(node, "lineno", 0)
            raise InstrumentationError.unsupported(unit, f"reserved name {name}", line)


def instrument(
    model: StructuralModel,
    previous: CounterMap | None = None,
) -> tuple[InstrumentedArtifact, CounterMap]:
    """Instrument one unit.

    Args:
        model: The unit's structural model.
        previous: Counter map from an earlier version of the same unit, used
            to keep indices stable where possible.

    Returns:
        The artifact and its counter map.

    Raises:
        InstrumentationError: The unit uses a hook name, the tree does not match
            the model, or the instrumented tree does not compile.
    """
    counter_map = CounterMap.build(model, previous)
    tree = parse_unit(model.source)
    check_reserved_names(model.unit, tree)

    rewriter = _Rewriter(model, counter_map)
    tree = ast.fix_missing_locations(rewriter.rewrite_module(tree))

    missing = sorted({site.site_id for site in model.sites} - rewriter.seen_sites)
    if missing:
        raise InstrumentationError.site_not_found(model.unit, missing[0])

    try:
        code = compile(tree, model.unit, "exec", dont_inherit=True)
    except (SyntaxError, ValueError, TypeError) as e:
        raise InstrumentationError.compile_failed(model.unit, str(e)) from e

    artifact = InstrumentedArtifact(
        source_unit=model.source,
        counter_map=counter_map,
        tree=tree,
        code=code,
    )
    logger.info(
        "unit_instrumented",
        unit=model.unit,
        counters=len(counter_map),
        fingerprint=counter_map.fingerprint,
    )
    return artifact, counter_map
