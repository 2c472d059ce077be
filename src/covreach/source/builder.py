"""Source Model Builder: SourceUnit -> StructuralModel.

The Python front end walks the ``ast`` of a unit and records:

- one LineUnit per line on which a reachable, executable statement starts;
- one DecisionSite per control-flow decision of an enabled kind.

Decision kinds and their labels:

    if      if/elif statements             true, false
    while   while loops                    true (iteration), false (exhausted)
    for     for / async for loops          true (item taken), false (exhausted)
    match   match statements               case-0..case-n [, no-match]
    ifexp   conditional expressions        true, false
    boolop  short-circuiting and/or        true, false per operand that can
                                           short-circuit (all but the last)

``build`` is a pure function of the source text: identical text yields an
identical model. Units are only ever produced for code the builder was
given; control flow inside third-party code reached at runtime is invisible
to it, and no units are synthesised for it.
"""

from __future__ import annotations

import ast
from collections.abc import Iterable

import structlog

from covreach.config.models import ALL_BRANCH_KINDS
from covreach.core.errors import MalformedSourceError
from covreach.source.models import (
    CountableUnit,
    DecisionSite,
    LineUnit,
    SourceUnit,
    StatementRef,
    StructuralModel,
)

logger = structlog.get_logger()

# Fields that never hold executed code.
SKIPPED_FIELDS = frozenset({"annotation", "returns", "type_params", "type_comment"})

_TERMINATORS = (ast.Return, ast.Raise, ast.Continue, ast.Break)
_SCOPES_WITH_DOCSTRINGS = (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)

Span = tuple[int, int, int, int]


def node_span(node: ast.AST) -> Span:
    line: int = node.lineno  # type: ignore[attr-defined]
    column: int = node.col_offset  # type: ignore[attr-defined]
    end_line = getattr(node, "end_lineno", None) or line
    end_column = getattr(node, "end_col_offset", None)
    return (line, column, end_line, column if end_column is None else end_column)


def header_span(stmt: ast.stmt) -> Span:
    """Span of a compound statement's header, from its keyword to its controlling expression.

    Editing the body of a statement does not move its header span, which keeps
    site ids stable across such edits.
    """
    match stmt:
        case ast.If(test=expr) | ast.While(test=expr):
            pass
        case ast.For(iter=expr) | ast.AsyncFor(iter=expr):
            pass
        case ast.Match(subject=expr):
            pass
        case _:
            return node_span(stmt)
    end = node_span(expr)
    return (stmt.lineno, stmt.col_offset, end[2], end[3])


def statement_ref(stmt: ast.stmt) -> StatementRef:
    return StatementRef(stmt.lineno, stmt.col_offset, type(stmt).__name__)


def is_docstring(stmt: ast.stmt) -> bool:
    return (
        isinstance(stmt, ast.Expr)
        and isinstance(stmt.value, ast.Constant)
        and isinstance(stmt.value.value, str)
    )


def is_declaration(stmt: ast.stmt) -> bool:
    """Statements that direct the compiler rather than execute."""
    if isinstance(stmt, (ast.Global, ast.Nonlocal)):
        return True
    return isinstance(stmt, ast.ImportFrom) and stmt.module == "__future__"


def is_irrefutable(pattern: ast.pattern) -> bool:
    match pattern:
        case ast.MatchAs(pattern=None):
            return True
        case ast.MatchAs(pattern=inner) if inner is not None:
            return is_irrefutable(inner)
        case ast.MatchOr(patterns=alternatives):
            return any(is_irrefutable(p) for p in alternatives)
    return False


def match_labels(stmt: ast.Match) -> tuple[str, ...]:
    labels = [f"case-{i}" for i in range(len(stmt.cases))]
    if not any(case.guard is None and is_irrefutable(case.pattern) for case in stmt.cases):
        labels.append("no-match")
    return tuple(labels)


def parse_unit(source: SourceUnit) -> ast.Module:
    """Parse a unit, mapping parser failures to MalformedSourceError."""
    try:
        return ast.parse(source.text, filename=source.name, mode="exec")
    except SyntaxError as e:
        raise MalformedSourceError.syntax_error(source.name, e.msg, e.lineno) from e
    except (ValueError, RecursionError) as e:
        raise MalformedSourceError.syntax_error(source.name, str(e) or type(e).__name__) from e


class _ModelBuilder:
    def __init__(self, source: SourceUnit, branch_kinds: frozenset[str]) -> None:
        self._source = source
        self._unit = source.name
        self._kinds = branch_kinds
        self._lines: dict[int, LineUnit] = {}
        self._sites: list[DecisionSite] = []
        self._statements: dict[StatementRef, list[CountableUnit]] = {}
        self._unreachable: list[StatementRef] = []
        self._current: StatementRef | None = None

    def build(self, tree: ast.Module) -> StructuralModel:
        self._block(tree.body, allows_docstring=True)
        sites = sorted(self._sites, key=lambda s: (s.span, s.kind))
        return StructuralModel(
            source=self._source,
            lines=tuple(self._lines[line] for line in sorted(self._lines)),
            sites=tuple(sites),
            statements={ref: tuple(units) for ref, units in self._statements.items()},
            unreachable=tuple(sorted(self._unreachable)),
        )

    # -- statements ---------------------------------------------------------

    def _block(self, stmts: list[ast.stmt], *, allows_docstring: bool = False) -> None:
        reachable = True
        for position, stmt in enumerate(stmts):
            if not reachable:
                self._mark_unreachable(stmt)
                continue
            silent = (allows_docstring and position == 0 and is_docstring(stmt)) or is_declaration(
                stmt
            )
            self._statement(stmt, silent=silent)
            if isinstance(stmt, _TERMINATORS):
                reachable = False

    def _mark_unreachable(self, stmt: ast.stmt) -> None:
        for node in ast.walk(stmt):
            if isinstance(node, ast.stmt):
                ref = statement_ref(node)
                self._statements[ref] = []
                self._unreachable.append(ref)

    def _statement(self, stmt: ast.stmt, *, silent: bool) -> None:
        ref = statement_ref(stmt)
        units: list[CountableUnit] = []
        if not silent and stmt.lineno not in self._lines:
            line_unit = LineUnit(self._unit, stmt.lineno)
            self._lines[stmt.lineno] = line_unit
            units.append(line_unit)
        self._statements[ref] = units

        outer, self._current = self._current, ref
        try:
            self._statement_site(stmt)
            self._fields(stmt, docstring_scope=isinstance(stmt, _SCOPES_WITH_DOCSTRINGS))
        finally:
            self._current = outer

    def _statement_site(self, stmt: ast.stmt) -> None:
        match stmt:
            case ast.If():
                self._add_site("if", header_span(stmt), ("true", "false"))
            case ast.While():
                self._add_site("while", header_span(stmt), ("true", "false"))
            case ast.For() | ast.AsyncFor():
                self._add_site("for", header_span(stmt), ("true", "false"))
            case ast.Match():
                labels = match_labels(stmt)
                if len(labels) >= 2:
                    self._add_site("match", header_span(stmt), labels)

    def _fields(self, node: ast.AST, *, docstring_scope: bool = False) -> None:
        for name, value in ast.iter_fields(node):
            if name in SKIPPED_FIELDS:
                continue
            if isinstance(value, list):
                if value and isinstance(value[0], ast.stmt):
                    self._block(value, allows_docstring=docstring_scope and name == "body")
                else:
                    self._children(value)
            elif isinstance(value, ast.AST):
                self._child(value)

    def _children(self, nodes: Iterable[object]) -> None:
        for node in nodes:
            if isinstance(node, ast.AST):
                self._child(node)

    # -- expressions --------------------------------------------------------

    def _child(self, node: ast.AST) -> None:
        match node:
            case ast.arguments():
                self._children(node.defaults)
                self._children(node.kw_defaults)
                return
            case ast.IfExp():
                self._add_site("ifexp", node_span(node), ("true", "false"))
            case ast.BoolOp():
                for operand in node.values[:-1]:
                    self._add_site("boolop", node_span(operand), ("true", "false"))
        self._fields(node)

    def _add_site(self, kind: str, span: Span, labels: tuple[str, ...]) -> None:
        if kind not in self._kinds:
            return
        site = DecisionSite(self._unit, kind, *span, labels=labels)
        self._sites.append(site)
        if self._current is not None:
            self._statements[self._current].extend(site.branches)
        logger.debug("decision_site_found", unit=self._unit, site=site.site_id)


def build(
    source: SourceUnit,
    branch_kinds: Iterable[str] | None = None,
) -> StructuralModel:
    """Build the structural model of one unit.

    Args:
        source: The unit to model.
        branch_kinds: Decision kinds to count. Defaults to every kind.

    Returns:
        The unit's StructuralModel.

    Raises:
        MalformedSourceError: The unit cannot be parsed.
    """
    kinds = frozenset(ALL_BRANCH_KINDS if branch_kinds is None else branch_kinds)
    tree = parse_unit(source)
    model = _ModelBuilder(source, kinds).build(tree)
    logger.info(
        "source_model_built",
        unit=source.name,
        lines=len(model.lines),
        sites=len(model.sites),
        branches=len(model.branches),
    )
    return model
