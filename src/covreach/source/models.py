"""Structural model of one source unit.

Everything here is a value type: equality is structural, so the same line or
branch discovered by two independent builds (or two processes) compares
equal and hashes the same. Merges and counter-map stability checks rely on
this instead of object identity.
"""

from __future__ import annotations

import hashlib
import io
import tokenize
from dataclasses import dataclass, field
from functools import cached_property
from pathlib import Path

from covreach.core.errors import MalformedSourceError

# Label order inside a decision site; case labels sort numerically after these.
_LABEL_ORDER = {"true": 0, "false": 1, "no-match": 10_000}


def label_rank(label: str) -> int:
    if label.startswith("case-"):
        return 100 + int(label[5:])
    return _LABEL_ORDER.get(label, 50_000)


@dataclass(frozen=True)
class SourceUnit:
    """A named, immutable piece of executable source text."""

    name: str
    text: str

    @cached_property
    def content_hash(self) -> str:
        return hashlib.sha256(self.text.encode("utf-8")).hexdigest()

    @classmethod
    def from_path(cls, path: Path, name: str | None = None) -> SourceUnit:
        """Read a unit from disk. The name defaults to the path as given.

        The encoding is detected the way the interpreter does it: a UTF-8 BOM
        (dropped from the text) or a coding declaration, else UTF-8.
        """
        try:
            raw = path.read_bytes()
        except OSError as e:
            raise MalformedSourceError.unreadable(str(path), str(e)) from e
        try:
            encoding, _ = tokenize.detect_encoding(io.BytesIO(raw).readline)
            text = raw.decode(encoding)
        except (SyntaxError, UnicodeDecodeError) as e:
            raise MalformedSourceError.unreadable(str(path), str(e)) from e
        return cls(name=name or path.as_posix(), text=text)


@dataclass(frozen=True, slots=True)
class LineUnit:
    """One executable line."""

    unit: str
    line: int

    @property
    def kind(self) -> str:
        return "line"

    @property
    def key(self) -> str:
        return f"{self.unit}:{self.line}"

    @property
    def sort_key(self) -> tuple[str, int, int, int, str, int]:
        return (self.unit, self.line, 0, 0, "", 0)


@dataclass(frozen=True, slots=True)
class BranchUnit:
    """One outcome of a decision site."""

    unit: str
    site: str
    label: str
    line: int

    @property
    def kind(self) -> str:
        return "branch"

    @property
    def key(self) -> str:
        return f"{self.unit}:{self.site}:{self.label}"

    @property
    def sort_key(self) -> tuple[str, int, int, int, str, int]:
        return (self.unit, self.line, 1, _site_column(self.site), self.site, label_rank(self.label))


CountableUnit = LineUnit | BranchUnit


def _site_column(site_id: str) -> int:
    # site ids look like "if@12:4-15:0"
    return int(site_id.split("@", 1)[1].split("-", 1)[0].split(":", 1)[1])


def site_id_for(kind: str, line: int, column: int, end_line: int, end_column: int) -> str:
    return f"{kind}@{line}:{column}-{end_line}:{end_column}"


@dataclass(frozen=True, slots=True)
class DecisionSite:
    """A control-flow point with mutually exclusive, exhaustive outcomes."""

    unit: str
    kind: str
    line: int
    column: int
    end_line: int
    end_column: int
    labels: tuple[str, ...]

    def __post_init__(self) -> None:
        if len(self.labels) < 2:
            raise ValueError(f"Decision site {self.site_id} needs at least two labels")

    @property
    def site_id(self) -> str:
        return site_id_for(self.kind, self.line, self.column, self.end_line, self.end_column)

    @property
    def span(self) -> tuple[int, int, int, int]:
        return (self.line, self.column, self.end_line, self.end_column)

    @property
    def branches(self) -> tuple[BranchUnit, ...]:
        return tuple(BranchUnit(self.unit, self.site_id, label, self.line) for label in self.labels)


@dataclass(frozen=True, slots=True, order=True)
class StatementRef:
    """Identifies one statement by where it starts."""

    line: int
    column: int
    kind: str


@dataclass(frozen=True)
class StructuralModel:
    """All countable units of one SourceUnit.

    ``statements`` maps every statement to the units it contributes.
    Docstrings, declarations and unreachable statements map to an empty
    tuple; the unreachable ones are also listed in ``unreachable``.
    """

    source: SourceUnit
    lines: tuple[LineUnit, ...]
    sites: tuple[DecisionSite, ...]
    statements: dict[StatementRef, tuple[CountableUnit, ...]] = field(hash=False)
    unreachable: tuple[StatementRef, ...] = ()

    @property
    def unit(self) -> str:
        return self.source.name

    @cached_property
    def branches(self) -> tuple[BranchUnit, ...]:
        return tuple(branch for site in self.sites for branch in site.branches)

    @cached_property
    def units(self) -> tuple[CountableUnit, ...]:
        """Every countable unit in source order."""
        all_units: list[CountableUnit] = [*self.lines, *self.branches]
        return tuple(sorted(all_units, key=lambda u: u.sort_key))

    @cached_property
    def _sites_by_id(self) -> dict[str, DecisionSite]:
        return {site.site_id: site for site in self.sites}

    def site(self, site_id: str) -> DecisionSite | None:
        return self._sites_by_id.get(site_id)

    def site_for_span(self, kind: str, span: tuple[int, int, int, int]) -> DecisionSite | None:
        return self._sites_by_id.get(site_id_for(kind, *span))
