"""Counter map: CountableUnit <-> dense counter index.

The instrumented program only knows integer indices; the map is what turns
them back into lines and branches. Indices are assigned in source order so
an unchanged model always yields the same map. When a previous map for the
same unit is supplied, surviving units keep their old index wherever that
index is still inside the new (dense) range.

Serialized form (JSON)::

    {
        "version": 1,
        "unit": "pkg/mod.py",
        "content_hash": "<sha256>",
        "fingerprint": "<16 hex>",
        "entries": [
            {"index": 0, "kind": "line", "line": 1},
            {"index": 1, "kind": "branch", "line": 3, "site": "if@3:0-3:9", "label": "true"},
            ...
        ]
    }
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from functools import cached_property
from typing import Any, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from covreach.core.errors import CounterDesyncError
from covreach.source.models import BranchUnit, CountableUnit, LineUnit, StructuralModel

MAP_FORMAT_VERSION = 1


class CounterEntryDocument(BaseModel):
    """One serialized counter slot."""

    model_config = ConfigDict(extra="forbid")

    index: int = Field(ge=0)
    kind: Literal["line", "branch"]
    line: int = Field(ge=1)
    site: str | None = None
    label: str | None = None

    @model_validator(mode="after")
    def check_branch_fields(self) -> Self:
        if self.kind == "branch" and (self.site is None or self.label is None):
            raise ValueError(f"branch entry {self.index} needs both site and label")
        return self


class CounterMapDocument(BaseModel):
    """Wire form of a CounterMap."""

    model_config = ConfigDict(extra="forbid")

    version: Literal[1] = MAP_FORMAT_VERSION
    unit: str
    content_hash: str
    fingerprint: str
    entries: list[CounterEntryDocument]

    @model_validator(mode="after")
    def check_dense(self) -> Self:
        indices = sorted(entry.index for entry in self.entries)
        if indices != list(range(len(indices))):
            raise ValueError("counter indices must be unique and dense from 0")
        return self


@dataclass(frozen=True)
class CounterMap:
    """Injective, dense mapping from CountableUnit to counter index.

    ``entries[i]`` is the unit counted by slot ``i``.
    """

    unit: str
    content_hash: str
    entries: tuple[CountableUnit, ...]

    def __post_init__(self) -> None:
        if len(set(self.entries)) != len(self.entries):
            raise ValueError(f"Counter map for {self.unit} assigns one unit to two slots")
        foreign = [entry for entry in self.entries if entry.unit != self.unit]
        if foreign:
            raise ValueError(f"Counter map for {self.unit} contains {foreign[0].key}")

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def units(self) -> tuple[CountableUnit, ...]:
        """Every countable unit of the mapped model, in source order."""
        return tuple(sorted(self.entries, key=lambda u: u.sort_key))

    @cached_property
    def _index(self) -> dict[CountableUnit, int]:
        return {entry: i for i, entry in enumerate(self.entries)}

    @cached_property
    def fingerprint(self) -> str:
        """Stable digest of the layout; identical layouts share a fingerprint."""
        payload = json.dumps(
            [self.unit, [_entry_key(entry) for entry in self.entries]],
            separators=(",", ":"),
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]

    def index_of(self, unit: CountableUnit) -> int:
        return self._index[unit]

    def unit_at(self, index: int, *, phase: str = "merge") -> CountableUnit:
        if not 0 <= index < len(self.entries):
            raise CounterDesyncError.out_of_range(self.unit, index, len(self.entries), phase)
        return self.entries[index]

    @classmethod
    def build(cls, model: StructuralModel, previous: CounterMap | None = None) -> CounterMap:
        """Assign indices for a model, reusing ``previous`` indices where possible."""
        units = model.units
        if previous is None or previous.unit != model.unit:
            return cls(model.unit, model.source.content_hash, units)

        slots: list[CountableUnit | None] = [None] * len(units)
        placed: set[CountableUnit] = set()
        for unit in units:
            old = previous._index.get(unit)
            if old is not None and old < len(slots) and slots[old] is None:
                slots[old] = unit
                placed.add(unit)

        free = (i for i, slot in enumerate(slots) if slot is None)
        for unit in units:
            if unit not in placed:
                slots[next(free)] = unit

        return cls(model.unit, model.source.content_hash, tuple(s for s in slots if s is not None))

    # -- serialization ------------------------------------------------------

    def to_document(self) -> CounterMapDocument:
        entries = []
        for i, entry in enumerate(self.entries):
            if isinstance(entry, LineUnit):
                entries.append(CounterEntryDocument(index=i, kind="line", line=entry.line))
            else:
                entries.append(
                    CounterEntryDocument(
                        index=i, kind="branch", line=entry.line, site=entry.site, label=entry.label
                    )
                )
        return CounterMapDocument(
            unit=self.unit,
            content_hash=self.content_hash,
            fingerprint=self.fingerprint,
            entries=entries,
        )

    def to_dict(self) -> dict[str, Any]:
        return self.to_document().model_dump(exclude_none=True)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, sort_keys=True)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CounterMap:
        """Rebuild a map from its serialized form.

        Raises:
            pydantic.ValidationError: The document is malformed.
            ValueError: The stored fingerprint does not match the entries.
        """
        doc = CounterMapDocument.model_validate(data)
        entries: list[CountableUnit] = []
        for entry in sorted(doc.entries, key=lambda e: e.index):
            if entry.kind == "line":
                entries.append(LineUnit(doc.unit, entry.line))
            else:
                entries.append(
                    BranchUnit(doc.unit, entry.site or "", entry.label or "", entry.line)
                )
        counter_map = cls(doc.unit, doc.content_hash, tuple(entries))
        if counter_map.fingerprint != doc.fingerprint:
            raise ValueError(
                f"Counter map for {doc.unit} is corrupt: fingerprint {doc.fingerprint} "
                f"does not match entries ({counter_map.fingerprint})"
            )
        return counter_map

    @classmethod
    def from_json(cls, text: str) -> CounterMap:
        return cls.from_dict(json.loads(text))


def _entry_key(entry: CountableUnit) -> list[Any]:
    if isinstance(entry, LineUnit):
        return ["line", entry.line]
    return ["branch", entry.line, entry.site, entry.label]
