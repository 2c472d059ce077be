"""Snapshot exchange format.

Snapshots travel as JSON lines, one snapshot per line, so a long-running
program can append partial snapshots (deltas) as it flushes:

    {"unit": "calc.py", "map_fingerprint": "9f2c...", "context": "test_add",
     "counts": {"0": 1, "4": 2}}
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, NonNegativeInt

from covreach.runtime.tracker import ExecutionSnapshot


class SnapshotDocument(BaseModel):
    """Wire form of an ExecutionSnapshot."""

    model_config = ConfigDict(extra="forbid")

    unit: str
    map_fingerprint: str
    context: str | None = None
    counts: dict[NonNegativeInt, NonNegativeInt]


def snapshot_to_dict(snapshot: ExecutionSnapshot) -> dict[str, Any]:
    return {
        "unit": snapshot.unit,
        "map_fingerprint": snapshot.map_fingerprint,
        "context": snapshot.context,
        "counts": {str(index): hits for index, hits in sorted(snapshot.counts.items())},
    }


def snapshot_from_dict(data: dict[str, Any]) -> ExecutionSnapshot:
    """Validate and rebuild a snapshot.

    Raises:
        pydantic.ValidationError: Malformed document or negative values.
    """
    doc = SnapshotDocument.model_validate(data)
    return ExecutionSnapshot(doc.unit, doc.map_fingerprint, dict(doc.counts), doc.context)


def write_snapshots(
    path: Path, snapshots: Iterable[ExecutionSnapshot], *, append: bool = True
) -> int:
    """Write snapshots as JSON lines. Returns the number written."""
    path.parent.mkdir(parents=True, exist_ok=True)
    written = 0
    with path.open("a" if append else "w") as f:
        for snapshot in snapshots:
            f.write(json.dumps(snapshot_to_dict(snapshot), sort_keys=True))
            f.write("\n")
            written += 1
    return written


def read_snapshots(path: Path) -> Iterator[ExecutionSnapshot]:
    """Yield snapshots from a JSON-lines file, skipping blank lines.

    Raises:
        ValueError: A line is not valid JSON (message names the line).
        pydantic.ValidationError: A line is not a valid snapshot.
    """
    with path.open() as f:
        for number, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError as e:
                raise ValueError(f"{path}:{number}: invalid JSON: {e.msg}") from e
            yield snapshot_from_dict(data)
