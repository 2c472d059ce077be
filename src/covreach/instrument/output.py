"""Instrumented output directory.

Layout under ``out_dir``::

    manifest.json              which units are instrumented, and which failed
    pkg/mod.py                 instrumented source of unit "pkg/mod.py"
    pkg/mod.map.json           its current counter map
    .maps/<fingerprint>.json   every counter map ever written here

Keeping old maps lets snapshots recorded against an earlier version of a
unit still be merged after the unit was re-instrumented. Writing a batch
merges its entries into an existing manifest, so separate ``instrument``
calls accumulate.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any, Literal

import structlog
from pydantic import BaseModel, ConfigDict

from covreach.instrument.counter_map import CounterMap

if TYPE_CHECKING:
    from covreach.pipeline import BatchResult

logger = structlog.get_logger()

MANIFEST_NAME = "manifest.json"
HISTORY_DIR = ".maps"


class ManifestEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    unit: str
    source: str
    map: str
    content_hash: str
    fingerprint: str
    counters: int


class ManifestFailure(BaseModel):
    model_config = ConfigDict(extra="forbid")

    unit: str
    error: dict[str, Any]


class Manifest(BaseModel):
    """Index of an output directory."""

    model_config = ConfigDict(extra="forbid")

    version: Literal[1] = 1
    units: list[ManifestEntry] = []
    failures: list[ManifestFailure] = []

    def entry(self, unit: str) -> ManifestEntry | None:
        for entry in self.units:
            if entry.unit == unit:
                return entry
        return None


@dataclass(frozen=True)
class OutputPaths:
    source: PurePosixPath
    map: PurePosixPath


def output_paths(unit: str) -> OutputPaths:
    """Relative output paths for a unit name.

    Absolute prefixes and ``..`` segments are dropped so nothing is written
    outside the output directory.
    """
    parts = [p for p in PurePosixPath(unit.replace("\\", "/")).parts if p not in ("/", ".", "..")]
    if not parts:
        raise ValueError(f"Unit name {unit!r} has no usable path segments")
    source = PurePosixPath(*parts)
    if source.suffix != ".py":
        source = source.with_name(source.name + ".py")
    return OutputPaths(source=source, map=source.with_suffix(".map.json"))


def load_manifest(out_dir: Path) -> Manifest:
    """Read ``manifest.json``; a directory without one has an empty manifest."""
    path = out_dir / MANIFEST_NAME
    if not path.exists():
        return Manifest()
    return Manifest.model_validate_json(path.read_text(encoding="utf-8"))


def load_counter_maps(out_dir: Path) -> dict[str, CounterMap]:
    """Current counter map of every unit in the manifest, keyed by unit name."""
    manifest = load_manifest(out_dir)
    return {
        entry.unit: CounterMap.from_json((out_dir / entry.map).read_text(encoding="utf-8"))
        for entry in manifest.units
    }


def load_map_history(out_dir: Path) -> list[CounterMap]:
    """Every counter map kept in the history directory, oldest layout first."""
    history = out_dir / HISTORY_DIR
    if not history.is_dir():
        return []
    return [
        CounterMap.from_json(path.read_text(encoding="utf-8"))
        for path in sorted(history.glob("*.json"))
    ]


def write_batch(result: BatchResult, out_dir: Path) -> Manifest:
    """Write instrumented sources, counter maps and the manifest.

    Returns:
        The merged manifest that was written.
    """
    out_dir.mkdir(parents=True, exist_ok=True)
    (out_dir / HISTORY_DIR).mkdir(exist_ok=True)
    manifest = load_manifest(out_dir)

    written: dict[PurePosixPath, str] = {}
    for done in result.completed:
        paths = output_paths(done.unit)
        other = written.setdefault(paths.source, done.unit)
        if other != done.unit:
            raise ValueError(f"Units {other!r} and {done.unit!r} both map to {paths.source}")

    entries = {entry.unit: entry for entry in manifest.units}
    failures = {failure.unit: failure for failure in manifest.failures}

    for done in result.completed:
        paths = output_paths(done.unit)
        source_path = out_dir / paths.source
        source_path.parent.mkdir(parents=True, exist_ok=True)
        source_path.write_text(done.artifact.source, encoding="utf-8")

        map_json = done.counter_map.to_json()
        (out_dir / paths.map).write_text(map_json, encoding="utf-8")
        (out_dir / HISTORY_DIR / f"{done.counter_map.fingerprint}.json").write_text(
            map_json, encoding="utf-8"
        )

        entries[done.unit] = ManifestEntry(
            unit=done.unit,
            source=paths.source.as_posix(),
            map=paths.map.as_posix(),
            content_hash=done.counter_map.content_hash,
            fingerprint=done.counter_map.fingerprint,
            counters=len(done.counter_map),
        )
        failures.pop(done.unit, None)

    for failure in result.failures:
        entries.pop(failure.unit, None)
        failures[failure.unit] = ManifestFailure(unit=failure.unit, error=failure.error.to_dict())

    manifest = Manifest(
        units=[entries[name] for name in sorted(entries)],
        failures=[failures[name] for name in sorted(failures)],
    )
    (out_dir / MANIFEST_NAME).write_text(
        json.dumps(manifest.model_dump(), indent=2, sort_keys=True), encoding="utf-8"
    )
    logger.info(
        "batch_written",
        out_dir=str(out_dir),
        units=len(result.completed),
        failures=len(result.failures),
    )
    return manifest
