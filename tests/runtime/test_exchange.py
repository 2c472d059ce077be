"""Tests for the JSON-lines snapshot exchange format."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from covreach.runtime import (
    ExecutionSnapshot,
    read_snapshots,
    snapshot_from_dict,
    snapshot_to_dict,
    write_snapshots,
)


def _snapshot(context: str | None = "test_add") -> ExecutionSnapshot:
    return ExecutionSnapshot("calc.py", "0123456789abcdef", {3: 2, 0: 1}, context)


class TestDocument:
    def test_to_dict_uses_string_indices_in_order(self) -> None:
        assert snapshot_to_dict(_snapshot()) == {
            "unit": "calc.py",
            "map_fingerprint": "0123456789abcdef",
            "context": "test_add",
            "counts": {"0": 1, "3": 2},
        }

    def test_from_dict_restores_int_indices(self) -> None:
        restored = snapshot_from_dict(snapshot_to_dict(_snapshot()))

        assert restored == _snapshot()
        assert restored.counts == {0: 1, 3: 2}

    def test_context_optional(self) -> None:
        data = {"unit": "calc.py", "map_fingerprint": "f", "counts": {}}
        assert snapshot_from_dict(data).context is None

    @pytest.mark.parametrize(
        "counts",
        [{"0": -1}, {"-1": 1}, {"x": 1}],
    )
    def test_invalid_counts_rejected(self, counts: dict[str, int]) -> None:
        data = {"unit": "calc.py", "map_fingerprint": "f", "counts": counts}
        with pytest.raises(ValidationError):
            snapshot_from_dict(data)

    def test_unknown_field_rejected(self) -> None:
        data = {**snapshot_to_dict(_snapshot()), "extra": True}
        with pytest.raises(ValidationError):
            snapshot_from_dict(data)


class TestFiles:
    def test_append_and_read(self, tmp_path: Path) -> None:
        path = tmp_path / "out" / "snapshots.jsonl"

        assert write_snapshots(path, [_snapshot("a")]) == 1
        assert write_snapshots(path, [_snapshot("b"), _snapshot(None)]) == 2

        assert [s.context for s in read_snapshots(path)] == ["a", "b", None]

    def test_overwrite(self, tmp_path: Path) -> None:
        path = tmp_path / "snapshots.jsonl"
        write_snapshots(path, [_snapshot("a")])
        write_snapshots(path, [_snapshot("b")], append=False)

        assert [s.context for s in read_snapshots(path)] == ["b"]

    def test_one_json_object_per_line(self, tmp_path: Path) -> None:
        path = tmp_path / "snapshots.jsonl"
        write_snapshots(path, [_snapshot("a"), _snapshot("b")])

        lines = path.read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[1])["context"] == "b"

    def test_blank_lines_skipped(self, tmp_path: Path) -> None:
        path = tmp_path / "snapshots.jsonl"
        path.write_text("\n" + json.dumps(snapshot_to_dict(_snapshot())) + "\n\n")

        assert len(list(read_snapshots(path))) == 1

    def test_invalid_json_names_line(self, tmp_path: Path) -> None:
        path = tmp_path / "snapshots.jsonl"
        path.write_text(json.dumps(snapshot_to_dict(_snapshot())) + "\n{not json\n")

        with pytest.raises(ValueError, match=r"snapshots.jsonl:2"):
            list(read_snapshots(path))
