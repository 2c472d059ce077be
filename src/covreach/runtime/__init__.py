"""Runtime counter store and snapshot exchange."""

from covreach.runtime.exchange import (
    SnapshotDocument,
    read_snapshots,
    snapshot_from_dict,
    snapshot_to_dict,
    write_snapshots,
)
from covreach.runtime.tracker import ExecutionRun, ExecutionSnapshot, ExecutionTracker

__all__ = [
    "ExecutionRun",
    "ExecutionSnapshot",
    "ExecutionTracker",
    "SnapshotDocument",
    "read_snapshots",
    "snapshot_from_dict",
    "snapshot_to_dict",
    "write_snapshots",
]
