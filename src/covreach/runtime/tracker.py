"""Execution Tracker: the counter store an instrumented program increments.

One ExecutionTracker holds the counters of one instrumented unit. Trackers
are owned by an ExecutionRun, which is the explicit scope of a single
program run: it binds the runtime hooks into instrumented namespaces and
tears every tracker down on exit. Nothing here is a module-level singleton,
so counts never leak between unrelated runs.
"""

from __future__ import annotations

import threading
import types
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog

from covreach.core.errors import CounterDesyncError
from covreach.core.logging import get_run_id
from covreach.instrument.counter_map import CounterMap
from covreach.instrument.instrumentor import (
    DROP,
    HIT,
    TAKE,
    TEST,
    TRUTH,
    InstrumentedArtifact,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class ExecutionSnapshot:
    """Counter values of one unit at one point of a run.

    ``counts`` may cover a subset of the map's indices (a partial snapshot);
    missing indices mean "no hits reported here", never "unknown".
    """

    unit: str
    map_fingerprint: str
    counts: dict[int, int] = field(hash=False)
    context: str | None = None

    def __post_init__(self) -> None:
        negative = [index for index, hits in self.counts.items() if hits < 0]
        if negative:
            raise ValueError(
                f"Snapshot for {self.unit} has a negative count at index {negative[0]}"
            )

    @property
    def total_hits(self) -> int:
        return sum(self.counts.values())


class ExecutionTracker:
    """Thread-safe counter array sized by one CounterMap."""

    def __init__(self, counter_map: CounterMap) -> None:
        self.counter_map = counter_map
        self._counts = [0] * len(counter_map)
        self._flushed = [0] * len(counter_map)
        self._lock = threading.Lock()
        self._closed = False

    @property
    def unit(self) -> str:
        return self.counter_map.unit

    @property
    def closed(self) -> bool:
        return self._closed

    def increment(self, index: int) -> None:
        if not 0 <= index < len(self._counts):
            raise CounterDesyncError.out_of_range(
                self.unit, index, len(self._counts), phase="execute"
            )
        if self._closed:
            raise CounterDesyncError.tracker_closed(self.unit)
        with self._lock:
            self._counts[index] += 1

    def snapshot(
        self,
        context: str | None = None,
        *,
        indices: Iterable[int] | None = None,
    ) -> ExecutionSnapshot:
        """Point-in-time read of cumulative counts. Does not reset anything.

        Args:
            context: Label for what produced these counts (e.g. a test id).
            indices: Restrict to these slots (partial snapshot).
        """
        with self._lock:
            counts = list(self._counts)
        if indices is None:
            selected = dict(enumerate(counts))
        else:
            selected = {}
            for index in indices:
                if not 0 <= index < len(counts):
                    raise CounterDesyncError.out_of_range(
                        self.unit, index, len(counts), phase="snapshot"
                    )
                selected[index] = counts[index]
        return ExecutionSnapshot(self.unit, self.counter_map.fingerprint, selected, context)

    def delta(self, context: str | None = None) -> ExecutionSnapshot:
        """Partial snapshot of hits since the previous delta.

        Summing every delta of a run gives the run's cumulative counts, so a
        long-running program can flush deltas to the aggregator as it goes.
        """
        with self._lock:
            changed = {
                index: count - self._flushed[index]
                for index, count in enumerate(self._counts)
                if count != self._flushed[index]
            }
            self._flushed = list(self._counts)
        return ExecutionSnapshot(self.unit, self.counter_map.fingerprint, changed, context)

    def reset(self) -> None:
        with self._lock:
            self._counts = [0] * len(self._counts)
            self._flushed = [0] * len(self._counts)

    def close(self) -> None:
        with self._lock:
            self._closed = True


class ExecutionRun:
    """Scope of one program run.

    Usage::

        with ExecutionRun() as run:
            module = run.load_module(artifact, "calc")
            module.compute(3)
            snapshots = run.snapshots(context="test_compute")
    """

    def __init__(self, run_id: str | None = None) -> None:
        self.run_id = run_id or get_run_id()
        self._trackers: dict[tuple[str, str], ExecutionTracker] = {}
        self._lock = threading.Lock()
        self._parked = threading.local()
        self._closed = False

    def __enter__(self) -> ExecutionRun:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def trackers(self) -> list[ExecutionTracker]:
        with self._lock:
            return list(self._trackers.values())

    def tracker_for(self, counter_map: CounterMap) -> ExecutionTracker:
        """Get or create the tracker for a counter map."""
        key = (counter_map.unit, counter_map.fingerprint)
        with self._lock:
            if self._closed:
                raise CounterDesyncError.tracker_closed(counter_map.unit)
            tracker = self._trackers.get(key)
            if tracker is None:
                tracker = ExecutionTracker(counter_map)
                self._trackers[key] = tracker
                logger.debug(
                    "tracker_created",
                    unit=counter_map.unit,
                    counters=len(counter_map),
                    run_id=self.run_id,
                )
            return tracker

    # -- hooks --------------------------------------------------------------

    def _stack(self) -> list[Any]:
        stack: list[Any] | None = getattr(self._parked, "stack", None)
        if stack is None:
            stack = []
            self._parked.stack = stack
        return stack

    def hooks(self, counter_map: CounterMap) -> dict[str, Callable[..., Any]]:
        """Runtime hooks for one instrumented unit, keyed by the names it calls."""
        tracker = self.tracker_for(counter_map)
        increment = tracker.increment

        def test(value: Any, true_index: int, false_index: int) -> bool:
            truth = bool(value)
            increment(true_index if truth else false_index)
            self._stack().append(value)
            return truth

        def truth(value: Any, true_index: int, false_index: int) -> bool:
            result = bool(value)
            increment(true_index if result else false_index)
            return result

        def take() -> Any:
            return self._stack().pop()

        def drop() -> None:
            self._stack().pop()

        return {HIT: increment, TEST: test, TAKE: take, DROP: drop, TRUTH: truth}

    def bind(self, artifact: InstrumentedArtifact, namespace: dict[str, Any]) -> dict[str, Any]:
        namespace.update(self.hooks(artifact.counter_map))
        return namespace

    def execute(
        self,
        artifact: InstrumentedArtifact,
        namespace: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Run an instrumented unit's top level in ``namespace`` and return it."""
        if namespace is None:
            namespace = {"__name__": "__main__", "__file__": artifact.unit}
        self.bind(artifact, namespace)
        exec(artifact.code, namespace)
        return namespace

    def load_module(self, artifact: InstrumentedArtifact, name: str) -> types.ModuleType:
        """Create a module object from an instrumented unit."""
        module = types.ModuleType(name)
        module.__file__ = artifact.unit
        self.execute(artifact, module.__dict__)
        return module

    # -- results ------------------------------------------------------------

    def snapshots(self, context: str | None = None) -> list[ExecutionSnapshot]:
        return [tracker.snapshot(context) for tracker in self.trackers]

    def deltas(self, context: str | None = None) -> list[ExecutionSnapshot]:
        return [tracker.delta(context) for tracker in self.trackers]

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            trackers = list(self._trackers.values())
            self._trackers.clear()
        for tracker in trackers:
            tracker.close()
        logger.debug("execution_run_closed", trackers=len(trackers), run_id=self.run_id)
