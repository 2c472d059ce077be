"""Batch pipeline: build and instrument many SourceUnits concurrently.

Units share no mutable state, so each one is modelled and instrumented on
its own worker thread, bounded by ``engine.concurrency_limit``.

Failure policy:
- Unit-scoped errors (unparseable source, uninstrumentable model) are
  collected per unit and the batch carries on with partial results.
- Anything else aborts the batch: scheduling stops and the error propagates.
  Errors that are not CovReachErrors are wrapped in InternalError naming
  the unit.

``cancel()`` stops scheduling further units. Units already finished are
kept in the result; units never started are listed as cancelled.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from covreach.config.models import EngineConfig
from covreach.core.errors import CovReachError, InternalError
from covreach.core.progress import progress
from covreach.coverage.report import UnitFailure
from covreach.instrument.counter_map import CounterMap
from covreach.instrument.instrumentor import InstrumentedArtifact, instrument
from covreach.source.builder import build
from covreach.source.models import SourceUnit, StructuralModel

logger = structlog.get_logger()


@dataclass(frozen=True)
class InstrumentedUnit:
    """Everything produced for one successfully processed unit."""

    model: StructuralModel
    artifact: InstrumentedArtifact
    counter_map: CounterMap

    @property
    def unit(self) -> str:
        return self.model.unit


@dataclass
class BatchResult:
    """Outcome of one batch, in input order."""

    completed: list[InstrumentedUnit] = field(default_factory=list)
    failures: list[UnitFailure] = field(default_factory=list)
    cancelled: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures and not self.cancelled

    @property
    def models(self) -> list[StructuralModel]:
        return [done.model for done in self.completed]

    @property
    def counter_maps(self) -> list[CounterMap]:
        return [done.counter_map for done in self.completed]

    def failure_map(self) -> dict[str, CovReachError]:
        return {failure.unit: failure.error for failure in self.failures}


_Loader = Callable[[], SourceUnit]


class BatchProcessor:
    """Runs build + instrument over a batch of units.

    Args:
        config: Engine settings (concurrency limit, branch kinds).
        previous_maps: Counter maps from an earlier batch, keyed by unit
            name, used to keep counter indices stable.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        previous_maps: Mapping[str, CounterMap] | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.previous_maps = dict(previous_maps or {})
        self._cancel = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        """Stop scheduling further units. Units in progress still finish."""
        if not self._cancel.is_set():
            logger.info("batch_cancel_requested")
        self._cancel.set()

    def process_unit(self, source: SourceUnit) -> InstrumentedUnit:
        """Model and instrument one unit. Raises unit-scoped errors unchanged."""
        model = build(source, self.config.branch_kinds)
        artifact, counter_map = instrument(model, self.previous_maps.get(source.name))
        return InstrumentedUnit(model, artifact, counter_map)

    def run(self, units: Iterable[SourceUnit]) -> BatchResult:
        """Process already loaded units."""
        jobs = [(unit.name, _loaded(unit)) for unit in units]
        return self._run(jobs)

    def process_paths(self, paths: Iterable[Path], root: Path | None = None) -> BatchResult:
        """Read and process files, naming each unit by ``unit_name``.

        Unreadable files become unit failures, like unparseable ones.
        """
        jobs: list[tuple[str, _Loader]] = []
        for path in paths:
            name = unit_name(path, root)
            jobs.append((name, _reader(path, name)))
        return self._run(jobs)

    def _run(self, jobs: list[tuple[str, _Loader]]) -> BatchResult:
        names = [name for name, _ in jobs]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate unit names in batch: {', '.join(duplicates)}")

        result = BatchResult()
        if not jobs:
            return result

        workers = min(self.config.concurrency_limit, len(jobs))
        logger.info("batch_started", units=len(jobs), workers=workers)

        with ThreadPoolExecutor(
            max_workers=workers,
            thread_name_prefix="covreach-unit",
        ) as executor:
            futures: list[Future[InstrumentedUnit | None]] = [
                executor.submit(self._process_job, loader) for _, loader in jobs
            ]
            try:
                for (name, _), future in zip(
                    jobs, progress(futures, desc="Instrumenting"), strict=True
                ):
                    self._collect(result, name, future)
            except BaseException:
                # Abort: queued units must not start once the batch has failed
                self._cancel.set()
                for future in futures:
                    future.cancel()
                raise

        logger.info(
            "batch_complete",
            completed=len(result.completed),
            failed=len(result.failures),
            cancelled=len(result.cancelled),
        )
        return result

    def _process_job(self, loader: _Loader) -> InstrumentedUnit | None:
        if self._cancel.is_set():
            return None
        return self.process_unit(loader())

    def _collect(
        self,
        result: BatchResult,
        name: str,
        future: Future[InstrumentedUnit | None],
    ) -> None:
        try:
            done = future.result()
        except CovReachError as e:
            if not e.unit_scoped:
                raise
            logger.warning("unit_failed", unit=name, error=e.error_name, message=e.message)
            result.failures.append(UnitFailure(name, e))
            return
        except Exception as e:
            raise InternalError.unexpected(
                f"{type(e).__name__} while processing {name}: {e}", unit=name, phase="instrument"
            ) from e
        if done is None:
            result.cancelled.append(name)
        else:
            result.completed.append(done)


def unit_name(path: Path, root: Path | None = None) -> str:
    """Unit name for a file: POSIX path relative to ``root`` when it lies inside it."""
    if root is not None:
        try:
            return path.resolve().relative_to(root.resolve()).as_posix()
        except ValueError:
            pass
    return path.as_posix()


def _loaded(unit: SourceUnit) -> _Loader:
    return lambda: unit


def _reader(path: Path, name: str) -> _Loader:
    return lambda: SourceUnit.from_path(path, name=name)
