"""covreach run command - run a script under coverage."""

import sys
from pathlib import Path

import click
import structlog

from covreach.cli.instrument import instrument_paths
from covreach.cli.utils import EXIT_DESYNC, EXIT_UNIT_FAILURES
from covreach.core.errors import CounterDesyncError
from covreach.core.logging import set_run_id
from covreach.core.progress import pluralize, status
from covreach.instrument.instrumentor import InstrumentedArtifact
from covreach.runtime.exchange import write_snapshots
from covreach.runtime.tracker import ExecutionRun, ExecutionSnapshot

logger = structlog.get_logger()

SNAPSHOTS_NAME = "snapshots.jsonl"


def _exit_code(exc: SystemExit) -> int:
    if exc.code is None:
        return 0
    if isinstance(exc.code, int):
        return exc.code
    return 1


def execute_script(
    script: Path,
    script_args: tuple[str, ...],
    artifact: InstrumentedArtifact,
    context: str | None,
) -> tuple[int, list[ExecutionSnapshot]]:
    """Run an instrumented script as ``__main__`` and collect its snapshots.

    ``sys.argv`` and ``sys.path`` look as they would under ``python SCRIPT``
    and are restored afterwards. The script's own failure is its exit code;
    only a counter desync escapes.
    """
    saved_argv, saved_path = sys.argv, list(sys.path)
    sys.argv = [str(script), *script_args]
    sys.path.insert(0, str(script.resolve().parent))
    exit_code = 0
    try:
        with ExecutionRun() as run:
            try:
                artifact.execute(run, {"__name__": "__main__", "__file__": str(script)})
            except SystemExit as e:
                exit_code = _exit_code(e)
            except CounterDesyncError:
                raise
            except Exception as e:
                exit_code = 1
                logger.warning("script_failed", script=str(script), exc_info=True)
                status(f"{script} raised {type(e).__name__}: {e}", style="error")
            snapshots = run.snapshots(context)
    finally:
        sys.argv = saved_argv
        sys.path[:] = saved_path
    return exit_code, snapshots


@click.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@click.argument("script", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("script_args", nargs=-1, type=click.UNPROCESSED)
@click.option(
    "--out",
    "out_dir",
    default=Path("covreach-out"),
    show_default=True,
    type=click.Path(file_okay=False, path_type=Path),
    help="Output directory; snapshots are appended to snapshots.jsonl there",
)
@click.option("--context", "context", default=None, help="Label for this run, e.g. a test id")
@click.option(
    "--root",
    default=Path("."),
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Unit names are paths relative to this directory",
)
@click.pass_context
def run_command(
    ctx: click.Context,
    script: Path,
    script_args: tuple[str, ...],
    out_dir: Path,
    context: str | None,
    root: Path,
) -> None:
    """Instrument SCRIPT, run it, and record its coverage.

    Arguments after SCRIPT are passed to it. Exits 0 when coverage was
    recorded, whatever the script itself did.
    """
    set_run_id()
    result = instrument_paths(ctx, (script,), out_dir, root)
    if not result.completed:
        status(f"Cannot run {script}: instrumentation failed", style="error")
        ctx.exit(EXIT_UNIT_FAILURES)

    artifact = result.completed[0].artifact
    try:
        exit_code, snapshots = execute_script(script, script_args, artifact, context)
    except CounterDesyncError as e:
        status(str(e), style="error")
        ctx.exit(EXIT_DESYNC)

    written = write_snapshots(out_dir / SNAPSHOTS_NAME, snapshots)
    logger.info("run_recorded", script=str(script), exit_code=exit_code, snapshots=written)
    if exit_code:
        status(f"{script} exited with status {exit_code}", style="warning")
    status(
        f"Recorded {pluralize(written, 'snapshot')} in {out_dir / SNAPSHOTS_NAME}",
        style="success",
    )
