"""covreach instrument command - instrument a batch of source files."""

from pathlib import Path

import click

from covreach.cli.utils import EXIT_UNIT_FAILURES, collect_sources, get_config
from covreach.core.logging import set_run_id
from covreach.core.progress import pluralize, status
from covreach.instrument.output import load_counter_maps, write_batch
from covreach.pipeline import BatchProcessor, BatchResult


def instrument_paths(
    ctx: click.Context,
    paths: tuple[Path, ...],
    out_dir: Path,
    root: Path,
) -> BatchResult:
    """Instrument ``paths`` into ``out_dir``, reusing indices of maps already there."""
    config = get_config(ctx)
    try:
        previous = load_counter_maps(out_dir)
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Cannot read existing output in {out_dir}: {e}") from e

    processor = BatchProcessor(config.engine, previous)
    result = processor.process_paths(collect_sources(paths), root=root)
    write_batch(result, out_dir)

    for failure in result.failures:
        status(f"{failure.unit}: {failure.error.message}", style="error")
    return result


@click.command()
@click.argument(
    "paths", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path)
)
@click.option(
    "--out",
    "out_dir",
    default=Path("covreach-out"),
    show_default=True,
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory for instrumented sources and counter maps",
)
@click.option(
    "--root",
    default=Path("."),
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Unit names are paths relative to this directory",
)
@click.pass_context
def instrument_command(
    ctx: click.Context, paths: tuple[Path, ...], out_dir: Path, root: Path
) -> None:
    """Instrument source files for line and branch coverage.

    PATHS are files or directories (searched for *.py).
    """
    set_run_id()
    result = instrument_paths(ctx, paths, out_dir, root)

    done = len(result.completed)
    status(
        f"Instrumented {pluralize(done, 'unit')} into {out_dir}",
        style="success" if result.ok else "warning",
    )
    if result.failures:
        status(f"{pluralize(len(result.failures), 'unit')} failed", style="error")
        ctx.exit(EXIT_UNIT_FAILURES)
