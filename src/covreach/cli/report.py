"""covreach report command - merge snapshots and report coverage."""

import json
from pathlib import Path

import click

from covreach.cli.run import SNAPSHOTS_NAME
from covreach.cli.utils import (
    EXIT_DESYNC,
    EXIT_THRESHOLDS,
    EXIT_UNIT_FAILURES,
    get_config,
)
from covreach.config.models import ThresholdsConfig
from covreach.core.errors import CounterDesyncError, CovReachError, MergeConflictError
from covreach.core.logging import set_run_id
from covreach.core.progress import status
from covreach.coverage.audit import OutcomeAuditor, OutcomeRecord, read_outcome_records
from covreach.coverage.merge import Aggregator, combine
from covreach.coverage.models import CoverageDataset
from covreach.coverage.report import build_report, build_text_summary, check_thresholds
from covreach.instrument.output import load_counter_maps, load_manifest, load_map_history
from covreach.runtime.exchange import read_snapshots


@click.command()
@click.option(
    "--maps",
    "maps_dir",
    default=Path("covreach-out"),
    show_default=True,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Output directory written by 'covreach instrument' or 'covreach run'",
)
@click.option(
    "--snapshots",
    "snapshot_files",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Snapshot JSON-lines file (repeatable; default: MAPS/snapshots.jsonl)",
)
@click.option(
    "--outcomes",
    "outcomes_file",
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Outcome records (JSON lines) for the outcome audit",
)
@click.option(
    "--json",
    "json_out",
    default=None,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write the machine-readable report here",
)
@click.option(
    "--merge-dataset",
    "dataset_files",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Dataset exported by an earlier report (repeatable), combined into this one",
)
@click.option(
    "--dataset",
    "dataset_out",
    default=None,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Export the merged coverage dataset here",
)
@click.option(
    "--fail-under-line",
    type=click.FloatRange(0.0, 1.0),
    default=None,
    help="Minimum line coverage ratio (overrides thresholds.line)",
)
@click.option(
    "--fail-under-branch",
    type=click.FloatRange(0.0, 1.0),
    default=None,
    help="Minimum branch coverage ratio (overrides thresholds.branch)",
)
@click.pass_context
def report_command(
    ctx: click.Context,
    maps_dir: Path,
    snapshot_files: tuple[Path, ...],
    outcomes_file: Path | None,
    dataset_files: tuple[Path, ...],
    json_out: Path | None,
    dataset_out: Path | None,
    fail_under_line: float | None,
    fail_under_branch: float | None,
) -> None:
    """Merge recorded snapshots and report line and branch coverage.

    Exit status: 0 done, 1 units failed to instrument, 2 coverage below a
    threshold, 3 snapshots do not match the counter maps.
    """
    set_run_id()
    config = get_config(ctx)

    try:
        manifest = load_manifest(maps_dir)
        current = load_counter_maps(maps_dir)
        history = load_map_history(maps_dir)
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Cannot read counter maps in {maps_dir}: {e}") from e

    inventories = [current[name] for name in sorted(current)]
    if not snapshot_files and (maps_dir / SNAPSHOTS_NAME).exists():
        snapshot_files = (maps_dir / SNAPSHOTS_NAME,)

    try:
        aggregator = Aggregator([*history, *inventories], inventories)
        for path in snapshot_files:
            aggregator.merge_all(read_snapshots(path))
    except (CounterDesyncError, MergeConflictError) as e:
        status(str(e), style="error")
        ctx.exit(EXIT_DESYNC)
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Cannot read snapshots: {e}") from e

    for failure in manifest.failures:
        aggregator.fail(failure.unit, CovReachError.from_dict(failure.error))
    dataset = aggregator.release()
    if dataset_files:
        try:
            shards = [
                CoverageDataset.from_dict(json.loads(path.read_text(encoding="utf-8")))
                for path in dataset_files
            ]
        except (OSError, ValueError, KeyError) as e:
            raise click.ClickException(f"Cannot read dataset: {e}") from e
        dataset = combine(dataset, *shards)

    records: list[OutcomeRecord] = []
    if outcomes_file is not None:
        try:
            records = list(read_outcome_records(outcomes_file))
        except (OSError, ValueError) as e:
            raise click.ClickException(str(e)) from e

    audit = OutcomeAuditor(config.engine.outcome_audit_enabled).audit(
        records, dataset, inventories
    )
    report = build_report(dataset, inventories, audit=audit)

    if json_out is not None:
        json_out.write_text(report.to_json(), encoding="utf-8")
    if dataset_out is not None:
        dataset_out.write_text(dataset.to_json(), encoding="utf-8")

    click.echo(build_text_summary(report))

    thresholds = ThresholdsConfig(
        line=fail_under_line if fail_under_line is not None else config.thresholds.line,
        branch=fail_under_branch if fail_under_branch is not None else config.thresholds.branch,
    )
    violations = check_thresholds(report, thresholds)
    for violation in violations:
        status(violation.message, style="error")

    if report.failures:
        ctx.exit(EXIT_UNIT_FAILURES)
    if violations:
        ctx.exit(EXIT_THRESHOLDS)
