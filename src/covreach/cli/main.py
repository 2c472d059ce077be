"""covreach CLI - covreach command."""

import click

from covreach.cli.instrument import instrument_command
from covreach.cli.report import report_command
from covreach.cli.run import run_command
from covreach.config.loader import load_config
from covreach.core.errors import ConfigError
from covreach.core.logging import configure_logging


@click.group()
@click.version_option(version="0.1.0", prog_name="covreach")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """covreach - line and branch coverage with outcome auditing."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    try:
        config = load_config()
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    ctx.obj["config"] = config

    if verbose:
        configure_logging(level="DEBUG")
    else:
        configure_logging(config=config.logging)


cli.add_command(instrument_command, name="instrument")
cli.add_command(run_command, name="run")
cli.add_command(report_command, name="report")


if __name__ == "__main__":
    cli()
