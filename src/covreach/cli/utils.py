"""CLI utilities."""

from pathlib import Path

import click

from covreach.config.models import CovReachConfig

EXIT_OK = 0
EXIT_UNIT_FAILURES = 1
EXIT_THRESHOLDS = 2
EXIT_DESYNC = 3


def get_config(ctx: click.Context) -> CovReachConfig:
    """Config loaded by the ``covreach`` group, or defaults when invoked standalone."""
    obj = ctx.find_object(dict)
    if obj is not None and "config" in obj:
        config: CovReachConfig = obj["config"]
        return config
    return CovReachConfig()


def collect_sources(paths: tuple[Path, ...]) -> list[Path]:
    """Expand directories into the ``.py`` files below them, in sorted order.

    Explicit file arguments are kept as given, whatever their suffix.
    """
    files: list[Path] = []
    seen: set[Path] = set()
    for path in paths:
        candidates = sorted(path.rglob("*.py")) if path.is_dir() else [path]
        for candidate in candidates:
            key = candidate.resolve()
            if key not in seen:
                seen.add(key)
                files.append(candidate)
    return files
