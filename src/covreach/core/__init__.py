"""Core module exports."""

from covreach.core.errors import (
    ConfigError,
    CounterDesyncError,
    CovReachError,
    ErrorCode,
    InstrumentationError,
    InternalError,
    MalformedSourceError,
    MergeConflictError,
)
from covreach.core.logging import (
    clear_run_id,
    configure_logging,
    get_logger,
    get_run_id,
    set_run_id,
)
from covreach.core.progress import pluralize, progress, status

__all__ = [
    # Errors
    "ConfigError",
    "CounterDesyncError",
    "CovReachError",
    "ErrorCode",
    "InstrumentationError",
    "InternalError",
    "MalformedSourceError",
    "MergeConflictError",
    # Logging
    "clear_run_id",
    "configure_logging",
    "get_logger",
    "get_run_id",
    "set_run_id",
    # Progress
    "pluralize",
    "progress",
    "status",
]
