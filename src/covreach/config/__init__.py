"""Config module exports."""

from covreach.config.loader import load_config
from covreach.config.models import (
    ALL_BRANCH_KINDS,
    BranchKind,
    CovReachConfig,
    EngineConfig,
    LoggingConfig,
    ThresholdsConfig,
)

__all__ = [
    "load_config",
    "ALL_BRANCH_KINDS",
    "BranchKind",
    "CovReachConfig",
    "EngineConfig",
    "LoggingConfig",
    "ThresholdsConfig",
]
