"""Pydantic configuration models with env var support.

Configuration Hierarchy (highest to lowest precedence):
1. Direct kwargs to load_config()
2. Environment variables (COVREACH__SECTION__KEY)
3. Project YAML (.covreach/config.yaml)
4. Global YAML (~/.config/covreach/config.yaml)
5. Built-in defaults (this file)

Environment Variable Format:
    COVREACH__<SECTION>__<KEY>=<VALUE>

Examples:
    COVREACH__LOGGING__LEVEL=DEBUG
    COVREACH__ENGINE__CONCURRENCY_LIMIT=8
    COVREACH__THRESHOLDS__BRANCH=0.75
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

BranchKind = Literal["if", "while", "for", "match", "ifexp", "boolop"]

ALL_BRANCH_KINDS: tuple[BranchKind, ...] = ("if", "while", "for", "match", "ifexp", "boolop")


class LogOutputConfig(BaseModel):
    """Single logging output configuration.

    Env vars: Not directly configurable via env (use YAML for multi-output).
    """

    format: Literal["json", "console"] = "console"
    destination: str = "stderr"  # stderr, stdout, or absolute file path
    level: LogLevel | None = None  # Inherits from parent if None

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        if v in ("stderr", "stdout"):
            return v
        path = Path(v).expanduser()
        if not path.is_absolute():
            raise ValueError(f"File destination must be absolute path: {v}")
        return str(path)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Env vars:
        COVREACH__LOGGING__LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    level: LogLevel = Field(
        default="WARNING",
        description="Root log level. INFO logs one event per unit; DEBUG logs per site.",
    )
    outputs: list[LogOutputConfig] = Field(default_factory=lambda: [LogOutputConfig()])


class EngineConfig(BaseModel):
    """Instrumentation engine configuration.

    Env vars:
        COVREACH__ENGINE__CONCURRENCY_LIMIT: Parallel unit processing workers
        COVREACH__ENGINE__BRANCH_KINDS: JSON list of decision-site kinds
        COVREACH__ENGINE__OUTCOME_AUDIT_ENABLED: Toggle the outcome auditor pass
    """

    concurrency_limit: int = Field(
        default=4,
        description="Max SourceUnits built/instrumented in parallel.",
    )
    branch_kinds: list[BranchKind] = Field(
        default_factory=lambda: list(ALL_BRANCH_KINDS),
        description="Control constructs counted as decision sites. "
        "Dropping 'boolop' gives one site per top-level conditional only.",
    )
    outcome_audit_enabled: bool = Field(
        default=True,
        description="Run the outcome auditor alongside coverage ratios.",
    )

    @field_validator("concurrency_limit")
    @classmethod
    def validate_concurrency_limit(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"concurrency_limit must be >= 1, got {v}")
        return v

    @field_validator("branch_kinds")
    @classmethod
    def dedupe_branch_kinds(cls, v: list[BranchKind]) -> list[BranchKind]:
        return [kind for kind in ALL_BRANCH_KINDS if kind in v]


class ThresholdsConfig(BaseModel):
    """Minimum coverage ratios. A result below either turns the exit status non-zero.

    Env vars:
        COVREACH__THRESHOLDS__LINE: Minimum aggregate line coverage (0.0-1.0)
        COVREACH__THRESHOLDS__BRANCH: Minimum aggregate branch coverage (0.0-1.0)
    """

    line: float | None = Field(default=None, description="Minimum line coverage ratio.")
    branch: float | None = Field(default=None, description="Minimum branch coverage ratio.")

    @field_validator("line", "branch")
    @classmethod
    def validate_ratio(cls, v: float | None) -> float | None:
        if v is not None and not (0.0 <= v <= 1.0):
            raise ValueError(f"Threshold must be between 0.0 and 1.0, got {v}")
        return v


class CovReachConfig(BaseModel):
    """Root configuration model."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    thresholds: ThresholdsConfig = Field(default_factory=ThresholdsConfig)
