"""Tests for config/models.py module.

Covers:
- LogOutputConfig model
- LoggingConfig model
- EngineConfig model
- ThresholdsConfig model
- CovReachConfig root model
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from covreach.config.models import (
    ALL_BRANCH_KINDS,
    CovReachConfig,
    EngineConfig,
    LoggingConfig,
    LogOutputConfig,
    ThresholdsConfig,
)


class TestLogOutputConfig:
    """Tests for LogOutputConfig model."""

    def test_defaults(self) -> None:
        config = LogOutputConfig()
        assert config.format == "console"
        assert config.destination == "stderr"
        assert config.level is None

    def test_absolute_path_destination(self) -> None:
        config = LogOutputConfig(destination="/var/log/covreach.log")
        assert config.destination == "/var/log/covreach.log"

    def test_relative_path_fails(self) -> None:
        with pytest.raises(ValidationError):
            LogOutputConfig(destination="logs/covreach.log")


class TestLoggingConfig:
    def test_defaults(self) -> None:
        config = LoggingConfig()
        assert config.level == "WARNING"
        assert len(config.outputs) == 1

    def test_invalid_level(self) -> None:
        with pytest.raises(ValidationError):
            LoggingConfig(level="LOUD")  # type: ignore[arg-type]


class TestEngineConfig:
    """Tests for EngineConfig model."""

    def test_defaults(self) -> None:
        config = EngineConfig()
        assert config.concurrency_limit == 4
        assert tuple(config.branch_kinds) == ALL_BRANCH_KINDS
        assert config.outcome_audit_enabled is True

    @pytest.mark.parametrize("limit", [0, -1])
    def test_concurrency_limit_must_be_positive(self, limit: int) -> None:
        with pytest.raises(ValidationError):
            EngineConfig(concurrency_limit=limit)

    def test_branch_kinds_deduplicated_in_canonical_order(self) -> None:
        config = EngineConfig(branch_kinds=["boolop", "if", "if"])
        assert config.branch_kinds == ["if", "boolop"]

    def test_branch_kinds_may_be_empty(self) -> None:
        """Line coverage only."""
        assert EngineConfig(branch_kinds=[]).branch_kinds == []

    def test_unknown_branch_kind_rejected(self) -> None:
        with pytest.raises(ValidationError):
            EngineConfig(branch_kinds=["unless"])  # type: ignore[list-item]


class TestThresholdsConfig:
    def test_defaults_disabled(self) -> None:
        config = ThresholdsConfig()
        assert config.line is None
        assert config.branch is None

    @pytest.mark.parametrize("value", [0.0, 0.5, 1.0])
    def test_accepts_ratios(self, value: float) -> None:
        assert ThresholdsConfig(line=value).line == value

    @pytest.mark.parametrize("value", [-0.1, 1.5, 80.0])
    def test_rejects_out_of_range(self, value: float) -> None:
        with pytest.raises(ValidationError):
            ThresholdsConfig(branch=value)


class TestCovReachConfig:
    def test_sections(self) -> None:
        config = CovReachConfig()
        assert isinstance(config.logging, LoggingConfig)
        assert isinstance(config.engine, EngineConfig)
        assert isinstance(config.thresholds, ThresholdsConfig)

    def test_from_dict(self) -> None:
        config = CovReachConfig.model_validate(
            {"engine": {"concurrency_limit": 2}, "thresholds": {"line": 0.9}}
        )
        assert config.engine.concurrency_limit == 2
        assert config.thresholds.line == 0.9
