"""Tests for error types and codes."""

import pytest

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


class TestErrorCode:
    """Error code value tests."""

    @pytest.mark.parametrize(
        ("code", "expected_range"),
        [
            (ErrorCode.CONFIG_PARSE_ERROR, 2000),
            (ErrorCode.CONFIG_INVALID_VALUE, 2000),
            (ErrorCode.SOURCE_SYNTAX_ERROR, 3000),
            (ErrorCode.SOURCE_UNREADABLE, 3000),
            (ErrorCode.INSTRUMENT_SITE_NOT_FOUND, 4000),
            (ErrorCode.INSTRUMENT_COMPILE_FAILED, 4000),
            (ErrorCode.COUNTER_OUT_OF_RANGE, 5000),
            (ErrorCode.COUNTER_UNKNOWN_MAP, 5000),
            (ErrorCode.MERGE_UNIT_MISMATCH, 6000),
            (ErrorCode.INTERNAL_ERROR, 9000),
        ],
    )
    def test_given_error_code_when_checked_then_in_correct_range(
        self, code: ErrorCode, expected_range: int
    ) -> None:
        """Error codes fall within their designated numeric range."""
        assert expected_range <= code.value < expected_range + 1000


class TestCovReachError:
    """Base error behavior tests."""

    def test_given_error_when_to_dict_then_serializes_all_fields(self) -> None:
        """Error serializes to dict with all required fields."""
        # Given
        error = CovReachError(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message="Test message",
            retryable=True,
            details={"key": "value"},
        )

        # When
        result = error.to_dict()

        # Then
        assert result == {
            "code": 2001,
            "error": "CONFIG_PARSE_ERROR",
            "message": "Test message",
            "retryable": True,
            "details": {"key": "value"},
        }

    def test_given_error_when_str_then_human_readable(self) -> None:
        """Error string representation is human readable."""
        error = CovReachError(code=ErrorCode.INTERNAL_ERROR, message="Something broke")
        assert str(error) == "[9001] INTERNAL_ERROR: Something broke"

    def test_given_serialized_error_when_from_dict_then_fields_restored(self) -> None:
        """from_dict rebuilds what to_dict wrote."""
        original = MalformedSourceError.syntax_error("a.py", "invalid syntax", 3)

        restored = CovReachError.from_dict(original.to_dict())

        assert restored.code is ErrorCode.SOURCE_SYNTAX_ERROR
        assert restored.message == original.message
        assert restored.details == original.details
        assert restored == original

    @pytest.mark.parametrize(
        "error",
        [
            ConfigError.parse_error("/x.yaml", "bad"),
            MalformedSourceError.unreadable("a.py", "denied"),
            InstrumentationError.compile_failed("a.py", "bad"),
            CounterDesyncError.tracker_closed("a.py"),
            MergeConflictError.fingerprint_collision("a.py", "abc"),
            InternalError.unexpected("boom"),
        ],
    )
    def test_from_dict_rebuilds_subclass_from_code(self, error: CovReachError) -> None:
        restored = CovReachError.from_dict(error.to_dict())

        assert type(restored) is type(error)
        assert restored.unit_scoped == error.unit_scoped

    def test_error_is_raisable(self) -> None:
        with pytest.raises(CovReachError) as exc_info:
            raise InternalError.unexpected("boom", where="merge")
        assert exc_info.value.details == {"where": "merge"}


class TestUnitScope:
    """Only source and instrumentation errors are unit-scoped."""

    @pytest.mark.parametrize(
        ("error", "scoped"),
        [
            (MalformedSourceError.syntax_error("a.py", "bad"), True),
            (MalformedSourceError.unreadable("a.py", "denied"), True),
            (InstrumentationError.site_not_found("a.py", "if@1:0-1:4"), True),
            (InstrumentationError.compile_failed("a.py", "bad"), True),
            (CounterDesyncError.out_of_range("a.py", 9, 3, "execute"), False),
            (MergeConflictError.fingerprint_collision("a.py", "abc"), False),
            (ConfigError.parse_error("/x.yaml", "bad"), False),
            (InternalError.unexpected("boom"), False),
        ],
    )
    def test_unit_scoped(self, error: CovReachError, scoped: bool) -> None:
        assert error.unit_scoped is scoped


class TestFactories:
    """Factory methods carry enough context to locate the problem."""

    def test_config_invalid_value(self) -> None:
        error = ConfigError.invalid_value("engine.concurrency_limit", 0, "must be >= 1")
        assert error.code is ErrorCode.CONFIG_INVALID_VALUE
        assert "engine.concurrency_limit" in error.message
        assert error.details["value"] == "0"

    def test_out_of_range_names_unit_index_and_phase(self) -> None:
        error = CounterDesyncError.out_of_range("calc.py", 12, 4, "merge")
        assert error.details == {"unit": "calc.py", "index": 12, "size": 4, "phase": "merge"}
        assert "12" in error.message

    def test_unknown_map(self) -> None:
        error = CounterDesyncError.unknown_map("calc.py", "deadbeef")
        assert error.code is ErrorCode.COUNTER_UNKNOWN_MAP
        assert error.details["fingerprint"] == "deadbeef"

    def test_unit_mismatch(self) -> None:
        error = MergeConflictError.unit_mismatch("a.py", "b.py", "f00")
        assert error.details["snapshot_unit"] == "a.py"
        assert error.details["map_unit"] == "b.py"
        assert error.details["phase"] == "merge"

    def test_every_unit_error_records_phase(self) -> None:
        errors = [
            MalformedSourceError.syntax_error("a.py", "bad"),
            MalformedSourceError.unreadable("a.py", "bad"),
            InstrumentationError.site_not_found("a.py", "x"),
            InstrumentationError.unsupported("a.py", "Await", 3),
            InstrumentationError.compile_failed("a.py", "bad"),
            CounterDesyncError.tracker_closed("a.py"),
        ]
        assert all("phase" in error.details for error in errors)
