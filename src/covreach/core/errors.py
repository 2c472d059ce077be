"""covreach error types with typed error codes.

Error code ranges:
- 2xxx: Config
- 3xxx: Source model (unit-scoped)
- 4xxx: Instrumentation (unit-scoped)
- 5xxx: Runtime counters (fatal to the execution)
- 6xxx: Merge (fatal to the report generation)
- 9xxx: Internal
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002

    # Source model (3xxx)
    SOURCE_SYNTAX_ERROR = 3001
    SOURCE_UNREADABLE = 3002

    # Instrumentation (4xxx)
    INSTRUMENT_SITE_NOT_FOUND = 4001
    INSTRUMENT_UNSUPPORTED = 4002
    INSTRUMENT_COMPILE_FAILED = 4003

    # Runtime counters (5xxx)
    COUNTER_OUT_OF_RANGE = 5001
    COUNTER_UNKNOWN_MAP = 5002
    COUNTER_TRACKER_CLOSED = 5003

    # Merge (6xxx)
    MERGE_UNIT_MISMATCH = 6001
    MERGE_FINGERPRINT_COLLISION = 6002

    # Internal (9xxx)
    INTERNAL_ERROR = 9001


@dataclass(frozen=True, slots=True)
class CovReachError(Exception):
    """Base error with structured context for reports and CLI output."""

    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'SOURCE_SYNTAX_ERROR')."""
        return self.code.name

    @property
    def unit_scoped(self) -> bool:
        """True when the error only invalidates a single SourceUnit."""
        return 3000 <= self.code.value < 5000

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON reports."""
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CovReachError":
        """Rebuild an error serialized by ``to_dict`` (e.g. from a manifest).

        Called on the base class, the subclass owning the code's range is rebuilt.
        """
        code = ErrorCode(data["code"])
        error_cls = cls
        if cls is CovReachError:
            error_cls = _ERROR_CLASSES.get(code.value // 1000, CovReachError)
        return error_cls(
            code=code,
            message=data["message"],
            retryable=data.get("retryable", False),
            details=dict(data.get("details", {})),
        )

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


class ConfigError(CovReachError):
    """Configuration-related errors."""

    @classmethod
    def parse_error(cls, path: str, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )


class MalformedSourceError(CovReachError):
    """A SourceUnit could not be parsed. Fatal for that unit only."""

    @classmethod
    def syntax_error(
        cls, unit: str, reason: str, line: int | None = None
    ) -> "MalformedSourceError":
        return cls(
            code=ErrorCode.SOURCE_SYNTAX_ERROR,
            message=f"Cannot parse {unit}: {reason}",
            details={"unit": unit, "line": line, "reason": reason, "phase": "build"},
        )

    @classmethod
    def unreadable(cls, unit: str, reason: str) -> "MalformedSourceError":
        return cls(
            code=ErrorCode.SOURCE_UNREADABLE,
            message=f"Cannot read {unit}: {reason}",
            details={"unit": unit, "reason": reason, "phase": "load"},
        )


class InstrumentationError(CovReachError):
    """A structural model cannot be safely instrumented. Unit-scoped."""

    @classmethod
    def site_not_found(cls, unit: str, site_id: str) -> "InstrumentationError":
        return cls(
            code=ErrorCode.INSTRUMENT_SITE_NOT_FOUND,
            message=f"Decision site {site_id} of {unit} not found in the parsed tree",
            details={"unit": unit, "site": site_id, "phase": "instrument"},
        )

    @classmethod
    def unsupported(cls, unit: str, construct: str, line: int) -> "InstrumentationError":
        return cls(
            code=ErrorCode.INSTRUMENT_UNSUPPORTED,
            message=f"Unsupported construct {construct} at {unit}:{line}",
            details={"unit": unit, "construct": construct, "line": line, "phase": "instrument"},
        )

    @classmethod
    def compile_failed(cls, unit: str, reason: str) -> "InstrumentationError":
        return cls(
            code=ErrorCode.INSTRUMENT_COMPILE_FAILED,
            message=f"Instrumented {unit} failed to compile: {reason}",
            details={"unit": unit, "reason": reason, "phase": "instrument"},
        )


class CounterDesyncError(CovReachError):
    """Instrumented artifact and engine disagree about counter layout."""

    @classmethod
    def out_of_range(cls, unit: str, index: int, size: int, phase: str) -> "CounterDesyncError":
        return cls(
            code=ErrorCode.COUNTER_OUT_OF_RANGE,
            message=f"Counter index {index} out of range for {unit} (size {size})",
            details={"unit": unit, "index": index, "size": size, "phase": phase},
        )

    @classmethod
    def unknown_map(cls, unit: str, fingerprint: str) -> "CounterDesyncError":
        return cls(
            code=ErrorCode.COUNTER_UNKNOWN_MAP,
            message=f"No counter map with fingerprint {fingerprint} registered for {unit}",
            details={"unit": unit, "fingerprint": fingerprint, "phase": "merge"},
        )

    @classmethod
    def tracker_closed(cls, unit: str) -> "CounterDesyncError":
        return cls(
            code=ErrorCode.COUNTER_TRACKER_CLOSED,
            message=f"Execution run for {unit} has already been torn down",
            details={"unit": unit, "phase": "execute"},
        )


class MergeConflictError(CovReachError):
    """Snapshots disagree on CountableUnit identity."""

    @classmethod
    def unit_mismatch(
        cls, snapshot_unit: str, map_unit: str, fingerprint: str
    ) -> "MergeConflictError":
        return cls(
            code=ErrorCode.MERGE_UNIT_MISMATCH,
            message=(
                f"Snapshot for {snapshot_unit} references counter map {fingerprint} "
                f"which belongs to {map_unit}"
            ),
            details={
                "snapshot_unit": snapshot_unit,
                "map_unit": map_unit,
                "fingerprint": fingerprint,
                "phase": "merge",
            },
        )

    @classmethod
    def fingerprint_collision(cls, unit: str, fingerprint: str) -> "MergeConflictError":
        return cls(
            code=ErrorCode.MERGE_FINGERPRINT_COLLISION,
            message=f"Two different counter maps for {unit} share fingerprint {fingerprint}",
            details={"unit": unit, "fingerprint": fingerprint, "phase": "merge"},
        )


class InternalError(CovReachError):
    """Internal/unexpected errors."""

    @classmethod
    def unexpected(cls, reason: str, **details: Any) -> "InternalError":
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Internal error: {reason}",
            details=details,
        )


_ERROR_CLASSES: dict[int, type[CovReachError]] = {
    2: ConfigError,
    3: MalformedSourceError,
    4: InstrumentationError,
    5: CounterDesyncError,
    6: MergeConflictError,
    9: InternalError,
}
