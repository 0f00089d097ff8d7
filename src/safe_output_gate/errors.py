"""Error taxonomy for the safe-output pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    SCHEMA_INVALID = "SchemaInvalid"
    LIMIT_EXCEEDED = "LimitExceeded"
    UNAUTHORIZED_DOMAIN = "UnauthorizedDomain"
    UNAUTHORIZED_REPOSITORY = "UnauthorizedRepository"
    MISSING_OR_AMBIGUOUS_DEPENDENCY = "MissingOrAmbiguousDependency"
    SANITIZATION_UNRECOVERABLE = "SanitizationUnrecoverable"
    PLATFORM_API_ERROR = "PlatformApiError"
    CONFIGURATION_INTEGRITY_FAILURE = "ConfigurationIntegrityFailure"
    MALFORMED_RECORD = "MalformedRecord"


class ErrorCode(str, Enum):
    """Stable, machine-readable error codes surfaced in the batch summary."""

    INVALID_SCHEMA = "INVALID_SCHEMA"
    UNKNOWN_OPERATION = "UNKNOWN_OPERATION"
    LIMIT_EXCEEDED = "LIMIT_EXCEEDED"
    UNAUTHORIZED_DOMAIN = "UNAUTHORIZED_DOMAIN"
    MALFORMED_REPOSITORY = "MALFORMED_REPOSITORY"
    UNAUTHORIZED_REPOSITORY = "UNAUTHORIZED_REPOSITORY"
    DEPENDENCY_CYCLE = "DEPENDENCY_CYCLE"
    DUPLICATE_TEMPORARY_ID = "DUPLICATE_TEMPORARY_ID"
    MISSING_DEPENDENCY = "MISSING_DEPENDENCY"
    DEPENDENCY_BLOCKED = "DEPENDENCY_BLOCKED"
    SANITIZATION_UNRECOVERABLE = "SANITIZATION_UNRECOVERABLE"
    PLATFORM_API_ERROR = "PLATFORM_API_ERROR"
    EXECUTION_ABORTED = "EXECUTION_ABORTED"
    CONFIGURATION_INTEGRITY = "CONFIGURATION_INTEGRITY"
    MALFORMED_RECORD = "MALFORMED_RECORD"

    @property
    def kind(self) -> ErrorKind:
        return _CODE_KINDS[self]


_CODE_KINDS: dict[ErrorCode, ErrorKind] = {
    ErrorCode.INVALID_SCHEMA: ErrorKind.SCHEMA_INVALID,
    ErrorCode.UNKNOWN_OPERATION: ErrorKind.SCHEMA_INVALID,
    ErrorCode.LIMIT_EXCEEDED: ErrorKind.LIMIT_EXCEEDED,
    ErrorCode.UNAUTHORIZED_DOMAIN: ErrorKind.UNAUTHORIZED_DOMAIN,
    ErrorCode.MALFORMED_REPOSITORY: ErrorKind.UNAUTHORIZED_REPOSITORY,
    ErrorCode.UNAUTHORIZED_REPOSITORY: ErrorKind.UNAUTHORIZED_REPOSITORY,
    ErrorCode.DEPENDENCY_CYCLE: ErrorKind.MISSING_OR_AMBIGUOUS_DEPENDENCY,
    ErrorCode.DUPLICATE_TEMPORARY_ID: ErrorKind.MISSING_OR_AMBIGUOUS_DEPENDENCY,
    ErrorCode.MISSING_DEPENDENCY: ErrorKind.MISSING_OR_AMBIGUOUS_DEPENDENCY,
    ErrorCode.DEPENDENCY_BLOCKED: ErrorKind.MISSING_OR_AMBIGUOUS_DEPENDENCY,
    ErrorCode.SANITIZATION_UNRECOVERABLE: ErrorKind.SANITIZATION_UNRECOVERABLE,
    ErrorCode.PLATFORM_API_ERROR: ErrorKind.PLATFORM_API_ERROR,
    ErrorCode.EXECUTION_ABORTED: ErrorKind.PLATFORM_API_ERROR,
    ErrorCode.CONFIGURATION_INTEGRITY: ErrorKind.CONFIGURATION_INTEGRITY_FAILURE,
    ErrorCode.MALFORMED_RECORD: ErrorKind.MALFORMED_RECORD,
}


@dataclass
class PipelineError:
    """Structured error attached to an operation or to the batch.

    Attributes:
        code: Stable error code.
        message: Human-readable description.
        index: Batch index of the offending operation, if any.
        field: Field name the error concerns, if any.
        transient: For platform errors, whether the failure class was retryable.
        hint: Optional actionable suggestion.
    """

    code: ErrorCode
    message: str
    index: int | None = None
    field: str | None = None
    transient: bool | None = None
    hint: str | None = None

    @property
    def kind(self) -> ErrorKind:
        return self.code.kind

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code.value,
            "kind": self.kind.value,
            "message": self.message,
        }
        if self.index is not None:
            payload["index"] = self.index
        if self.field is not None:
            payload["field"] = self.field
        if self.transient is not None:
            payload["transient"] = self.transient
        if self.hint:
            payload["hint"] = self.hint
        return payload


class SafeOutputError(Exception):
    """Base exception for safe-output processing."""


class ConfigurationIntegrityError(SafeOutputError):
    """Raised when the loaded configuration does not match its expected digest."""

    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(
            f"Configuration digest mismatch: expected {expected}, computed {actual}"
        )
        self.expected = expected
        self.actual = actual


class SanitizationUnrecoverableError(SafeOutputError):
    """Raised when text contains a pattern that cannot be safely neutralized."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class PlatformApiError(SafeOutputError):
    """Platform API call failure.

    ``transient`` marks failure classes that are worth retrying (timeouts,
    5xx, explicit rate limiting).
    """

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        transient: bool = False,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.transient = transient
        self.retry_after = retry_after
