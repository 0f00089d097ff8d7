"""Schema and limit validation."""

from __future__ import annotations

from collections import defaultdict

from safe_output_gate.diagnostics import DiagnosticEvent, DiagnosticSink
from safe_output_gate.domain.operations import Operation, OperationStatus, OperationType
from safe_output_gate.domain.temporary_id import is_temporary_id, normalize_temporary_id, parse_reference
from safe_output_gate.errors import ErrorCode, PipelineError
from safe_output_gate.policy.models import SafeOutputsConfig
from safe_output_gate.utils.jsonschema import check_schema, validate_payload_structured
from safe_output_gate.validation.schemas import compile_schema, get_operation_spec

_STAGE = "validate"


class SchemaValidator:
    """Validate operation shape, then per-type and batch quotas.

    Failures reject only the offending operation, except for atomic types
    where any failure rejects every operation of that type.
    """

    def __init__(self, config: SafeOutputsConfig, sink: DiagnosticSink, default_repo: str) -> None:
        self._config = config
        self._sink = sink
        self._default_repo = default_repo
        self._schemas: dict[OperationType, dict[str, object]] = {}

    def validate(self, operations: list[Operation]) -> None:
        for operation in operations:
            self.validate_operation(operation)
        self.enforce_limits(operations)
        self.enforce_atomic(operations)

    def schema_for(self, kind: OperationType) -> dict[str, object]:
        schema = self._schemas.get(kind)
        if schema is None:
            type_config = self._config.type_config(kind.value)
            schema = compile_schema(get_operation_spec(kind), type_config)
            check_schema(schema)
            self._schemas[kind] = schema
        return schema

    def validate_operation(self, operation: Operation) -> None:
        kind = operation.kind
        if kind is None or not self._config.is_enabled(operation.type):
            self._reject(
                operation,
                PipelineError(
                    code=ErrorCode.UNKNOWN_OPERATION,
                    message=f"Operation type '{operation.type}' is not enabled for this workflow",
                ),
            )
            return

        spec = get_operation_spec(kind)
        fields = dict(operation.raw_fields)
        for alias, canonical in spec.aliases.items():
            if alias not in fields:
                continue
            if canonical in fields:
                self._reject(
                    operation,
                    PipelineError(
                        code=ErrorCode.INVALID_SCHEMA,
                        message=f"Fields '{alias}' and '{canonical}' must not both be set",
                        field=alias,
                    ),
                )
                return
            fields[canonical] = fields.pop(alias)
        operation.raw_fields = fields

        try:
            schema = self.schema_for(kind)
        except ValueError as exc:
            self._reject(operation, PipelineError(code=ErrorCode.INVALID_SCHEMA, message=str(exc)))
            return

        violations = validate_payload_structured(schema, fields)
        if violations:
            first = violations[0]
            self._reject(
                operation,
                PipelineError(
                    code=ErrorCode.INVALID_SCHEMA,
                    message=first.message,
                    field=first.field,
                    hint=first.hint,
                ),
            )
            return

        temporary_id = fields.get("temporary_id")
        if temporary_id is not None:
            if not spec.creates or not is_temporary_id(temporary_id):
                self._reject(
                    operation,
                    PipelineError(
                        code=ErrorCode.INVALID_SCHEMA,
                        message=(
                            f"Invalid temporary ID '{temporary_id}': expected 'aw_' followed by "
                            "4 to 12 alphanumeric characters"
                            if spec.creates
                            else f"Operation type '{operation.type}' cannot declare a temporary ID"
                        ),
                        field="temporary_id",
                    ),
                )
                return
            operation.temporary_id = normalize_temporary_id(temporary_id)

        for name in spec.reference_fields:
            if name not in fields:
                continue
            try:
                operation.references[name] = parse_reference(fields[name], self._default_repo)
            except ValueError as exc:
                self._reject(
                    operation,
                    PipelineError(code=ErrorCode.INVALID_SCHEMA, message=str(exc), field=name),
                )
                return

        operation.advance(OperationStatus.VALIDATED)

    def enforce_limits(self, operations: list[Operation]) -> None:
        counts: dict[str, int] = defaultdict(int)
        total = 0
        for operation in sorted(operations, key=lambda op: op.index):
            if operation.status is not OperationStatus.VALIDATED:
                continue
            type_config = self._config.type_config(operation.type)
            limit = type_config.max if type_config is not None else 0
            if counts[operation.type] >= limit:
                self._reject(
                    operation,
                    PipelineError(
                        code=ErrorCode.LIMIT_EXCEEDED,
                        message=(
                            f"Too many '{operation.type}' operations: at most {limit} allowed per run"
                        ),
                    ),
                )
                continue
            if self._config.max_total is not None and total >= self._config.max_total:
                self._reject(
                    operation,
                    PipelineError(
                        code=ErrorCode.LIMIT_EXCEEDED,
                        message=(
                            f"Too many operations: at most {self._config.max_total} allowed per run"
                        ),
                    ),
                )
                continue
            counts[operation.type] += 1
            total += 1

    def enforce_atomic(self, operations: list[Operation]) -> None:
        """Reject every still-pending operation of an atomic type that had a failure."""
        failures: dict[str, Operation] = {}
        for operation in sorted(operations, key=lambda op: op.index):
            if operation.status is OperationStatus.REJECTED and operation.type not in failures:
                type_config = self._config.type_config(operation.type)
                if type_config is not None and type_config.enabled and type_config.is_atomic:
                    failures[operation.type] = operation

        for operation in operations:
            cause = failures.get(operation.type)
            if cause is None or operation.is_terminal:
                continue
            self._reject(
                operation,
                PipelineError(
                    code=cause.error.code if cause.error else ErrorCode.INVALID_SCHEMA,
                    message=(
                        f"Blocked: '{operation.type}' is atomic and operation #{cause.index} "
                        "failed validation"
                    ),
                ),
            )

    def _reject(self, operation: Operation, error: PipelineError) -> None:
        operation.reject(error)
        self._sink.record(
            DiagnosticEvent(
                stage=_STAGE,
                level="warning",
                index=operation.index,
                message=f"{error.code.value}: {error.message}",
                data={"field": error.field} if error.field else {},
            )
        )
