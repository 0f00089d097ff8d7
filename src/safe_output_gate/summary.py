"""Batch summary: the single report of what happened to every operation."""

from __future__ import annotations

from dataclasses import dataclass, field

from safe_output_gate.audit.artifacts import utc_now_iso
from safe_output_gate.diagnostics import DiagnosticEvent
from safe_output_gate.domain.operations import (
    REJECTION_STATUSES,
    Operation,
    OperationStatus,
    OperationType,
)
from safe_output_gate.domain.temporary_id import TemporaryIdMapping
from safe_output_gate.errors import PipelineError


@dataclass
class TypeCounts:
    accepted: int = 0
    rejected: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"accepted": self.accepted, "rejected": self.rejected, "failed": self.failed}


@dataclass
class BatchSummary:
    total_examined: int
    skipped_records: int
    staged: bool
    per_type: dict[str, TypeCounts] = field(default_factory=dict)
    operations: list[dict[str, object]] = field(default_factory=list)
    redactions: list[dict[str, object]] = field(default_factory=list)
    errors: list[PipelineError] = field(default_factory=list)
    results: list[dict[str, object]] = field(default_factory=list)
    previews: list[dict[str, object]] = field(default_factory=list)
    temporary_id_map: dict[str, dict[str, object]] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    config_digest: str | None = None
    generated_at: str = field(default_factory=utc_now_iso)

    @property
    def no_resources_created(self) -> bool:
        return self.staged or not self.results

    @property
    def has_failures(self) -> bool:
        return any(counts.failed for counts in self.per_type.values())

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "generated_at": self.generated_at,
            "staged": self.staged,
            "no_resources_created": self.no_resources_created,
            "total_examined": self.total_examined,
            "skipped_records": self.skipped_records,
            "per_type": {name: counts.to_dict() for name, counts in sorted(self.per_type.items())},
            "operations": self.operations,
            "results": self.results,
            "redactions": self.redactions,
            "errors": [error.to_dict() for error in self.errors],
            "temporary_id_map": self.temporary_id_map,
            "warnings": self.warnings,
        }
        if self.staged:
            payload["previews"] = self.previews
        if self.config_digest:
            payload["config_digest"] = self.config_digest
        return payload


def build_summary(
    operations: list[Operation],
    *,
    skipped_records: int,
    staged: bool,
    mapping: TemporaryIdMapping,
    batch_errors: list[PipelineError] | None = None,
    events: list[DiagnosticEvent] | None = None,
    config_digest: str | None = None,
) -> BatchSummary:
    summary = BatchSummary(
        total_examined=len(operations) + skipped_records,
        skipped_records=skipped_records,
        staged=staged,
        config_digest=config_digest,
    )
    summary.errors.extend(batch_errors or [])

    for operation in sorted(operations, key=lambda op: op.index):
        counts = summary.per_type.setdefault(operation.type, TypeCounts())
        if operation.status in (OperationStatus.EXECUTED, OperationStatus.PREVIEWED):
            counts.accepted += 1
        elif operation.status in REJECTION_STATUSES:
            counts.rejected += 1
        elif operation.status is OperationStatus.FAILED:
            counts.failed += 1

        summary.operations.append(operation.summary_dict())
        if operation.error is not None:
            summary.errors.append(operation.error)
        for redaction in operation.redactions:
            summary.redactions.append({"index": operation.index, **redaction.to_dict()})
        if operation.status is OperationStatus.EXECUTED and operation.kind is not OperationType.NOOP:
            result: dict[str, object] = {"index": operation.index, "type": operation.type}
            if operation.result_ref is not None:
                result.update(operation.result_ref.to_dict())
            summary.results.append(result)
        if operation.preview is not None:
            summary.previews.append(operation.preview)

    summary.temporary_id_map = mapping.to_dict()
    summary.warnings = [
        f"#{event.index} {event.message}" if event.index is not None else event.message
        for event in (events or [])
        if event.level in {"warning", "error"}
    ]
    return summary
