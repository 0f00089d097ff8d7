"""Domain objects for proposed operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from safe_output_gate.domain.references import (
    Reference,
    Resolved,
    ResourceRef,
    TextTemplate,
    Unresolved,
)
from safe_output_gate.errors import PipelineError
from safe_output_gate.sanitize.models import Redaction


class OperationType(str, Enum):
    CREATE_ISSUE = "create-issue"
    ADD_COMMENT = "add-comment"
    ADD_LABELS = "add-labels"
    UPDATE_ISSUE = "update-issue"
    CREATE_PULL_REQUEST = "create-pull-request"
    LINK_SUB_ISSUE = "link-sub-issue"
    ASSIGN_TO_AGENT = "assign-to-agent"
    DISPATCH_WORKFLOW = "dispatch-workflow"
    NOOP = "noop"

    @classmethod
    def parse(cls, tag: object) -> "OperationType | None":
        if not isinstance(tag, str):
            return None
        try:
            return cls(normalize_type_tag(tag))
        except ValueError:
            return None


def normalize_type_tag(tag: str) -> str:
    return tag.strip().lower().replace("_", "-")


class OperationStatus(str, Enum):
    PENDING = "pending"
    VALIDATED = "validated"
    SANITIZED = "sanitized"
    AUTHORIZED = "authorized"
    RESOLVED = "resolved"
    EXECUTED = "executed"
    PREVIEWED = "previewed"
    REJECTED = "rejected"
    FAILED = "failed"
    BLOCKED = "blocked"


_PROGRESSION = (
    OperationStatus.PENDING,
    OperationStatus.VALIDATED,
    OperationStatus.SANITIZED,
    OperationStatus.AUTHORIZED,
    OperationStatus.RESOLVED,
)

TERMINAL_STATUSES = frozenset(
    {
        OperationStatus.EXECUTED,
        OperationStatus.PREVIEWED,
        OperationStatus.REJECTED,
        OperationStatus.FAILED,
        OperationStatus.BLOCKED,
    }
)

# Rejected before execution: counted as "rejected" in the summary.
REJECTION_STATUSES = frozenset({OperationStatus.REJECTED, OperationStatus.BLOCKED})


@dataclass
class Operation:
    """One proposed action moving through the pipeline.

    ``raw_fields`` holds the record as submitted until sanitization replaces
    free text in ``sanitized_fields``; after that the raw text fields are
    dropped and only redaction records remain.
    """

    index: int
    type: str
    raw_fields: dict[str, object]
    sanitized_fields: dict[str, object] = field(default_factory=dict)
    target_repository: str | None = None
    temporary_id: str | None = None
    references: dict[str, Reference] = field(default_factory=dict)
    text_templates: dict[str, TextTemplate] = field(default_factory=dict)
    status: OperationStatus = OperationStatus.PENDING
    result_ref: ResourceRef | None = None
    error: PipelineError | None = None
    redactions: list[Redaction] = field(default_factory=list)
    preview: dict[str, object] | None = None
    attempts: int = 0

    @property
    def kind(self) -> OperationType | None:
        return OperationType.parse(self.type)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def referenced_ids(self) -> set[str]:
        ids = {ref.placeholder for ref in self.references.values() if isinstance(ref, Unresolved)}
        for template in self.text_templates.values():
            ids |= template.placeholders
        return ids

    def advance(self, status: OperationStatus) -> None:
        if self.is_terminal:
            raise ValueError(
                f"Operation {self.index} is already {self.status.value}; cannot move to {status.value}"
            )
        if status in TERMINAL_STATUSES:
            self.status = status
            return
        if _PROGRESSION.index(status) <= _PROGRESSION.index(self.status):
            raise ValueError(
                f"Operation {self.index} cannot move from {self.status.value} back to {status.value}"
            )
        self.status = status

    def reject(self, error: PipelineError, status: OperationStatus = OperationStatus.REJECTED) -> None:
        if error.index is None:
            error.index = self.index
        self.error = error
        self.advance(status)

    def resolve_references(self, lookup) -> None:
        """Swap placeholders known to ``lookup`` for ``Resolved`` references in place."""
        for name, ref in list(self.references.items()):
            if isinstance(ref, Unresolved):
                target = lookup(ref.placeholder)
                if target is not None:
                    self.references[name] = Resolved(target)
        for name, template in list(self.text_templates.items()):
            self.text_templates[name] = template.bind(lookup)

    def reference_number(self, name: str) -> int | None:
        ref = self.references.get(name)
        if isinstance(ref, Resolved):
            return ref.ref.number
        return None

    def rendered_text(self, name: str, current_repo: str | None = None) -> object:
        template = self.text_templates.get(name)
        if template is not None:
            return template.render(current_repo)
        return self.sanitized_fields.get(name)

    def summary_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "index": self.index,
            "type": self.type,
            "status": self.status.value,
        }
        if self.target_repository:
            payload["repository"] = self.target_repository
        if self.temporary_id:
            payload["temporary_id"] = self.temporary_id
        if self.result_ref is not None:
            payload["result"] = self.result_ref.to_dict()
        if self.attempts:
            payload["attempts"] = self.attempts
        if self.error is not None:
            payload["error"] = self.error.to_dict()
        return payload
