from __future__ import annotations

import pytest

from safe_output_gate.domain.operations import Operation, OperationStatus, OperationType
from safe_output_gate.domain.references import Resolved, ResourceRef, TextTemplate, Unresolved
from safe_output_gate.errors import ErrorCode, PipelineError


def test_type_tags_are_normalized() -> None:
    assert OperationType.parse("Create_Issue") is OperationType.CREATE_ISSUE
    assert OperationType.parse("delete-repo") is None
    assert OperationType.parse(3) is None


def test_status_only_moves_forward() -> None:
    op = Operation(index=0, type="noop", raw_fields={})
    op.advance(OperationStatus.VALIDATED)
    op.advance(OperationStatus.AUTHORIZED)

    with pytest.raises(ValueError, match="back to"):
        op.advance(OperationStatus.SANITIZED)


def test_terminal_status_is_final() -> None:
    op = Operation(index=4, type="noop", raw_fields={})
    op.reject(PipelineError(code=ErrorCode.INVALID_SCHEMA, message="bad"))

    assert op.error.index == 4
    assert op.is_terminal
    with pytest.raises(ValueError, match="already rejected"):
        op.advance(OperationStatus.EXECUTED)


def test_resolve_references_in_place() -> None:
    ref = ResourceRef(repo="octo/widgets", number=12)
    op = Operation(index=0, type="add-comment", raw_fields={})
    op.references["item_number"] = Unresolved("aw_abc123")
    op.text_templates["body"] = TextTemplate.parse("see #aw_abc123 and #aw_other1")

    op.resolve_references(lambda key: ref if key == "aw_abc123" else None)

    assert op.references["item_number"] == Resolved(ref)
    assert op.reference_number("item_number") == 12
    assert op.referenced_ids == {"aw_other1"}
    assert op.rendered_text("body", "octo/widgets") == "see #12 and #aw_other1"


def test_summary_dict_omits_empty_parts() -> None:
    op = Operation(index=2, type="noop", raw_fields={})

    assert op.summary_dict() == {"index": 2, "type": "noop", "status": "pending"}
