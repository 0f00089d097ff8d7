from __future__ import annotations

from safe_output_gate.diagnostics import DiagnosticEvent
from safe_output_gate.domain.operations import Operation, OperationStatus
from safe_output_gate.domain.references import ResourceRef
from safe_output_gate.domain.temporary_id import TemporaryIdMapping
from safe_output_gate.errors import ErrorCode, PipelineError
from safe_output_gate.sanitize.models import Redaction
from safe_output_gate.summary import build_summary


def _op(index: int, op_type: str, status: OperationStatus, **kwargs) -> Operation:
    op = Operation(index=index, type=op_type, raw_fields={}, **kwargs)
    op.status = status
    return op


def _operations() -> list[Operation]:
    executed = _op(
        0,
        "create-issue",
        OperationStatus.EXECUTED,
        result_ref=ResourceRef(repo="octo/widgets", number=7, url="https://github.com/octo/widgets/issues/7"),
        redactions=[Redaction(kind="mention", length=6, reason="wrapped", field="body")],
        attempts=1,
    )
    rejected = _op(
        1,
        "add-comment",
        OperationStatus.REJECTED,
        error=PipelineError(code=ErrorCode.LIMIT_EXCEEDED, message="too many", index=1),
    )
    failed = _op(
        2,
        "add-comment",
        OperationStatus.FAILED,
        error=PipelineError(code=ErrorCode.PLATFORM_API_ERROR, message="HTTP 500", index=2, transient=True),
    )
    noop = _op(3, "noop", OperationStatus.EXECUTED)
    return [failed, noop, executed, rejected]


def test_counts_per_type() -> None:
    summary = build_summary(_operations(), skipped_records=1, staged=False, mapping=TemporaryIdMapping())

    assert summary.total_examined == 5
    assert summary.per_type["create-issue"].to_dict() == {"accepted": 1, "rejected": 0, "failed": 0}
    assert summary.per_type["add-comment"].to_dict() == {"accepted": 0, "rejected": 1, "failed": 1}
    assert summary.has_failures is True
    assert [error.code for error in summary.errors] == [ErrorCode.LIMIT_EXCEEDED, ErrorCode.PLATFORM_API_ERROR]


def test_results_exclude_noop_and_follow_index_order() -> None:
    summary = build_summary(_operations(), skipped_records=0, staged=False, mapping=TemporaryIdMapping())

    assert summary.results == [
        {
            "index": 0,
            "type": "create-issue",
            "kind": "issue",
            "repo": "octo/widgets",
            "number": 7,
            "url": "https://github.com/octo/widgets/issues/7",
        }
    ]
    assert [op["index"] for op in summary.operations] == [0, 1, 2, 3]
    assert summary.no_resources_created is False
    assert summary.redactions == [
        {"index": 0, "kind": "mention", "length": 6, "reason": "wrapped", "field": "body"}
    ]


def test_to_dict_shape() -> None:
    mapping = TemporaryIdMapping()
    mapping.bind("aw_abc123", ResourceRef(repo="octo/widgets", number=7))
    events = [
        DiagnosticEvent(stage="validate", level="warning", index=1, message="LIMIT_EXCEEDED: too many"),
        DiagnosticEvent(stage="summary", message="done"),
    ]

    payload = build_summary(
        _operations(),
        skipped_records=0,
        staged=False,
        mapping=mapping,
        events=events,
        config_digest="abc",
    ).to_dict()

    assert payload["temporary_id_map"] == {"aw_abc123": {"kind": "issue", "repo": "octo/widgets", "number": 7}}
    assert payload["warnings"] == ["#1 LIMIT_EXCEEDED: too many"]
    assert payload["config_digest"] == "abc"
    assert "previews" not in payload
    assert payload["errors"][1]["code"] == "PLATFORM_API_ERROR"


def test_previews_only_reported_when_staged() -> None:
    previewed = _op(0, "create-issue", OperationStatus.PREVIEWED, preview={"index": 0, "requests": []})

    summary = build_summary([previewed], skipped_records=0, staged=True, mapping=TemporaryIdMapping())

    assert summary.no_resources_created is True
    assert summary.per_type["create-issue"].accepted == 1
    assert summary.to_dict()["previews"] == [{"index": 0, "requests": []}]
