from __future__ import annotations

from pathlib import Path

from safe_output_gate.domain.operations import OperationStatus
from safe_output_gate.domain.records import load_records, normalize_field_name, parse_records
from safe_output_gate.errors import ErrorCode


def test_normalize_field_name() -> None:
    assert normalize_field_name("temporaryId") == "temporary_id"
    assert normalize_field_name("parent-ref") == "parent_ref"
    assert normalize_field_name("repo") == "target_repository"
    assert normalize_field_name("targetRepository") == "target_repository"


def test_parse_jsonl(sink) -> None:
    text = "\n".join(
        [
            '{"type": "create_issue", "title": "A", "temporaryId": "aw_abc123"}',
            "",
            '{"type": "noop", "message": "nothing"}',
        ]
    )

    batch = parse_records(text, sink)

    assert [op.type for op in batch.operations] == ["create-issue", "noop"]
    assert [op.index for op in batch.operations] == [0, 1]
    assert batch.operations[0].raw_fields == {"title": "A", "temporary_id": "aw_abc123"}
    assert batch.operations[0].status is OperationStatus.PENDING
    assert batch.skipped == 0


def test_malformed_records_are_skipped_with_position(sink) -> None:
    text = "\n".join(['{"type": "noop", "message": "a"}', "{oops", "[1, 2]", '{"title": "no type"}'])

    batch = parse_records(text, sink)

    assert len(batch.operations) == 1
    assert batch.skipped == 3
    assert [e.index for e in batch.errors] == [1, 2, 3]
    assert all(e.code is ErrorCode.MALFORMED_RECORD for e in batch.errors)
    assert len(sink.warnings()) == 3


def test_parse_mappings(sink) -> None:
    batch = parse_records([{"type": "add-comment", "body": "hi", "item_number": 3}], sink)

    assert batch.operations[0].raw_fields == {"body": "hi", "item_number": 3}


def test_load_missing_file_is_empty_batch(tmp_path: Path, sink) -> None:
    batch = load_records(str(tmp_path / "missing.jsonl"), sink)

    assert batch.operations == []
    assert sink.events and sink.events[0].level == "info"


def test_load_file(tmp_path: Path, sink) -> None:
    path = tmp_path / "outputs.jsonl"
    path.write_text('{"type": "noop", "message": "x"}\n', encoding="utf-8")

    assert len(load_records(str(path), sink).operations) == 1
