"""Raw record stream parsing."""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from safe_output_gate.diagnostics import DiagnosticEvent, DiagnosticSink
from safe_output_gate.domain.operations import Operation, normalize_type_tag
from safe_output_gate.errors import ErrorCode, PipelineError

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")

_FIELD_ALIASES = {
    "repo": "target_repository",
    "repository": "target_repository",
}


def normalize_field_name(name: str) -> str:
    """``temporaryId`` / ``temporary-id`` -> ``temporary_id``."""
    snake = _CAMEL_BOUNDARY.sub(r"_\1", name.strip()).replace("-", "_").lower()
    return _FIELD_ALIASES.get(snake, snake)


@dataclass
class RecordBatch:
    operations: list[Operation] = field(default_factory=list)
    skipped: int = 0
    errors: list[PipelineError] = field(default_factory=list)


def _normalize_fields(record: Mapping[str, object]) -> dict[str, object]:
    fields: dict[str, object] = {}
    for key, value in record.items():
        if key == "type" or not isinstance(key, str):
            continue
        fields[normalize_field_name(key)] = value
    return fields


def parse_records(
    source: str | Iterable[str | Mapping[str, object]],
    sink: DiagnosticSink,
) -> RecordBatch:
    """Turn a JSONL document or an iterable of records into pending operations.

    Records that are not valid JSON objects, or that lack a string ``type``,
    are skipped with a warning; the batch index of every kept operation is
    the record's position in the stream so errors point back at the input.
    """
    items: Iterable[str | Mapping[str, object]]
    if isinstance(source, str):
        items = source.splitlines()
    else:
        items = source

    batch = RecordBatch()
    position = 0
    for item in items:
        if isinstance(item, str):
            line = item.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as exc:
                _skip(batch, sink, position, f"Invalid JSON record: {exc.msg}")
                position += 1
                continue
        else:
            record = item

        if not isinstance(record, Mapping):
            _skip(batch, sink, position, "Record is not a JSON object")
        elif not isinstance(record.get("type"), str) or not record["type"].strip():
            _skip(batch, sink, position, "Record has no type tag")
        else:
            batch.operations.append(
                Operation(
                    index=position,
                    type=normalize_type_tag(record["type"]),
                    raw_fields=_normalize_fields(record),
                )
            )
        position += 1

    return batch


def load_records(path: str, sink: DiagnosticSink) -> RecordBatch:
    records_path = Path(path)
    if not records_path.exists():
        sink.record(
            DiagnosticEvent(
                stage="records",
                level="info",
                message=f"No agent output found at {records_path}",
            )
        )
        return RecordBatch()
    return parse_records(records_path.read_text(encoding="utf-8"), sink)


def _skip(batch: RecordBatch, sink: DiagnosticSink, position: int, reason: str) -> None:
    batch.skipped += 1
    batch.errors.append(PipelineError(code=ErrorCode.MALFORMED_RECORD, message=reason, index=position))
    sink.record(
        DiagnosticEvent(
            stage="records",
            level="warning",
            index=position,
            message=f"Skipping malformed record: {reason}",
        )
    )
