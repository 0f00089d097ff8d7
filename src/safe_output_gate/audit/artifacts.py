"""Artifact storage for batch results."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

from safe_output_gate.audit.models import ArtifactRecord
from safe_output_gate.utils.hashing import sha256_bytes
from safe_output_gate.utils.masking import redact_sensitive_fields
from safe_output_gate.utils.serialization import json_default


def utc_now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


class ArtifactStore:
    def __init__(self, base_path: str) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)

    def write_json(self, kind: str, payload: dict, filename: str | None = None) -> ArtifactRecord:
        data = json.dumps(
            redact_sensitive_fields(payload), ensure_ascii=True, indent=2, default=json_default
        ).encode("utf-8")
        return self._write_bytes(kind, data, filename or f"{kind}-{uuid4().hex}.json")

    def read_json(self, location: str) -> dict:
        path = Path(location).resolve()
        # Reject locations outside the store.
        if not path.is_relative_to(self._base.resolve()):
            raise ValueError(f"Path is outside base directory: {location}")
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)

    def _write_bytes(self, kind: str, data: bytes, filename: str) -> ArtifactRecord:
        if Path(filename).name != filename:
            raise ValueError(f"Artifact filename must not contain a path: {filename}")
        artifact_id = uuid4().hex
        path = self._base / filename
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_bytes(data)
        tmp_path.replace(path)
        return ArtifactRecord(
            artifact_id=artifact_id,
            kind=kind,
            location=str(path),
            checksum=sha256_bytes(data),
            created_at=utc_now_iso(),
        )
