"""Loader for the safe-output configuration (YAML or JSON)."""

from __future__ import annotations

from pathlib import Path

import yaml

from safe_output_gate.errors import ConfigurationIntegrityError
from safe_output_gate.policy.models import SafeOutputsConfig
from safe_output_gate.utils.hashing import canonical_json, sha256_text

_DIGEST_PREFIX = "sha256:"


def config_digest(data: dict[str, object]) -> str:
    """SHA-256 of the canonical configuration with the ``integrity`` key removed."""
    body = {key: value for key, value in data.items() if key != "integrity"}
    return sha256_text(canonical_json(body))


def _normalize_digest(value: str) -> str:
    digest = value.strip().lower()
    if digest.startswith(_DIGEST_PREFIX):
        digest = digest[len(_DIGEST_PREFIX):]
    return digest


def verify_integrity(data: dict[str, object], expected_sha256: str | None = None) -> str:
    """Check the embedded and/or externally supplied digest; return the computed one."""
    actual = config_digest(data)
    embedded = data.get("integrity")
    for expected in (embedded, expected_sha256):
        if not expected:
            continue
        if not isinstance(expected, str) or _normalize_digest(expected) != actual:
            raise ConfigurationIntegrityError(str(expected), actual)
    return actual


def parse_safe_outputs_config(
    data: dict[str, object] | None,
    expected_sha256: str | None = None,
) -> SafeOutputsConfig:
    data = data or {}
    if not isinstance(data, dict):
        raise ValueError("Safe-output configuration must be a mapping")
    verify_integrity(data, expected_sha256)
    return SafeOutputsConfig.from_mapping(data)


def load_safe_outputs_config(
    path: str,
    expected_sha256: str | None = None,
) -> SafeOutputsConfig:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Safe-output configuration not found: {config_path}")
    with config_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return parse_safe_outputs_config(data, expected_sha256)
