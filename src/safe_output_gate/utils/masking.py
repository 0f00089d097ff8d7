"""Shared secret masking utilities.

``mask_secrets`` scrubs token-shaped substrings out of free text (platform
error messages); ``redact_sensitive_fields`` replaces values whose keys look
sensitive in nested payloads before they are written to artifacts.
"""

from __future__ import annotations

import re

_MAX_REDACT_DEPTH = 20

# Canonical list of sensitive key markers (substring match, case-insensitive).
SENSITIVE_KEY_MARKERS: list[str] = [
    "password",
    "secret",
    "token",
    "apikey",
    "credential",
    "authorization",
]

_SECRET_PATTERNS = (
    re.compile(r"\b(?:ghp|gho|ghu|ghs|ghr)_[A-Za-z0-9]{20,}\b"),
    re.compile(r"\bgithub_pat_[A-Za-z0-9_]{20,}\b"),
    re.compile(r"(?i)\b(bearer|token)\s+[A-Za-z0-9._~+/=-]{8,}"),
)


def mask_secrets(text: str, extra: tuple[str, ...] = (), mask: str = "***") -> str:
    """Replace known token formats, and any literal in ``extra``, with ``mask``."""
    for literal in extra:
        if literal:
            text = text.replace(literal, mask)
    for pattern in _SECRET_PATTERNS:
        if pattern.groups:
            text = pattern.sub(lambda m: f"{m.group(1)} {mask}", text)
        else:
            text = pattern.sub(mask, text)
    return text


def redact_sensitive_fields(
    value: object,
    *,
    mask: str = "***",
    depth: int = 0,
    max_depth: int = _MAX_REDACT_DEPTH,
) -> object:
    """Recursively replace sensitive values in dicts/lists.

    Keys are matched by *substring* against ``SENSITIVE_KEY_MARKERS``
    (case-insensitive).  When ``max_depth`` is exceeded the entire
    sub-tree is replaced with *mask*.
    """
    if depth >= max_depth:
        return mask
    if isinstance(value, dict):
        redacted: dict[str, object] = {}
        for key, val in value.items():
            if any(marker in str(key).lower() for marker in SENSITIVE_KEY_MARKERS):
                redacted[key] = mask
            else:
                redacted[key] = redact_sensitive_fields(
                    val, mask=mask, depth=depth + 1, max_depth=max_depth,
                )
        return redacted
    if isinstance(value, list):
        return [
            redact_sensitive_fields(
                item, mask=mask, depth=depth + 1, max_depth=max_depth,
            )
            for item in value
        ]
    return value
