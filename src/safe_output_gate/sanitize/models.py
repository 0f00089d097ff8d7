"""Sanitization result types."""

from __future__ import annotations

from dataclasses import dataclass, field, replace


@dataclass(frozen=True)
class Redaction:
    """Record of one lossy change; the original text itself is not kept.

    Attributes:
        kind: Stage that made the change (``mention``, ``url``, ...).
        length: Length of the original span that was removed or rewritten.
        reason: Short human-readable explanation.
        field: Operation field the text came from, once known.
    """

    kind: str
    length: int
    reason: str
    field: str | None = None

    def for_field(self, name: str) -> "Redaction":
        return replace(self, field=name)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "kind": self.kind,
            "length": self.length,
            "reason": self.reason,
        }
        if self.field is not None:
            payload["field"] = self.field
        return payload


@dataclass(frozen=True)
class SanitizationResult:
    text: str
    redactions: tuple[Redaction, ...] = field(default_factory=tuple)

    @property
    def changed(self) -> bool:
        return bool(self.redactions)
