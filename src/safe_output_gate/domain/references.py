"""Typed resource references.

A field that points at a platform resource holds either ``Resolved`` (a
concrete ``ResourceRef``) or ``Unresolved`` (a temporary id placeholder).
Placeholders are swapped for resolved references in place; text is never
find/replaced.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class ResourceRef:
    repo: str
    number: int | None = None
    url: str | None = None
    kind: str = "issue"
    id: int | None = None

    def display(self, current_repo: str | None = None) -> str:
        """Render as ``#N`` within ``current_repo``, ``owner/repo#N`` elsewhere."""
        if self.number is None:
            return self.url or self.repo
        if current_repo is not None and self.repo == current_repo:
            return f"#{self.number}"
        return f"{self.repo}#{self.number}"

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"kind": self.kind, "repo": self.repo}
        if self.number is not None:
            payload["number"] = self.number
        if self.url is not None:
            payload["url"] = self.url
        if self.id is not None:
            payload["id"] = self.id
        return payload


@dataclass(frozen=True)
class Unresolved:
    placeholder: str


@dataclass(frozen=True)
class Resolved:
    ref: ResourceRef


Reference = Union[Unresolved, Resolved]


_TEXT_REFERENCE_RE = re.compile(r"#(aw_[A-Za-z0-9]{4,12})(?![A-Za-z0-9_])", re.IGNORECASE)


@dataclass(frozen=True)
class TextTemplate:
    """Free text split into literal chunks and temporary-id placeholders."""

    parts: tuple[str | Reference, ...]

    @classmethod
    def parse(cls, text: str) -> "TextTemplate":
        parts: list[str | Reference] = []
        cursor = 0
        for match in _TEXT_REFERENCE_RE.finditer(text):
            if match.start() > cursor:
                parts.append(text[cursor : match.start()])
            parts.append(Unresolved(match.group(1).lower()))
            cursor = match.end()
        if cursor < len(text):
            parts.append(text[cursor:])
        return cls(tuple(parts))

    @property
    def placeholders(self) -> set[str]:
        return {p.placeholder for p in self.parts if isinstance(p, Unresolved)}

    @property
    def has_references(self) -> bool:
        return any(not isinstance(p, str) for p in self.parts)

    def bind(self, resolve) -> "TextTemplate":
        """Return a copy where placeholders known to ``resolve`` become ``Resolved``."""
        bound: list[str | Reference] = []
        for part in self.parts:
            if isinstance(part, Unresolved):
                ref = resolve(part.placeholder)
                bound.append(Resolved(ref) if ref is not None else part)
            else:
                bound.append(part)
        return TextTemplate(tuple(bound))

    def render(self, current_repo: str | None = None) -> str:
        chunks: list[str] = []
        for part in self.parts:
            if isinstance(part, str):
                chunks.append(part)
            elif isinstance(part, Resolved):
                chunks.append(part.ref.display(current_repo))
            else:
                chunks.append(f"#{part.placeholder}")
        return "".join(chunks)
