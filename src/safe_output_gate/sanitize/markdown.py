"""Markdown-aware neutralization stages.

Mentions, template delimiters and links are rewritten only in prose; fenced
blocks and inline code spans pass through untouched.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from safe_output_gate.sanitize.models import Redaction
from safe_output_gate.utils.urls import is_url_allowed

REDACTED_URL = "redacted"

_FENCE_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})")
_BACKTICK_RUN_RE = re.compile(r"`+")

_MENTION_RE = re.compile(
    r"(?<![A-Za-z0-9_])@([A-Za-z0-9][A-Za-z0-9-]{0,38}(?:/[A-Za-z0-9][A-Za-z0-9._-]*)?)"
)

# First character of each delimiter mapped to the characters that may follow it.
_TEMPLATE_PAIRS = {"{": "{%#", "$": "{", "<": "%"}

_LINK_RE = re.compile(
    r"(?P<label>!?\[[^\]\n]*\])\(\s*(?P<angle><)?(?P<url>[^)\s>]*)>?(?P<title>\s+\"[^\"\n]*\")?\s*\)"
    r"|<(?P<autolink>[A-Za-z][A-Za-z0-9+.-]{1,31}:[^\s<>]*)>"
    r"|(?P<bare>(?<![\w/])https?://[^\s<>()\[\]`\"']+)"
)


@dataclass(frozen=True)
class Segment:
    text: str
    is_code: bool


def split_code_regions(text: str) -> list[Segment]:
    """Split text into prose and code segments.

    Fenced blocks (``` or ~~~, an unclosed fence runs to the end) and inline
    code spans are code. Joining the segment texts gives back the input.
    """
    segments: list[Segment] = []
    prose: list[str] = []
    fence: str | None = None
    block: list[str] = []

    def flush_prose() -> None:
        if prose:
            segments.extend(_split_inline_code("".join(prose)))
            prose.clear()

    for line in text.splitlines(keepends=True):
        match = _FENCE_RE.match(line)
        if fence is None:
            if match:
                flush_prose()
                fence = match.group(1)
                block.append(line)
            else:
                prose.append(line)
            continue
        block.append(line)
        if match and _closes_fence(match.group(1), fence, line):
            segments.append(Segment("".join(block), True))
            block = []
            fence = None

    if block:
        segments.append(Segment("".join(block), True))
    flush_prose()
    return segments


def _closes_fence(run: str, fence: str, line: str) -> bool:
    if run[0] != fence[0] or len(run) < len(fence):
        return False
    return not line.strip()[len(run):].strip()


def _is_escaped(text: str, index: int) -> bool:
    """True when ``text[index]`` follows an odd run of backslashes."""
    backslashes = 0
    while index - backslashes > 0 and text[index - backslashes - 1] == "\\":
        backslashes += 1
    return backslashes % 2 == 1


def _split_inline_code(text: str) -> list[Segment]:
    """Split out code spans: a backtick run closed by the next run of equal length.

    An escaped backtick cannot open a span, and a run with no closer is prose.
    """
    segments: list[Segment] = []
    cursor = 0
    position = 0
    while True:
        opener = _BACKTICK_RUN_RE.search(text, position)
        if opener is None:
            break
        position = opener.end()
        start = opener.start()
        if _is_escaped(text, start):
            start += 1
        width = opener.end() - start
        if not width:
            continue
        closer = next(
            (m for m in _BACKTICK_RUN_RE.finditer(text, opener.end()) if len(m.group(0)) == width),
            None,
        )
        if closer is None:
            continue
        if start > cursor:
            segments.append(Segment(text[cursor:start], False))
        segments.append(Segment(text[start : closer.end()], True))
        cursor = position = closer.end()
    if cursor < len(text):
        segments.append(Segment(text[cursor:], False))
    return segments


def escape_unpaired_backticks(text: str) -> tuple[str, list[Redaction]]:
    """Backslash-escape every backtick left in a prose segment.

    Prose from ``split_code_regions`` holds no complete code span, so any
    backtick here could otherwise pair with the code span a later stage adds.
    """
    chunks: list[str] = []
    escaped = 0
    for index, char in enumerate(text):
        if char == "`" and not _is_escaped(text, index):
            chunks.append("\\")
            escaped += 1
        chunks.append(char)
    if not escaped:
        return text, []
    return "".join(chunks), [
        Redaction(kind="backtick", length=escaped, reason="Escaped unpaired backticks")
    ]


def neutralize_mentions(
    text: str, allowed_mentions: frozenset[str]
) -> tuple[str, list[Redaction]]:
    """Wrap ``@name`` and ``@org/team`` in backticks unless allow-listed.

    A mention after an escaping backslash gets a second backslash so the
    opening backtick of the wrap stays live.
    """
    redactions: list[Redaction] = []

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name.lower() in allowed_mentions:
            return match.group(0)
        redactions.append(
            Redaction(kind="mention", length=len(match.group(0)), reason="Mention wrapped in code span")
        )
        prefix = "\\" if _is_escaped(text, match.start()) else ""
        return f"{prefix}`@{name}`"

    return _MENTION_RE.sub(_replace, text), redactions


def neutralize_template_delimiters(text: str) -> tuple[str, list[Redaction]]:
    """Backslash-escape both characters of ``{{``, ``{%``, ``{#``, ``${`` and ``<%``.

    A character already preceded by a backslash is left as is, so running
    this twice gives the same text.
    """
    marked: set[int] = set()
    for index in range(len(text) - 1):
        followers = _TEMPLATE_PAIRS.get(text[index])
        if followers and text[index + 1] in followers:
            marked.update((index, index + 1))
    if not marked:
        return text, []

    chunks: list[str] = []
    escaped = 0
    for index, char in enumerate(text):
        if index in marked and not (index > 0 and text[index - 1] == "\\"):
            chunks.append("\\")
            escaped += 1
        chunks.append(char)
    if not escaped:
        return text, []
    return "".join(chunks), [
        Redaction(
            kind="template_delimiter",
            length=escaped,
            reason="Escaped template engine delimiters",
        )
    ]


def filter_link_domains(
    text: str, allowed_domains: tuple[str, ...]
) -> tuple[str, list[Redaction]]:
    """Replace link, image, autolink and bare URLs whose host is not allow-listed."""
    redactions: list[Redaction] = []

    def _redact(url: str) -> None:
        redactions.append(
            Redaction(kind="url", length=len(url), reason="URL domain is not in the allow-list")
        )

    def _replace(match: re.Match[str]) -> str:
        if match.group("label") is not None:
            url = match.group("url")
            if not url or is_url_allowed(url, allowed_domains):
                return match.group(0)
            _redact(url)
            return f"{match.group('label')}({REDACTED_URL})"
        if match.group("autolink") is not None:
            url = match.group("autolink")
            if is_url_allowed(url, allowed_domains):
                return match.group(0)
            _redact(url)
            return f"({REDACTED_URL})"
        url = match.group("bare")
        if is_url_allowed(url, allowed_domains):
            return url
        _redact(url)
        return f"({REDACTED_URL})"

    return _LINK_RE.sub(_replace, text), redactions
