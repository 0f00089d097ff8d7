"""Character-level normalization stages.

These run on the whole text, code regions included, in the order the
functions appear here. Each returns the new text and at most one
aggregated ``Redaction``.
"""

from __future__ import annotations

import re
import unicodedata
from html.entities import html5

from safe_output_gate.errors import SanitizationUnrecoverableError
from safe_output_gate.sanitize.models import Redaction

_ENTITY_RE = re.compile(r"&(#[0-9]+|#[xX][0-9a-fA-F]+|[A-Za-z][A-Za-z0-9]*);")
_DOUBLE_ENCODED_RE = re.compile(
    r"&amp;(?=#[0-9]+;|#[xX][0-9a-fA-F]+;|[A-Za-z][A-Za-z0-9]*;)", re.IGNORECASE
)

# Characters that still matter to later stages if they survive as an entity.
_SIGNIFICANT_CHARS = frozenset("@{}$<%#")

_INVISIBLE_RE = re.compile(
    "[\u00ad\u180e\u200b-\u200f\u202a-\u202e\u2060-\u2064\u2066-\u2069\ufeff]"
)

_FULLWIDTH_TABLE = {code: code - 0xFEE0 for code in range(0xFF01, 0xFF5F)}
_FULLWIDTH_TABLE[0x3000] = 0x20
_FULLWIDTH_RE = re.compile("[\uff01-\uff5e\u3000]")

_ANSI_RE = re.compile(
    r"\x1b\[[0-9;?]*[ -/]*[@-~]"  # CSI
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)?"  # OSC
    r"|\x1b[()][A-Z0-9]"  # charset designators
    r"|\x1b[ -/]*[@-~]"  # other ESC sequences
)
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]|\r(?!\n)")


def normalize_unicode(text: str) -> tuple[str, Redaction | None]:
    normalized = unicodedata.normalize("NFC", text)
    if normalized == text:
        return text, None
    return normalized, Redaction(
        kind="unicode_normalization",
        length=len(text),
        reason="Text normalized to canonical composition (NFC)",
    )


def _decode_entity(body: str) -> str | None:
    if body.startswith(("#x", "#X")):
        digits, base = body[2:].lstrip("0") or "0", 16
    elif body.startswith("#"):
        digits, base = body[1:].lstrip("0") or "0", 10
    else:
        return html5.get(body + ";")
    if len(digits) > 8:
        return None
    code = int(digits, base)
    if code > 0x10FFFF or 0xD800 <= code <= 0xDFFF:
        return None
    return chr(code)


def reject_encoded_significant(text: str) -> None:
    """Raise if an entity for a character the later stages look for is still present.

    Runs after entity decoding and again once the remaining character stages
    are done, since stripping or folding can join the pieces of an entity.
    """
    for match in _ENTITY_RE.finditer(text):
        value = _decode_entity(match.group(1))
        if value is not None and _SIGNIFICANT_CHARS.intersection(value):
            raise SanitizationUnrecoverableError(
                "Text contains encoded entities that cannot be safely neutralized"
            )


def decode_entities(text: str) -> tuple[str, Redaction | None]:
    """Decode named, decimal and hex entities, unwrapping one ``&amp;`` level first.

    Invalid code points stay undecoded. If decoding leaves another entity
    that would produce a character the later stages look for, the text was
    encoded more than twice and is rejected.
    """
    if "&" not in text:
        return text, None

    unwrapped = _DOUBLE_ENCODED_RE.sub("&", text)
    decoded_count = 0

    def _replace(match: re.Match[str]) -> str:
        nonlocal decoded_count
        value = _decode_entity(match.group(1))
        if value is None:
            return match.group(0)
        decoded_count += 1
        return value

    decoded = _ENTITY_RE.sub(_replace, unwrapped)
    reject_encoded_significant(decoded)

    if decoded == text:
        return text, None
    return decoded, Redaction(
        kind="entity_decoding",
        length=len(text) - len(decoded),
        reason=f"Decoded {decoded_count} HTML entity reference(s)",
    )


def strip_invisible(text: str) -> tuple[str, Redaction | None]:
    stripped, count = _INVISIBLE_RE.subn("", text)
    if not count:
        return text, None
    return stripped, Redaction(
        kind="invisible_characters",
        length=count,
        reason="Removed zero-width and bidirectional control characters",
    )


def fold_fullwidth(text: str) -> tuple[str, Redaction | None]:
    count = len(_FULLWIDTH_RE.findall(text))
    if not count:
        return text, None
    return text.translate(_FULLWIDTH_TABLE), Redaction(
        kind="fullwidth_folding",
        length=count,
        reason="Folded full-width characters to ASCII",
    )


def strip_control_sequences(text: str) -> tuple[str, Redaction | None]:
    text = text.replace("\r\n", "\n")
    without_ansi = _ANSI_RE.sub("", text)
    cleaned = _CONTROL_RE.sub("", without_ansi)
    removed = len(text) - len(cleaned)
    if not removed:
        return text, None
    return cleaned, Redaction(
        kind="control_sequences",
        length=removed,
        reason="Removed ANSI escape sequences and control characters",
    )
