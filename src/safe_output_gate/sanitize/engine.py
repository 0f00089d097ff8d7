"""Sanitization engine.

Stages run strictly in this order:

1. Unicode NFC normalization
2. HTML entity decoding (one level of ``&amp;`` double encoding)
3. zero-width / bidi control stripping
4. full-width ASCII folding
5. ANSI escape and control character stripping
6. mention neutralization, after escaping backticks left unpaired in prose
7. template delimiter escaping
8. link domain filtering (only when a domain allow-list is configured)
9. code-region preservation: stages 6-8 skip fenced and inline code
   regions, stages 1-5 apply everywhere

Once stages 1-5 are done the text is scanned again for encoded significant
characters, since stripping and folding can join the pieces of an entity.

The neutralization stages (3-8) are idempotent. Entity decoding is not
idempotent for text encoded more than once, which is why triple-encoded
significant characters are rejected instead of decoded.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

from safe_output_gate.sanitize.markdown import (
    escape_unpaired_backticks,
    filter_link_domains,
    neutralize_mentions,
    neutralize_template_delimiters,
    split_code_regions,
)
from safe_output_gate.sanitize.models import Redaction, SanitizationResult
from safe_output_gate.sanitize.normalize import (
    decode_entities,
    fold_fullwidth,
    normalize_unicode,
    reject_encoded_significant,
    strip_control_sequences,
    strip_invisible,
)

_CHARACTER_STAGES: tuple[Callable[[str], tuple[str, Redaction | None]], ...] = (
    normalize_unicode,
    decode_entities,
    strip_invisible,
    fold_fullwidth,
    strip_control_sequences,
)


class Sanitizer:
    """Deterministic, side-effect-free text sanitizer.

    ``allowed_domains`` empty or None disables link filtering.
    """

    def __init__(
        self,
        allowed_mentions: Iterable[str] = (),
        allowed_domains: Iterable[str] | None = None,
    ) -> None:
        self._allowed_mentions = frozenset(m.lstrip("@").lower() for m in allowed_mentions)
        self._allowed_domains = tuple(allowed_domains or ())

    def sanitize(self, text: str) -> SanitizationResult:
        """Raises ``SanitizationUnrecoverableError`` for text that cannot be made safe."""
        redactions: list[Redaction] = []
        for stage in _CHARACTER_STAGES:
            text, redaction = stage(text)
            if redaction is not None:
                redactions.append(redaction)
        reject_encoded_significant(text)

        chunks: list[str] = []
        for segment in split_code_regions(text):
            if segment.is_code:
                chunks.append(segment.text)
                continue
            prose, found = escape_unpaired_backticks(segment.text)
            redactions.extend(found)
            prose, found = neutralize_mentions(prose, self._allowed_mentions)
            redactions.extend(found)
            prose, found = neutralize_template_delimiters(prose)
            redactions.extend(found)
            if self._allowed_domains:
                prose, found = filter_link_domains(prose, self._allowed_domains)
                redactions.extend(found)
            chunks.append(prose)

        return SanitizationResult(text="".join(chunks), redactions=tuple(redactions))

    def sanitize_value(self, value: object, field: str) -> tuple[object, list[Redaction]]:
        """Sanitize a field value: strings, lists of strings and string-valued mappings."""
        if isinstance(value, str):
            result = self.sanitize(value)
            return result.text, [r.for_field(field) for r in result.redactions]
        if isinstance(value, list):
            items: list[object] = []
            redactions: list[Redaction] = []
            for item in value:
                clean, found = self.sanitize_value(item, field)
                items.append(clean)
                redactions.extend(found)
            return items, redactions
        if isinstance(value, dict):
            mapping: dict[object, object] = {}
            redactions = []
            for key, item in value.items():
                clean, found = self.sanitize_value(item, f"{field}.{key}")
                mapping[key] = clean
                redactions.extend(found)
            return mapping, redactions
        return value, []


def sanitize_text(
    text: str,
    allowed_mentions: Iterable[str] = (),
    allowed_domains: Iterable[str] | None = None,
) -> SanitizationResult:
    return Sanitizer(allowed_mentions, allowed_domains).sanitize(text)
