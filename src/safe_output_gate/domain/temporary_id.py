"""Temporary identifier syntax and the placeholder mapping."""

from __future__ import annotations

import json
import logging
import re

from safe_output_gate.domain.references import Reference, Resolved, ResourceRef, Unresolved

logger = logging.getLogger(__name__)

TEMPORARY_ID_PREFIX = "aw_"
_TEMPORARY_ID_RE = re.compile(r"^aw_[A-Za-z0-9]{4,12}$", re.IGNORECASE)
_NUMBER_RE = re.compile(r"^[0-9]+$")


def is_temporary_id(value: object) -> bool:
    return isinstance(value, str) and bool(_TEMPORARY_ID_RE.match(value))


def normalize_temporary_id(value: str) -> str:
    return value.strip().lower()


def parse_reference(value: object, default_repo: str) -> Reference:
    """Parse an item reference field.

    Accepts a positive integer, a numeric string, or a temporary id, each
    optionally prefixed with ``#``. Raises ``ValueError`` with a message fit
    for the batch summary otherwise.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid item number: {value}")
    if isinstance(value, int):
        if value <= 0:
            raise ValueError(f"Invalid item number: {value}")
        return Resolved(ResourceRef(repo=default_repo, number=value))
    if not isinstance(value, str):
        raise ValueError("Item number is missing" if value is None else f"Invalid item number: {value}")

    text = value.strip()
    bare = text[1:] if text.startswith("#") else text
    if bare.lower().startswith(TEMPORARY_ID_PREFIX):
        if not is_temporary_id(bare):
            raise ValueError(
                f"Invalid temporary ID format: '{text}'. Temporary IDs must be 'aw_' "
                "followed by 4 to 12 alphanumeric characters."
            )
        return Unresolved(normalize_temporary_id(bare))
    if _NUMBER_RE.match(bare) and int(bare) > 0:
        return Resolved(ResourceRef(repo=default_repo, number=int(bare)))
    raise ValueError(f"Invalid item number: {text}")


class TemporaryIdMapping:
    """Bidirectional placeholder map.

    A placeholder points either at another placeholder (a chain) or at a
    concrete ``ResourceRef``. Each placeholder has exactly one final target;
    rebinding to a different target is an error.
    """

    def __init__(self) -> None:
        self._targets: dict[str, str | ResourceRef] = {}
        self._reverse: dict[ResourceRef, set[str]] = {}

    def __contains__(self, placeholder: object) -> bool:
        return isinstance(placeholder, str) and normalize_temporary_id(placeholder) in self._targets

    def __len__(self) -> int:
        return len(self._targets)

    def bind(self, placeholder: str, ref: ResourceRef) -> None:
        key = normalize_temporary_id(placeholder)
        existing = self._targets.get(key)
        if existing is not None and existing != ref:
            raise ValueError(f"Temporary ID '{key}' is already bound to a different target")
        self._targets[key] = ref
        self._reverse.setdefault(ref, set()).add(key)

    def alias(self, placeholder: str, target_placeholder: str) -> None:
        key = normalize_temporary_id(placeholder)
        target = normalize_temporary_id(target_placeholder)
        if key == target:
            raise ValueError(f"Temporary ID '{key}' cannot alias itself")
        existing = self._targets.get(key)
        if existing is not None and existing != target:
            raise ValueError(f"Temporary ID '{key}' is already bound to a different target")
        self._targets[key] = target
        if self._follow(key) is None and self._has_loop(key):
            del self._targets[key]
            raise ValueError(f"Temporary ID '{key}' would form an alias loop")

    def resolve(self, placeholder: str) -> ResourceRef | None:
        return self._follow(normalize_temporary_id(placeholder))

    def placeholders_for(self, ref: ResourceRef) -> set[str]:
        direct = set(self._reverse.get(ref, set()))
        for key in list(self._targets):
            if key not in direct and self._follow(key) == ref:
                direct.add(key)
        return direct

    def _follow(self, key: str) -> ResourceRef | None:
        seen: set[str] = set()
        current: str | ResourceRef | None = key
        while isinstance(current, str):
            if current in seen:
                return None
            seen.add(current)
            current = self._targets.get(current)
        return current

    def _has_loop(self, key: str) -> bool:
        seen: set[str] = set()
        current: str | ResourceRef | None = key
        while isinstance(current, str):
            if current in seen:
                return True
            seen.add(current)
            current = self._targets.get(current)
        return False

    def resolved_items(self) -> dict[str, ResourceRef]:
        items: dict[str, ResourceRef] = {}
        for key in sorted(self._targets):
            ref = self._follow(key)
            if ref is not None:
                items[key] = ref
        return items

    def to_dict(self) -> dict[str, dict[str, object]]:
        return {key: ref.to_dict() for key, ref in self.resolved_items().items()}

    @classmethod
    def from_json(cls, text: str | None, default_repo: str) -> "TemporaryIdMapping":
        """Load a map serialized by an earlier step.

        Values may be a bare issue number (legacy), a ``{repo, number, url}``
        object, or another temporary id. Invalid JSON yields an empty map.
        """
        mapping = cls()
        if not text:
            return mapping
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            logger.warning("Ignoring invalid temporary ID map: %s", exc)
            return mapping
        if not isinstance(data, dict):
            logger.warning("Ignoring temporary ID map that is not a JSON object")
            return mapping

        aliases: list[tuple[str, str]] = []
        for raw_key, value in data.items():
            if not is_temporary_id(raw_key):
                logger.warning("Ignoring invalid temporary ID key %r", raw_key)
                continue
            if isinstance(value, int) and not isinstance(value, bool):
                mapping.bind(raw_key, ResourceRef(repo=default_repo, number=value))
            elif isinstance(value, dict) and isinstance(value.get("number"), int):
                mapping.bind(
                    raw_key,
                    ResourceRef(
                        repo=str(value.get("repo") or default_repo),
                        number=value["number"],
                        url=value.get("url") if isinstance(value.get("url"), str) else None,
                        kind=str(value.get("kind") or "issue"),
                    ),
                )
            elif is_temporary_id(value):
                aliases.append((raw_key, value))
            else:
                logger.warning("Ignoring unusable temporary ID map entry %r", raw_key)
        for key, target in aliases:
            try:
                mapping.alias(key, target)
            except ValueError as exc:
                logger.warning("Ignoring temporary ID alias: %s", exc)
        return mapping
