from __future__ import annotations

import json
import logging

import pytest

from safe_output_gate.domain.references import Resolved, ResourceRef, TextTemplate, Unresolved
from safe_output_gate.domain.temporary_id import (
    TemporaryIdMapping,
    is_temporary_id,
    parse_reference,
)

REPO = "octo/widgets"


@pytest.mark.parametrize("value", ["aw_abc123", "AW_ABCD", "aw_0123456789ab"])
def test_is_temporary_id_accepts(value: str) -> None:
    assert is_temporary_id(value)


@pytest.mark.parametrize("value", ["aw_abc", "aw_0123456789abc", "aw-abc123", "abc123", 123, None])
def test_is_temporary_id_rejects(value: object) -> None:
    assert not is_temporary_id(value)


def test_parse_reference_number_forms() -> None:
    assert parse_reference(42, REPO) == Resolved(ResourceRef(repo=REPO, number=42))
    assert parse_reference("42", REPO) == Resolved(ResourceRef(repo=REPO, number=42))
    assert parse_reference("#42", REPO) == Resolved(ResourceRef(repo=REPO, number=42))


def test_parse_reference_temporary_id_is_lowercased() -> None:
    assert parse_reference("#AW_ABC123", REPO) == Unresolved("aw_abc123")


@pytest.mark.parametrize("value", [0, -3, True, "abc", "", 1.5])
def test_parse_reference_invalid(value: object) -> None:
    with pytest.raises(ValueError, match="Invalid item number"):
        parse_reference(value, REPO)


def test_parse_reference_malformed_temporary_id() -> None:
    with pytest.raises(ValueError, match="Invalid temporary ID format"):
        parse_reference("aw_x", REPO)


def test_mapping_bind_and_resolve() -> None:
    mapping = TemporaryIdMapping()
    ref = ResourceRef(repo=REPO, number=7)
    mapping.bind("AW_ABC123", ref)

    assert "aw_abc123" in mapping
    assert mapping.resolve("aw_abc123") == ref
    assert mapping.placeholders_for(ref) == {"aw_abc123"}


def test_mapping_rebinding_to_a_different_target_fails() -> None:
    mapping = TemporaryIdMapping()
    mapping.bind("aw_abc123", ResourceRef(repo=REPO, number=7))
    mapping.bind("aw_abc123", ResourceRef(repo=REPO, number=7))

    with pytest.raises(ValueError, match="already bound"):
        mapping.bind("aw_abc123", ResourceRef(repo=REPO, number=8))


def test_mapping_alias_chain_and_loop() -> None:
    mapping = TemporaryIdMapping()
    ref = ResourceRef(repo=REPO, number=7)
    mapping.bind("aw_base01", ref)
    mapping.alias("aw_alias1", "aw_base01")

    assert mapping.resolve("aw_alias1") == ref
    assert mapping.placeholders_for(ref) == {"aw_base01", "aw_alias1"}

    mapping.alias("aw_loopa1", "aw_loopb1")
    with pytest.raises(ValueError, match="alias loop"):
        mapping.alias("aw_loopb1", "aw_loopa1")


def test_mapping_from_json_formats() -> None:
    text = json.dumps(
        {
            "aw_legacy1": 5,
            "aw_object1": {"repo": "octo/other", "number": 9, "url": "https://x/9"},
            "aw_alias01": "aw_legacy1",
            "not_an_id": 3,
        }
    )

    mapping = TemporaryIdMapping.from_json(text, REPO)

    assert mapping.resolve("aw_legacy1") == ResourceRef(repo=REPO, number=5)
    assert mapping.resolve("aw_object1") == ResourceRef(repo="octo/other", number=9, url="https://x/9")
    assert mapping.resolve("aw_alias01") == ResourceRef(repo=REPO, number=5)
    assert "not_an_id" not in mapping
    assert mapping.to_dict()["aw_object1"]["number"] == 9


def test_mapping_from_invalid_json_is_empty(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING):
        mapping = TemporaryIdMapping.from_json("{not json", REPO)

    assert len(mapping) == 0
    assert "invalid temporary ID map" in caplog.text


def test_text_template_parse_bind_render() -> None:
    template = TextTemplate.parse("Follow-up to #AW_ABC123 and #aw_def456x.")

    assert template.placeholders == {"aw_abc123", "aw_def456x"}

    bound = template.bind(
        lambda p: ResourceRef(repo=REPO, number=12) if p == "aw_abc123" else None
    )

    assert bound.render(REPO) == "Follow-up to #12 and #aw_def456x."
    assert bound.render("octo/elsewhere") == "Follow-up to octo/widgets#12 and #aw_def456x."


def test_text_template_ignores_partial_matches() -> None:
    assert not TextTemplate.parse("see aw_abc123 and #aw_abc123_suffix").has_references
