from __future__ import annotations

import pytest

from safe_output_gate.errors import SanitizationUnrecoverableError
from safe_output_gate.sanitize import Sanitizer, sanitize_text
from safe_output_gate.sanitize.markdown import split_code_regions
from safe_output_gate.sanitize.normalize import decode_entities


def test_plain_text_is_untouched() -> None:
    result = sanitize_text("Fix the flaky test in ci.yml")

    assert result.text == "Fix the flaky test in ci.yml"
    assert not result.changed


def test_mention_is_wrapped() -> None:
    result = sanitize_text("ping @octocat and @octo/reviewers")

    assert result.text == "ping `@octocat` and `@octo/reviewers`"
    assert [r.kind for r in result.redactions] == ["mention", "mention"]


def test_email_addresses_are_not_mentions() -> None:
    assert sanitize_text("mail bob@example.com").text == "mail bob@example.com"


def test_allowed_mentions_pass_through() -> None:
    sanitizer = Sanitizer(allowed_mentions=["@OctoCat"])

    assert sanitizer.sanitize("thanks @octocat, cc @other").text == "thanks @octocat, cc `@other`"


@pytest.mark.parametrize(
    "text",
    [
        "&#64;user",
        "&#x40;user",
        "&commat;user",
        "&amp;commat;user",
        "&amp;#64;user",
        "@\u200buser",
        "\u200b@user",
        "\uff20user",
        "\x1b[1m@user",
    ],
)
def test_obscured_mentions_become_plain_mentions_first(text: str) -> None:
    assert sanitize_text(text).text == sanitize_text("@user").text == "`@user`"


def test_triple_encoded_significant_character_is_unrecoverable() -> None:
    with pytest.raises(SanitizationUnrecoverableError):
        sanitize_text("&amp;amp;#64;user")


@pytest.mark.parametrize(
    "text",
    [
        "\uff06#64;alice please",
        "&\u200b#64;alice please",
        "&#\uff16\uff14;alice please",
        "&\x1b[0m#64;alice please",
    ],
)
def test_entity_joined_by_later_stages_is_unrecoverable(text: str) -> None:
    with pytest.raises(SanitizationUnrecoverableError):
        sanitize_text(text)


def test_invalid_numeric_entities_stay_encoded() -> None:
    text, _ = decode_entities("&#xD800; &#99999999999; &bogus;")

    assert text == "&#xD800; &#99999999999; &bogus;"


def test_nfc_normalization() -> None:
    result = sanitize_text("cafe\u0301")

    assert result.text == "caf\u00e9"
    assert result.redactions[0].kind == "unicode_normalization"


def test_bidi_controls_are_removed() -> None:
    assert sanitize_text("abc\u202edef\u2066").text == "abcdef"


def test_fullwidth_folding() -> None:
    assert sanitize_text("\uff48\uff54\uff54\uff50\uff53\u3000ok").text == "https ok"


def test_ansi_and_control_characters_removed() -> None:
    result = sanitize_text("\x1b[31mred\x1b[0m\x07 line\r\nnext\tcol")

    assert result.text == "red line\nnext\tcol"
    assert result.redactions[0].kind == "control_sequences"


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("{{ secrets.TOKEN }}", "\\{\\{ secrets.TOKEN }}"),
        ("{% if x %}", "\\{\\% if x %}"),
        ("{# note #}", "\\{\\# note #}"),
        ("${HOME}", "\\$\\{HOME}"),
        ("<%= value %>", "\\<\\%= value %>"),
    ],
)
def test_template_delimiters_are_escaped(text: str, expected: str) -> None:
    result = sanitize_text(text)

    assert result.text == expected
    assert result.redactions[-1].kind == "template_delimiter"


def test_code_regions_skip_text_rewriting() -> None:
    text = "run `@bot {{x}}` then\n```\n@user ${HOME}\n```\nbye @user\n"

    assert sanitize_text(text).text == "run `@bot {{x}}` then\n```\n@user ${HOME}\n```\nbye `@user`\n"


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("x ` y @alice", "x \\` y `@alice`"),
        ("x `@alice", "x \\``@alice`"),
        ("\\@alice", "\\\\`@alice`"),
    ],
)
def test_stray_backticks_cannot_unwrap_mentions(text: str, expected: str) -> None:
    result = sanitize_text(text)

    assert result.text == expected
    prose = "".join(s.text for s in split_code_regions(result.text) if not s.is_code)
    assert "@alice" not in prose


def test_escaped_backtick_does_not_open_code_span() -> None:
    segments = split_code_regions("a \\`b c `d`")

    assert [(s.text, s.is_code) for s in segments] == [("a \\`b c ", False), ("`d`", True)]


def test_code_regions_still_get_character_stages() -> None:
    assert sanitize_text("```\n@\u200bx\x1b[0m\n```").text == "```\n@x\n```"


def test_unclosed_fence_runs_to_end() -> None:
    segments = split_code_regions("intro\n~~~\n@user\n")

    assert [s.is_code for s in segments] == [False, True]
    assert "".join(s.text for s in segments) == "intro\n~~~\n@user\n"


def test_links_filtered_only_with_domain_allowlist() -> None:
    text = "[ok](https://github.com/a) [bad](https://evil.example/x) ![img](http://evil.example/p.png)"

    assert sanitize_text(text).text == text

    result = sanitize_text(text, allowed_domains=["github.com"])

    assert result.text == "[ok](https://github.com/a) [bad](redacted) ![img](redacted)"
    assert [r.kind for r in result.redactions] == ["url", "url"]


def test_bare_and_autolinks_are_filtered() -> None:
    result = sanitize_text(
        "see https://evil.example/p and <https://evil.example/q> or [rel](/docs)",
        allowed_domains=["*.github.com"],
    )

    assert result.text == "see (redacted) and (redacted) or [rel](/docs)"


@pytest.mark.parametrize(
    "text",
    [
        "@user",
        "&#64;user says {{hi}}",
        "${x} <%= y %> {% z %}",
        "\x1b[1mbold\x1b[0m @a",
        "[l](https://evil.example) and https://evil.example/x",
        "```\n{{code}}\n```\n@after",
        "\uff20user",
        "x ` y @alice",
        "a `` b ` c @alice",
        "\\@alice and \\`@bob",
    ],
)
def test_sanitization_is_idempotent(text: str) -> None:
    sanitizer = Sanitizer(allowed_domains=["github.com"])
    once = sanitizer.sanitize(text).text

    assert sanitizer.sanitize(once).text == once


def test_sanitize_value_names_nested_fields() -> None:
    sanitizer = Sanitizer()

    value, redactions = sanitizer.sanitize_value({"note": "@a", "count": 3}, "inputs")

    assert value == {"note": "`@a`", "count": 3}
    assert redactions[0].field == "inputs.note"


def test_sanitize_value_lists() -> None:
    value, redactions = Sanitizer().sanitize_value(["bug", "{{x}}"], "labels")

    assert value == ["bug", "\\{\\{x}}"]
    assert redactions[0].field == "labels"
