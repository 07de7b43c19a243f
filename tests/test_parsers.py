"""Tests for directive parsing, stripping and status display names."""

import pytest

from scribe.orchestration.parsers import (
    CONTEXT_REQUESTS,
    GUIDE_REQUESTS,
    NO_REQUEST,
    display_name,
    format_names_for_status,
)

# ---------------------------------------------------------------------------
# parse
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("text", [
    '<guide-request path=["a.md", "b.md"] />',
    "<guide-request path=['a.md', 'b.md']/>",
    '<GUIDE-REQUEST paths = [ "a.md" ,"b.md" ] >',
    'Some preamble.\n<guide-request path=[\n  "a.md",\n  "b.md"\n] />',
])
def test_parse_accepts_permissive_forms(text):
    request = GUIDE_REQUESTS.parse(text)

    assert request.present is True
    assert request.requested_ids == ("a.md", "b.md")
    assert request.wants_fetch is True


def test_parse_without_directive():
    assert GUIDE_REQUESTS.parse("Just an answer.") is NO_REQUEST
    assert GUIDE_REQUESTS.parse("") is NO_REQUEST
    assert GUIDE_REQUESTS.parse(None) is NO_REQUEST


def test_empty_list_is_present_but_not_a_fetch():
    request = GUIDE_REQUESTS.parse('<guide-request path=["", "  "] />')

    assert request.present is True
    assert request.requested_ids == ()
    assert request.wants_fetch is False


def test_only_first_directive_counts():
    text = '<guide-request path=["first.md"] />\n<guide-request path=["second.md"] />'

    assert GUIDE_REQUESTS.parse(text).requested_ids == ("first.md",)


def test_families_do_not_overlap():
    text = '<context-request path=["characters/mara.md"] />'

    assert GUIDE_REQUESTS.parse(text) is NO_REQUEST
    assert CONTEXT_REQUESTS.parse(text).requested_ids == ("characters/mara.md",)


def test_ids_are_trimmed():
    request = CONTEXT_REQUESTS.parse('<context-request path=[" characters/mara.md "] />')

    assert request.requested_ids == ("characters/mara.md",)


# ---------------------------------------------------------------------------
# strip
# ---------------------------------------------------------------------------


def test_strip_returns_same_text_without_directive():
    text = "  Untouched answer.\n\n\n\nWith gaps.  "

    assert GUIDE_REQUESTS.strip(text) is text


def test_strip_removes_every_directive_and_collapses_blank_lines():
    text = (
        'Intro.\n\n<guide-request path=["a.md"] />\n\n\n'
        "Middle.\n<guide-request path=['b.md']>\n\n\nEnd.\n"
    )

    assert GUIDE_REQUESTS.strip(text) == "Intro.\n\nMiddle.\n\nEnd."


def test_strip_is_idempotent():
    once = GUIDE_REQUESTS.strip('Answer. <guide-request path=["a.md"] />')

    assert GUIDE_REQUESTS.strip(once) == once == "Answer."


def test_strip_only_touches_its_family():
    text = 'Answer. <context-request path=["x.md"] />'

    assert GUIDE_REQUESTS.strip(text) is text


# ---------------------------------------------------------------------------
# display names
# ---------------------------------------------------------------------------


def test_display_name_from_path():
    assert display_name("scene-guides/basketball-game.md") == "Basketball Game"
    assert display_name("dialogue-tags.MD") == "Dialogue Tags"


def test_format_names_for_status():
    assert format_names_for_status(["a/show-dont-tell.md", "pacing.md"]) == "Show Dont Tell, Pacing"
