from __future__ import annotations

from marginalia.annotations.models import Anchor, Annotation
from marginalia.annotations.notes import (
    build_note_content,
    compose_note,
    parse_note,
    quote_text,
    split_header,
    split_quote_block,
)


def _annotation(selected_text: str = "line one\nline two") -> Annotation:
    return Annotation(
        id="1760700000000-abc123",
        created_at=1760700000000,
        selected_text=selected_text,
        anchor=Anchor(2, 0.25),
    )


def test_split_quote_block_separates_three_line_quote() -> None:
    quote, body = split_quote_block("> a\n> b\n> c\n\nfree text here")
    assert quote == "> a\n> b\n> c"
    assert body == "free text here"


def test_split_quote_block_without_quote_keeps_whole_body() -> None:
    assert split_quote_block("\n\njust a comment\n") == ("", "just a comment")
    assert split_quote_block("") == ("", "")


def test_quote_text_prefixes_each_line() -> None:
    assert quote_text("a\r\n\r\nb") == "> a\n>\n> b"


def test_built_note_parses_back_into_parts() -> None:
    text = build_note_content("papers/a.pdf", _annotation(), "My thoughts\n\nsecond para")
    lines = text.split("\n")
    assert lines[0] == "---"
    assert "annotationId: 1760700000000-abc123" in text

    note = parse_note(text)
    assert note.header["documentPath"] == "papers/a.pdf"
    assert note.header["pageNumber"] == 2
    assert note.header["yNorm"] == 0.25
    assert note.header["createdAt"].endswith("+00:00")
    assert note.quote_block == "> line one\n> line two"
    assert note.comment_body == "My thoughts\n\nsecond para"


def test_note_without_selected_text_has_no_quote() -> None:
    text = build_note_content("a.pdf", _annotation(selected_text="  "), "")
    note = parse_note(text)
    assert note.quote_block == ""
    assert note.comment_body == ""


def test_compose_keeps_existing_header_and_quote() -> None:
    original = build_note_content("a.pdf", _annotation(), "old")
    note = parse_note(original)
    note.header["tags"] = ["reading"]

    rewritten = compose_note(note.header, note.quote_block, "new comment")
    again = parse_note(rewritten)
    assert again.header["tags"] == ["reading"]
    assert again.quote_block == note.quote_block
    assert again.comment_body == "new comment"


def test_split_header_tolerates_plain_key_value_lines() -> None:
    header, rest = split_header("---\ntitle: a: b: [\nannotationId: x1\n---\n\nbody")
    assert header["annotationId"] == "x1"
    assert rest == "\nbody"

    header, rest = split_header("---\nunterminated\nbody")
    assert header == {}
    assert rest.startswith("---")
