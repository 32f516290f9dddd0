"""Backing note files.

A note looks like::

    ---
    documentPath: papers/attention.pdf
    annotationId: 1760700000000-k3j9x2
    pageNumber: 3
    yNorm: 0.4125
    createdAt: '2026-10-17T09:20:00+00:00'
    ---

    > the selected text,
    > one quoted line per source line

    Free-form comment written by the user.

Only the text after the quote is editable; the header and quote are kept as
they are found when the comment is rewritten.
"""

from __future__ import annotations

import datetime
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

import yaml

from marginalia.annotations.models import Annotation
from marginalia.utils.logger import logger

HEADER_MARKER = "---"

_QUOTE_LINE = re.compile(r"^\s*>")


@dataclass
class NoteContent:
    header: Dict[str, Any] = field(default_factory=dict)
    quote_block: str = ""
    comment_body: str = ""


def _normalize_newlines(text: str) -> str:
    return str(text or "").replace("\r\n", "\n").replace("\r", "\n").lstrip("\ufeff")


def quote_text(text: str) -> str:
    lines = _normalize_newlines(text).strip("\n").split("\n")
    return "\n".join(f"> {line}" if line.strip() else ">" for line in lines)


def note_header(document_path: str, annotation: Annotation) -> Dict[str, Any]:
    created = datetime.datetime.fromtimestamp(
        annotation.created_at / 1000.0, tz=datetime.timezone.utc
    )
    return {
        "documentPath": document_path,
        "annotationId": annotation.id,
        "pageNumber": annotation.anchor.page_number,
        "yNorm": round(float(annotation.anchor.y_norm), 6),
        "createdAt": created.isoformat(timespec="seconds"),
    }


def compose_note(header: Dict[str, Any], quote_block: str, body: str) -> str:
    head = yaml.safe_dump(
        header,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        width=1000,
    ).rstrip("\n")
    parts = [HEADER_MARKER, head, HEADER_MARKER, ""]
    if quote_block.strip():
        parts.extend([quote_block.rstrip("\n"), ""])
    parts.append(_normalize_newlines(body).strip("\n"))
    return "\n".join(parts).rstrip("\n") + "\n"


def build_note_content(document_path: str, annotation: Annotation, body: str = "") -> str:
    quote = quote_text(annotation.selected_text) if annotation.selected_text.strip() else ""
    return compose_note(note_header(document_path, annotation), quote, body)


def _parse_header_lines(lines: list[str]) -> Dict[str, Any]:
    try:
        parsed = yaml.safe_load("\n".join(lines))
        if isinstance(parsed, dict):
            return {str(k): v for k, v in parsed.items()}
    except yaml.YAMLError as exc:
        logger.debug("Note header is not valid YAML, reading key/value lines: %s", exc)
    header: Dict[str, Any] = {}
    for line in lines:
        key, sep, value = line.partition(":")
        if sep and key.strip():
            header[key.strip()] = value.strip()
    return header


def split_header(text: str) -> Tuple[Dict[str, Any], str]:
    """Separate the leading marker-delimited header from the rest of the note."""
    lines = _normalize_newlines(text).split("\n")
    if not lines or lines[0].strip() != HEADER_MARKER:
        return {}, "\n".join(lines)
    for index in range(1, len(lines)):
        if lines[index].strip() == HEADER_MARKER:
            return _parse_header_lines(lines[1:index]), "\n".join(lines[index + 1:])
    # Unterminated header: treat everything as body.
    return {}, "\n".join(lines)


def split_quote_block(text: str) -> Tuple[str, str]:
    """Split a note body into its leading blockquote and the editable comment."""
    lines = _normalize_newlines(text).split("\n")
    index = 0
    while index < len(lines) and not lines[index].strip():
        index += 1
    quote: list[str] = []
    while index < len(lines) and _QUOTE_LINE.match(lines[index]):
        quote.append(lines[index].lstrip())
        index += 1
    rest = lines[index:]
    while rest and not rest[0].strip():
        rest.pop(0)
    return "\n".join(quote), "\n".join(rest).rstrip()


def parse_note(text: str) -> NoteContent:
    header, rest = split_header(text)
    quote_block, comment_body = split_quote_block(rest)
    return NoteContent(header=header, quote_block=quote_block, comment_body=comment_body)


__all__ = [
    "HEADER_MARKER",
    "NoteContent",
    "build_note_content",
    "compose_note",
    "note_header",
    "parse_note",
    "quote_text",
    "split_header",
    "split_quote_block",
]
