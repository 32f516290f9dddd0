from .models import Anchor, Annotation, HighlightGroup, SidecarRecord
from .notes import NoteContent, parse_note, split_quote_block
from .store import AnnotationStore

__all__ = [
    "Anchor",
    "Annotation",
    "AnnotationStore",
    "HighlightGroup",
    "NoteContent",
    "SidecarRecord",
    "parse_note",
    "split_quote_block",
]
