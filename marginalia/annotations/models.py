from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from marginalia.core.geometry import NormalizedRect, clamp01

SIDECAR_VERSION = 1


@dataclass(frozen=True)
class Anchor:
    page_number: int
    y_norm: float

    def to_dict(self) -> Dict[str, Any]:
        return {"pageNumber": self.page_number, "yNorm": self.y_norm}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Anchor":
        if not isinstance(data, dict):
            raise TypeError("anchor must be an object")
        page_number = int(data["pageNumber"])
        if page_number < 1:
            raise ValueError(f"invalid page number {page_number}")
        return cls(page_number=page_number, y_norm=clamp01(data["yNorm"]))


@dataclass(frozen=True)
class HighlightGroup:
    page_number: int
    rects: List[NormalizedRect] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pageNumber": self.page_number,
            "rects": [rect.to_dict() for rect in self.rects],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HighlightGroup":
        if not isinstance(data, dict):
            raise TypeError("highlight group must be an object")
        rects = data.get("rects") or []
        if not isinstance(rects, list):
            raise TypeError("highlight rects must be a list")
        return cls(
            page_number=int(data["pageNumber"]),
            rects=[NormalizedRect.from_dict(rect) for rect in rects],
        )


@dataclass
class Annotation:
    id: str
    created_at: int
    selected_text: str
    anchor: Anchor
    highlights: List[HighlightGroup] = field(default_factory=list)
    note_path: Optional[str] = None
    # Inline comment carried by records written before notes existed.
    legacy_comment: Optional[str] = None

    @property
    def is_backed(self) -> bool:
        return bool(self.note_path)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "createdAt": self.created_at,
            "selectedText": self.selected_text,
        }
        if self.note_path:
            payload["notePath"] = self.note_path
        elif self.legacy_comment:
            payload["commentText"] = self.legacy_comment
        payload["anchor"] = self.anchor.to_dict()
        payload["highlights"] = [group.to_dict() for group in self.highlights]
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Annotation":
        if not isinstance(data, dict):
            raise TypeError("annotation must be an object")
        annotation_id = str(data["id"]).strip()
        if not annotation_id:
            raise ValueError("annotation id is empty")
        highlights = data.get("highlights") or []
        if not isinstance(highlights, list):
            raise TypeError("highlights must be a list")
        note_path = data.get("notePath")
        legacy = data.get("commentText")
        return cls(
            id=annotation_id,
            created_at=int(data.get("createdAt") or 0),
            selected_text=str(data.get("selectedText") or ""),
            anchor=Anchor.from_dict(data["anchor"]),
            highlights=[HighlightGroup.from_dict(group) for group in highlights],
            note_path=str(note_path) if note_path else None,
            legacy_comment=str(legacy) if legacy else None,
        )


@dataclass
class SidecarRecord:
    document_path: str
    annotations: List[Annotation] = field(default_factory=list)
    version: int = SIDECAR_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "documentPath": self.document_path,
            "annotations": [annotation.to_dict() for annotation in self.annotations],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], document_path: str) -> "SidecarRecord":
        """Parse a record for `document_path`; raises ValueError/TypeError/KeyError on mismatch."""
        if not isinstance(data, dict):
            raise TypeError("sidecar record must be an object")
        if data.get("version") != SIDECAR_VERSION:
            raise ValueError(f"unsupported sidecar version {data.get('version')!r}")
        if data.get("documentPath") != document_path:
            raise ValueError(
                f"sidecar belongs to {data.get('documentPath')!r}, not {document_path!r}"
            )
        annotations = data.get("annotations")
        if not isinstance(annotations, list):
            raise TypeError("annotations must be a list")
        return cls(
            document_path=document_path,
            annotations=[Annotation.from_dict(item) for item in annotations],
        )


__all__ = [
    "Anchor",
    "Annotation",
    "HighlightGroup",
    "SIDECAR_VERSION",
    "SidecarRecord",
]
