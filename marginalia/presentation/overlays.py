from __future__ import annotations

from dataclasses import dataclass, replace
from typing import List, Optional, Sequence

from marginalia.annotations.models import Annotation
from marginalia.core.geometry import denormalize_rect
from marginalia.core.page_slots import HighlightBox, PageLayout


@dataclass(frozen=True)
class Marker:
    annotation_id: str
    page_number: int
    # Absolute offset in the page column, in pixels.
    top: float
    selected: bool = False


def nearest_marker(
    markers: Sequence[Marker], y: float, tolerance: float = 8.0
) -> Optional[Marker]:
    best: Optional[Marker] = None
    for marker in markers:
        distance = abs(marker.top - y)
        if distance <= tolerance and (best is None or distance < abs(best.top - y)):
            best = marker
    return best


class AnnotationPresenter:
    """Rebuilds marker and highlight layers from annotations and the page layout.

    Both layers are cleared and rebuilt on every call; annotation sets are
    human-sized, so no diffing is attempted.
    """

    def __init__(self, layout: PageLayout) -> None:
        self._layout = layout
        self._markers: List[Marker] = []
        self._selected_id: Optional[str] = None

    @property
    def markers(self) -> List[Marker]:
        return list(self._markers)

    @property
    def selected_id(self) -> Optional[str]:
        return self._selected_id

    def render_markers(self, annotations: Sequence[Annotation]) -> List[Marker]:
        markers: List[Marker] = []
        for annotation in annotations:
            slot = self._layout.get(annotation.anchor.page_number)
            if slot is None:
                continue
            markers.append(
                Marker(
                    annotation_id=annotation.id,
                    page_number=slot.page_number,
                    top=slot.top + annotation.anchor.y_norm * slot.height,
                    selected=annotation.id == self._selected_id,
                )
            )
        markers.sort(key=lambda marker: (marker.top, marker.annotation_id))
        self._markers = markers
        return self.markers

    def render_highlights(self, annotations: Sequence[Annotation]) -> int:
        """Repaint every highlight layer; returns the number of boxes placed."""
        for slot in self._layout.ordered():
            layer = slot.highlight_layer
            if layer is not None:
                layer.clear()
        placed = 0
        for annotation in annotations:
            selected = annotation.id == self._selected_id
            for group in annotation.highlights:
                slot = self._layout.get(group.page_number)
                if slot is None:
                    continue
                layer = slot.ensure_highlight_layer()
                for rect in group.rects:
                    box = denormalize_rect(rect, slot.width, slot.height)
                    if box.width <= 0 or box.height <= 0:
                        continue
                    layer.boxes.append(HighlightBox(annotation.id, box, selected))
                    placed += 1
        return placed

    def refresh(self, annotations: Sequence[Annotation]) -> None:
        self.render_highlights(annotations)
        self.render_markers(annotations)

    def select(self, annotation_id: Optional[str]) -> None:
        """Mark one annotation selected, deselecting any other."""
        self._selected_id = annotation_id or None
        self._markers = [
            replace(marker, selected=marker.annotation_id == self._selected_id)
            for marker in self._markers
        ]
        for slot in self._layout.ordered():
            layer = slot.highlight_layer
            if layer is None:
                continue
            layer.boxes = [
                replace(box, selected=box.annotation_id == self._selected_id)
                for box in layer.boxes
            ]

    def clear_selection(self) -> None:
        self.select(None)

    def marker_at(self, y: float, tolerance: float = 8.0) -> Optional[Marker]:
        return nearest_marker(self._markers, y, tolerance)

    def clear(self) -> None:
        self._markers = []
        self._selected_id = None
        for slot in self._layout.ordered():
            layer = slot.highlight_layer
            if layer is not None:
                layer.clear()


__all__ = ["AnnotationPresenter", "Marker", "nearest_marker"]
