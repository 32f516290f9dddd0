"""Turn a live text selection into anchor and highlight geometry.

Selection rectangles are in content coordinates, the same space as
`PageSlot.top`/`left`, so a rectangle maps to a page by hit-testing its center.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from marginalia.annotations.models import Anchor, HighlightGroup
from marginalia.core.document import TextSpan
from marginalia.core.geometry import NormalizedRect, Rect, normalize_rect, normalize_y
from marginalia.core.page_slots import PageLayout

_SPACES = re.compile(r"[ \t]+")


@dataclass(frozen=True)
class SelectionRange:
    """One client rectangle per selected line fragment, plus the selected text."""

    text: str
    rects: Tuple[Rect, ...] = ()

    @property
    def visible_rects(self) -> List[Rect]:
        return [rect for rect in self.rects if not rect.is_degenerate()]

    @property
    def collapsed(self) -> bool:
        return not self.text.strip() or not self.visible_rects

    @property
    def bounding_rect(self) -> Optional[Rect]:
        box: Optional[Rect] = None
        for rect in self.visible_rects:
            box = rect if box is None else box.union(rect)
        return box


def compute_anchor(
    selection: Optional[SelectionRange], layout: PageLayout
) -> Optional[Anchor]:
    """Page and normalized vertical center of the selection, or None."""
    if selection is None or selection.collapsed:
        return None
    box = selection.bounding_rect
    if box is None:
        return None
    center_x, center_y = box.center
    slot = layout.slot_at_point(center_x, center_y)
    if slot is None:
        # A box spanning two pages can center in the gap; use the first line's page.
        first_x, first_y = selection.visible_rects[0].center
        slot = layout.slot_at_point(first_x, first_y)
    if slot is None:
        return None
    return Anchor(
        page_number=slot.page_number,
        y_norm=normalize_y(center_y, slot.top, slot.height),
    )


def compute_highlight_rects(
    selection: Optional[SelectionRange], layout: PageLayout
) -> List[HighlightGroup]:
    """Normalized rectangles of the selection grouped by ascending page number."""
    if selection is None or selection.collapsed:
        return []
    groups: Dict[int, List[NormalizedRect]] = {}
    for rect in selection.visible_rects:
        slot = layout.slot_at_point(*rect.center)
        if slot is None:
            continue
        norm = normalize_rect(rect, slot.box)
        if norm.w <= 0.0 or norm.h <= 0.0:
            continue
        groups.setdefault(slot.page_number, []).append(norm)
    return [HighlightGroup(page, groups[page]) for page in sorted(groups)]


def _span_rect(span: TextSpan, left: float, top: float) -> Rect:
    return Rect(left + span.left, top + span.top, span.width, span.font_size)


def selection_from_region(layout: PageLayout, region: Rect) -> SelectionRange:
    """Select the text spans a dragged region touches, one rectangle per line."""
    hits: List[Tuple[int, Rect, TextSpan]] = []
    for slot in layout.ordered():
        if not slot.box.intersects(region):
            continue
        text_layer = slot.text_layer
        if text_layer is None:
            continue
        for span in text_layer.overlay.spans:
            rect = _span_rect(span, slot.left, slot.top)
            if not rect.is_degenerate() and rect.intersects(region):
                hits.append((slot.page_number, rect, span))
    if not hits:
        return SelectionRange(text="")

    hits.sort(key=lambda hit: (hit[0], hit[1].y, hit[1].x))
    lines: List[Tuple[int, Rect, List[str]]] = []
    for page_number, rect, span in hits:
        if lines:
            last_page, last_rect, last_text = lines[-1]
            same_line = abs(rect.center[1] - last_rect.center[1]) <= 0.5 * max(
                rect.height, last_rect.height
            )
            if last_page == page_number and same_line:
                lines[-1] = (last_page, last_rect.union(rect), last_text + [span.text])
                continue
        lines.append((page_number, rect, [span.text]))

    text = "\n".join(_SPACES.sub(" ", " ".join(parts)).strip() for _, _, parts in lines)
    return SelectionRange(text=text, rects=tuple(rect for _, rect, _ in lines))


__all__ = [
    "SelectionRange",
    "compute_anchor",
    "compute_highlight_rects",
    "selection_from_region",
]
