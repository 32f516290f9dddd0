from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Union

from marginalia.core.document import Bitmap, TextOverlay
from marginalia.core.geometry import Rect, scale_box


@dataclass
class BitmapLayer:
    bitmap: Bitmap
    generation: int


@dataclass
class TextOverlayLayer:
    overlay: TextOverlay
    generation: int


@dataclass(frozen=True)
class HighlightBox:
    """Page-local pixel rectangle painted for one annotation."""

    annotation_id: str
    rect: Rect
    selected: bool = False


@dataclass
class HighlightLayer:
    boxes: List[HighlightBox] = field(default_factory=list)

    def clear(self) -> None:
        self.boxes.clear()


Layer = Union[BitmapLayer, TextOverlayLayer, HighlightLayer]


@dataclass
class PageSlot:
    """Displayed content of one page plus its box geometry at the current zoom."""

    page_number: int
    width: float
    height: float
    top: float = 0.0
    left: float = 0.0
    generation: int = 0
    layers: List[Layer] = field(default_factory=list)

    @property
    def box(self) -> Rect:
        return Rect(self.left, self.top, self.width, self.height)

    @property
    def bitmap_layer(self) -> Optional[BitmapLayer]:
        for layer in self.layers:
            if isinstance(layer, BitmapLayer):
                return layer
        return None

    @property
    def text_layer(self) -> Optional[TextOverlayLayer]:
        for layer in self.layers:
            if isinstance(layer, TextOverlayLayer):
                return layer
        return None

    @property
    def highlight_layer(self) -> Optional[HighlightLayer]:
        for layer in self.layers:
            if isinstance(layer, HighlightLayer):
                return layer
        return None

    @property
    def is_rendered(self) -> bool:
        return self.bitmap_layer is not None

    def ensure_highlight_layer(self) -> HighlightLayer:
        layer = self.highlight_layer
        if layer is None:
            layer = HighlightLayer()
            self.layers.append(layer)
        return layer

    def swap_content(self, bitmap: Bitmap, overlay: TextOverlay, generation: int) -> None:
        """Replace bitmap and text overlay together, keeping the highlight layer on top."""
        highlight = self.highlight_layer
        new_layers: List[Layer] = [
            BitmapLayer(bitmap, generation),
            TextOverlayLayer(overlay, generation),
        ]
        if highlight is not None:
            new_layers.append(highlight)
        self.layers = new_layers
        self.generation = generation

    def resize(self, width: float, height: float) -> None:
        self.width = float(width)
        self.height = float(height)


class PageLayout:
    """Page number to slot mapping, stacked vertically with a fixed gap."""

    def __init__(self, page_gap: float = 12.0) -> None:
        self.page_gap = float(page_gap)
        self._slots: Dict[int, PageSlot] = {}

    def __len__(self) -> int:
        return len(self._slots)

    def __iter__(self) -> Iterator[PageSlot]:
        return iter(self.ordered())

    def __contains__(self, page_number: object) -> bool:
        return page_number in self._slots

    def get(self, page_number: int) -> Optional[PageSlot]:
        return self._slots.get(page_number)

    def add(self, slot: PageSlot, *, relayout: bool = True) -> PageSlot:
        self._slots[slot.page_number] = slot
        if relayout:
            self.relayout()
        return slot

    def clear(self) -> None:
        self._slots.clear()

    def ordered(self) -> List[PageSlot]:
        return [self._slots[n] for n in sorted(self._slots)]

    def page_numbers(self) -> List[int]:
        return sorted(self._slots)

    def relayout(self) -> None:
        top = 0.0
        for slot in self.ordered():
            slot.top = top
            top += slot.height + self.page_gap

    def rescale(self, factor: float) -> None:
        for slot in self._slots.values():
            slot.resize(*scale_box(slot.width, slot.height, factor))
        self.relayout()

    @property
    def content_height(self) -> float:
        slots = self.ordered()
        if not slots:
            return 0.0
        return slots[-1].top + slots[-1].height

    @property
    def content_width(self) -> float:
        return max((slot.left + slot.width for slot in self._slots.values()), default=0.0)

    def visible_pages(
        self, scroll_top: float, viewport_height: float, buffer_px: float
    ) -> List[int]:
        top_bound = max(0.0, scroll_top - buffer_px)
        bottom_bound = scroll_top + viewport_height + buffer_px
        out: List[int] = []
        for slot in self.ordered():
            if slot.top + slot.height < top_bound or slot.top > bottom_bound:
                continue
            out.append(slot.page_number)
        return out

    def snapshot(self) -> "PageLayout":
        """Detached copy whose slots and highlight boxes later changes do not touch.

        Bitmaps and text overlays are shared; slots only ever replace them.
        """
        copy = PageLayout(self.page_gap)
        for slot in self.ordered():
            layers: List[Layer] = []
            for layer in slot.layers:
                if isinstance(layer, HighlightLayer):
                    layer = HighlightLayer(list(layer.boxes))
                layers.append(layer)
            copy._slots[slot.page_number] = PageSlot(
                slot.page_number,
                slot.width,
                slot.height,
                slot.top,
                slot.left,
                slot.generation,
                layers,
            )
        return copy

    def slot_at_point(self, x: float, y: float) -> Optional[PageSlot]:
        for slot in self._slots.values():
            if slot.box.contains(x, y):
                return slot
        return None


__all__ = [
    "BitmapLayer",
    "HighlightBox",
    "HighlightLayer",
    "Layer",
    "PageLayout",
    "PageSlot",
    "TextOverlayLayer",
]
