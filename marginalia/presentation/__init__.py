from .overlays import AnnotationPresenter, Marker
from .selection import (
    SelectionRange,
    compute_anchor,
    compute_highlight_rects,
    selection_from_region,
)

__all__ = [
    "AnnotationPresenter",
    "Marker",
    "SelectionRange",
    "compute_anchor",
    "compute_highlight_rects",
    "selection_from_region",
]
