from .document import DocumentLoadError, RenderCancelled
from .page_slots import PageLayout, PageSlot
from .render_scheduler import RenderScheduler
from .render_token import GenerationCounter, RenderToken

__all__ = [
    "DocumentLoadError",
    "GenerationCounter",
    "PageLayout",
    "PageSlot",
    "RenderCancelled",
    "RenderScheduler",
    "RenderToken",
]
