"""Interfaces of the rasterization collaborator and the values it produces.

The render scheduler only talks to a document through these protocols, so any
backend able to rasterize pages and report positioned text runs can be plugged
in. `marginalia.core.pymupdf_backend` provides the PyMuPDF implementation.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, List, Optional, Protocol, Sequence

from marginalia.core.geometry import IDENTITY, Matrix, transform_multiply


class DocumentLoadError(RuntimeError):
    """Raised when a document cannot be opened or displayed at all."""


class RenderCancelled(Exception):
    """Raised by `RenderTask.wait()` after the task was cancelled."""


@dataclass(frozen=True)
class Viewport:
    width: float
    height: float
    scale: float
    transform: Matrix = IDENTITY

    @classmethod
    def for_page(cls, page_width: float, page_height: float, scale: float) -> "Viewport":
        """Viewport for a backend whose page space already has a top-left origin."""
        return cls(
            width=float(page_width) * scale,
            height=float(page_height) * scale,
            scale=float(scale),
            transform=(scale, 0.0, 0.0, scale, 0.0, 0.0),
        )


@dataclass(frozen=True)
class TextRun:
    """A run of text placed by `transform` (font matrix + baseline origin) in page space."""

    text: str
    transform: Matrix
    width: float = 0.0
    font_name: str = ""


@dataclass
class TextContent:
    runs: List[TextRun] = field(default_factory=list)


@dataclass(frozen=True)
class Bitmap:
    width: int
    height: int
    stride: int
    samples: bytes
    alpha: bool = False


@dataclass
class Surface:
    """Render target; a render task fills `bitmap` on success."""

    width: int
    height: int
    bitmap: Optional[Bitmap] = None


@dataclass(frozen=True)
class TextSpan:
    text: str
    left: float
    top: float
    width: float
    font_size: float
    font_name: str = ""


@dataclass
class TextOverlay:
    spans: List[TextSpan] = field(default_factory=list)

    @property
    def text(self) -> str:
        return " ".join(span.text for span in self.spans)


class RenderTask:
    """Cancellable handle around one in-flight page rasterization."""

    def __init__(self, work: Awaitable[Any]) -> None:
        self._future = asyncio.ensure_future(work)
        self._cancel_requested = False

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def done(self) -> bool:
        return self._future.done()

    def cancel(self) -> None:
        self._cancel_requested = True
        self._future.cancel()

    async def wait(self) -> Any:
        try:
            return await self._future
        except asyncio.CancelledError:
            if self._cancel_requested:
                raise RenderCancelled("render task cancelled") from None
            raise


class PageProxy(Protocol):
    page_number: int

    def get_viewport(self, scale: float) -> Viewport: ...

    def render(self, surface: Surface, viewport: Viewport) -> RenderTask: ...

    async def get_text_content(self) -> TextContent: ...


class DocumentProxy(Protocol):
    page_count: int

    async def get_page(self, page_number: int) -> PageProxy: ...

    def destroy(self) -> None: ...


class TextLayerRenderer(Protocol):
    """Optional high-level overlay builder a document may expose as `render_text_layer`."""

    async def __call__(
        self, text_content: TextContent, viewport: Viewport
    ) -> TextOverlay: ...


class DocumentLoader(Protocol):
    async def open(self, data: bytes) -> DocumentProxy: ...

    def teardown(self) -> None: ...


def layout_text_runs(runs: Sequence[TextRun], viewport: Viewport) -> TextOverlay:
    """Place text runs in viewport pixels without a backend-provided renderer."""
    overlay = TextOverlay()
    for run in runs:
        if not run.text:
            continue
        tx = transform_multiply(viewport.transform, run.transform)
        font_height = (tx[2] * tx[2] + tx[3] * tx[3]) ** 0.5
        overlay.spans.append(
            TextSpan(
                text=run.text,
                left=tx[4],
                top=tx[5] - font_height,
                width=run.width * viewport.scale,
                font_size=font_height,
                font_name=run.font_name or "sans-serif",
            )
        )
    return overlay


__all__ = [
    "Bitmap",
    "DocumentLoadError",
    "DocumentLoader",
    "DocumentProxy",
    "PageProxy",
    "RenderCancelled",
    "RenderTask",
    "Surface",
    "TextContent",
    "TextLayerRenderer",
    "TextOverlay",
    "TextRun",
    "TextSpan",
    "Viewport",
    "layout_text_runs",
]
