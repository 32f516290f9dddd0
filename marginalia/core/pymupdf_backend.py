"""PyMuPDF implementation of the rasterization collaborator."""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Optional

from marginalia.core.document import (
    Bitmap,
    DocumentLoadError,
    RenderTask,
    Surface,
    TextContent,
    TextRun,
    Viewport,
)
from marginalia.utils.logger import logger


class PyMuPDFPage:
    def __init__(self, document: "PyMuPDFDocument", page: Any, page_number: int) -> None:
        self._document = document
        self._page = page
        self.page_number = page_number
        rect = page.rect
        self._width = float(rect.width)
        self._height = float(rect.height)

    def get_viewport(self, scale: float) -> Viewport:
        return Viewport.for_page(self._width, self._height, float(scale))

    def render(self, surface: Surface, viewport: Viewport) -> RenderTask:
        fitz = self._document.fitz

        def rasterize() -> Bitmap:
            matrix = fitz.Matrix(viewport.scale, viewport.scale)
            with self._document.lock:
                pix = self._page.get_pixmap(matrix=matrix, alpha=False)
            return Bitmap(
                width=int(pix.width),
                height=int(pix.height),
                stride=int(pix.stride),
                samples=bytes(pix.samples),
                alpha=bool(pix.alpha),
            )

        async def run() -> Surface:
            surface.bitmap = await asyncio.to_thread(rasterize)
            surface.width = surface.bitmap.width
            surface.height = surface.bitmap.height
            return surface

        return RenderTask(run())

    async def get_text_content(self) -> TextContent:
        def extract() -> TextContent:
            content = TextContent()
            with self._document.lock:
                data = self._page.get_text("dict")
            for block in data.get("blocks", []):
                for line in block.get("lines", []):
                    for span in line.get("spans", []):
                        text = span.get("text") or ""
                        if not text.strip():
                            continue
                        size = float(span.get("size") or 0.0)
                        x0, _y0, x1, y1 = span.get("bbox", (0.0, 0.0, 0.0, 0.0))
                        origin_x, origin_y = span.get("origin", (x0, y1))
                        content.runs.append(
                            TextRun(
                                text=text,
                                transform=(size, 0.0, 0.0, size, float(origin_x), float(origin_y)),
                                width=float(x1) - float(x0),
                                font_name=str(span.get("font") or ""),
                            )
                        )
            return content

        return await asyncio.to_thread(extract)


class PyMuPDFDocument:
    def __init__(self, fitz: Any, doc: Any) -> None:
        self.fitz = fitz
        self._doc = doc
        self.page_count = int(doc.page_count)
        # MuPDF contexts are not thread-safe; worker threads take turns.
        self.lock = threading.Lock()

    async def get_page(self, page_number: int) -> PyMuPDFPage:
        if self._doc is None:
            raise RuntimeError("document has been destroyed")
        if page_number < 1 or page_number > self.page_count:
            raise IndexError(f"page {page_number} out of range")
        with self.lock:
            page = self._doc.load_page(page_number - 1)
        return PyMuPDFPage(self, page, page_number)

    def destroy(self) -> None:
        if self._doc is not None:
            with self.lock:
                self._doc.close()
            self._doc = None


class PyMuPDFLoader:
    """Opens PDFs with PyMuPDF, imported lazily on first use."""

    def __init__(self) -> None:
        self._fitz: Optional[Any] = None

    def _ensure_fitz(self) -> Any:
        if self._fitz is None:
            try:
                import fitz  # type: ignore[import]
            except ImportError as exc:  # pragma: no cover - packaging error
                raise RuntimeError(
                    "PyMuPDF (pymupdf) is required to view PDF files."
                ) from exc
            self._fitz = fitz
        return self._fitz

    async def open(self, data: bytes) -> PyMuPDFDocument:
        fitz = self._ensure_fitz()
        try:
            doc = fitz.open(stream=bytes(data), filetype="pdf")
        except Exception as exc:
            raise DocumentLoadError(f"Could not open PDF: {exc}") from exc
        if doc.page_count == 0:
            doc.close()
            raise DocumentLoadError("The selected PDF does not contain any pages.")
        logger.info("PDF opened: %s pages", doc.page_count)
        return PyMuPDFDocument(fitz, doc)

    def teardown(self) -> None:
        self._fitz = None


__all__ = ["PyMuPDFDocument", "PyMuPDFLoader", "PyMuPDFPage"]
