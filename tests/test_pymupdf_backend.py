from __future__ import annotations

import asyncio

import pytest

fitz = pytest.importorskip("fitz")

from marginalia.core.document import DocumentLoadError, Surface, layout_text_runs  # noqa: E402
from marginalia.core.pymupdf_backend import PyMuPDFLoader  # noqa: E402
from marginalia.core.render_scheduler import RenderScheduler  # noqa: E402
from marginalia.utils.config import ViewerConfig  # noqa: E402


def _pdf_bytes(pages: int = 2) -> bytes:
    doc = fitz.open()
    for index in range(pages):
        page = doc.new_page(width=200, height=300)
        page.insert_text((20, 50), f"Hello page {index + 1}", fontsize=12)
    data = doc.tobytes()
    doc.close()
    return data


def test_open_render_and_extract_text() -> None:
    async def _run() -> None:
        loader = PyMuPDFLoader()
        document = await loader.open(_pdf_bytes())
        try:
            assert document.page_count == 2
            page = await document.get_page(1)
            viewport = page.get_viewport(2.0)
            assert (viewport.width, viewport.height) == (400.0, 600.0)

            surface = Surface(400, 600)
            await page.render(surface, viewport).wait()
            assert surface.bitmap is not None
            assert (surface.bitmap.width, surface.bitmap.height) == (400, 600)
            assert len(surface.bitmap.samples) == surface.bitmap.stride * 600

            content = await page.get_text_content()
            assert "Hello page 1" in "".join(run.text for run in content.runs)
            overlay = layout_text_runs(content.runs, viewport)
            span = overlay.spans[0]
            assert span.left == pytest.approx(40.0, abs=2.0)
            assert span.top + span.font_size == pytest.approx(100.0, abs=2.0)
        finally:
            document.destroy()
            loader.teardown()

    asyncio.run(_run())


def test_open_rejects_non_pdf_bytes() -> None:
    async def _run() -> None:
        with pytest.raises(DocumentLoadError):
            await PyMuPDFLoader().open(b"this is not a pdf")

    asyncio.run(_run())


def test_page_access_checks_bounds_and_lifetime() -> None:
    async def _run() -> None:
        document = await PyMuPDFLoader().open(_pdf_bytes(1))
        with pytest.raises(IndexError):
            await document.get_page(2)
        document.destroy()
        document.destroy()
        with pytest.raises(RuntimeError):
            await document.get_page(1)

    asyncio.run(_run())


def test_scheduler_renders_real_pdf() -> None:
    async def _run() -> None:
        document = await PyMuPDFLoader().open(_pdf_bytes(3))
        scheduler = RenderScheduler(ViewerConfig(initial_zoom=1.0))
        rendered = await scheduler.load(document)
        assert rendered >= 2
        await scheduler.wait_for_background()
        for slot in scheduler.layout:
            assert slot.is_rendered
            assert (slot.width, slot.height) == (200.0, 300.0)
            assert f"Hello page {slot.page_number}" in slot.text_layer.overlay.text
        scheduler.destroy()

    asyncio.run(_run())
