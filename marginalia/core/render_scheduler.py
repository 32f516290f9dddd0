"""Incremental page rendering for a scrollable document.

Zoom changes render the pages near the viewport first with a small worker
pool, then hand the remaining pages to a deferred background pass. Every
suspendable step carries a `RenderToken`; work whose token is no longer
current is discarded instead of touching a page slot.
"""

from __future__ import annotations

import asyncio
import math
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from marginalia.core.document import (
    DocumentLoadError,
    DocumentProxy,
    RenderCancelled,
    RenderTask,
    Surface,
    TextContent,
    TextOverlay,
    Viewport,
    layout_text_runs,
)
from marginalia.core.page_slots import PageLayout, PageSlot
from marginalia.core.render_token import GenerationCounter, RenderToken
from marginalia.utils.config import ViewerConfig
from marginalia.utils.logger import logger

# US Letter in PDF points, used for slots whose page could not be measured.
DEFAULT_PAGE_SIZE: Tuple[float, float] = (612.0, 792.0)

# Pages rendered in the first pass when none intersect the viewport.
FALLBACK_VISIBLE_PAGES = 2

PageCallback = Callable[[int], None]
LayoutCallback = Callable[[], None]


class RenderScheduler:
    """Owns zoom, render generation, page slots and in-flight render tasks."""

    def __init__(
        self,
        config: Optional[ViewerConfig] = None,
        *,
        on_page_rendered: Optional[PageCallback] = None,
        on_layout_changed: Optional[LayoutCallback] = None,
    ) -> None:
        self._config = config or ViewerConfig()
        self._zoom = float(self._config.initial_zoom)
        self._counter = GenerationCounter()
        self._document: Optional[DocumentProxy] = None
        self._layout = PageLayout(self._config.page_gap)
        self._in_flight: Dict[int, RenderTask] = {}
        self._background_tasks: Set[asyncio.Task[None]] = set()
        self._preview_scale: Optional[float] = None
        self._scroll_top = 0.0
        self._viewport_height = 0.0
        self._on_page_rendered = on_page_rendered
        self._on_layout_changed = on_layout_changed

    # ------------------------------------------------------------------ state
    @property
    def zoom(self) -> float:
        return self._zoom

    @property
    def generation(self) -> int:
        return self._counter.value

    @property
    def layout(self) -> PageLayout:
        return self._layout

    @property
    def document(self) -> Optional[DocumentProxy]:
        return self._document

    @property
    def page_count(self) -> int:
        return int(self._document.page_count) if self._document is not None else 0

    @property
    def preview_active(self) -> bool:
        return self._preview_scale is not None

    @property
    def preview_factor(self) -> float:
        if self._preview_scale is None or not self._zoom:
            return 1.0
        return self._preview_scale / self._zoom

    def in_flight_pages(self) -> List[int]:
        return sorted(self._in_flight)

    def set_viewport(self, scroll_top: float, height: float) -> None:
        self._scroll_top = max(0.0, float(scroll_top))
        self._viewport_height = max(0.0, float(height))

    # -------------------------------------------------------------- lifecycle
    async def load(self, document: DocumentProxy) -> int:
        """Show `document`, replacing whatever was loaded before.

        Returns the number of pages rendered in the first pass; the rest
        continue in the background.
        """
        self.clear_preview_scale()
        self._release_document()
        if int(document.page_count) <= 0:
            document.destroy()
            raise DocumentLoadError("The document does not contain any pages.")
        self._document = document
        token = self._counter.advance()
        await self._build_slots(token)
        if not token.is_current():
            return 0
        visible, remainder = self._partition_pages()
        rendered = await self._render_pages_with_concurrency(
            visible, token, self._config.render_workers
        )
        if not token.is_current():
            return rendered
        if rendered:
            self._schedule_background_render(remainder, token)
            return rendered
        # Nothing near the viewport rendered; try the rest before giving up.
        rendered = await self._render_pages_with_concurrency(
            remainder, token, self._config.render_workers
        )
        if token.is_current() and rendered == 0:
            raise DocumentLoadError(
                f"None of the {self.page_count} pages could be rendered."
            )
        return rendered

    def destroy(self) -> None:
        self.clear_preview_scale()
        self._release_document()

    def _release_document(self) -> None:
        self._counter.advance()
        self._cancel_in_flight()
        for task in list(self._background_tasks):
            task.cancel()
        self._background_tasks.clear()
        document = self._document
        self._document = None
        if document is not None:
            try:
                document.destroy()
            except Exception as exc:
                logger.debug("Failed to release document: %s", exc)
        self._layout.clear()

    # ------------------------------------------------------------------- zoom
    async def set_zoom(self, zoom: float) -> None:
        zoom = float(zoom)
        if self._document is None or zoom <= 0:
            return
        # A real render always starts from an untransformed page column.
        self.clear_preview_scale()
        if zoom == self._zoom:
            return

        previous = self._zoom
        self._zoom = zoom
        token = self._counter.advance()
        self._cancel_in_flight()

        if not len(self._layout):
            # Slots were lost; rebuild and render every page in order.
            await self._build_slots(token)
            if token.is_current():
                await self._render_pages_with_concurrency(
                    self._layout.page_numbers(), token, 1
                )
            return

        factor = zoom / previous if previous else 1.0
        if math.isfinite(factor) and factor > 0:
            self._layout.rescale(factor)
            self._notify_layout_changed()
        if not token.is_current():
            return
        await self._render_two_phase(token)

    def set_preview_scale(self, scale: float) -> None:
        """Visual-only scale of the whole page column; no slot changes, no render."""
        scale = float(scale)
        if not math.isfinite(scale) or scale <= 0:
            return
        self._preview_scale = scale
        self._notify_layout_changed()

    def clear_preview_scale(self) -> None:
        if self._preview_scale is None:
            return
        self._preview_scale = None
        self._notify_layout_changed()

    # -------------------------------------------------------------- rendering
    async def _build_slots(self, token: RenderToken) -> None:
        document = self._document
        if document is None:
            return
        fallback = (DEFAULT_PAGE_SIZE[0] * self._zoom, DEFAULT_PAGE_SIZE[1] * self._zoom)
        self._layout.clear()
        for page_number in range(1, int(document.page_count) + 1):
            try:
                page = await document.get_page(page_number)
                viewport = page.get_viewport(self._zoom)
                size = (float(viewport.width), float(viewport.height))
                fallback = size
            except Exception as exc:
                logger.debug("Could not measure page %s: %s", page_number, exc)
                size = fallback
            if not token.is_current():
                return
            self._layout.add(PageSlot(page_number, *size), relayout=False)
        self._layout.relayout()
        self._notify_layout_changed()

    def _partition_pages(self) -> Tuple[List[int], List[int]]:
        all_pages = self._layout.page_numbers()
        visible = self._layout.visible_pages(
            self._scroll_top, self._viewport_height, self._config.visible_buffer_px
        )
        if not visible:
            visible = all_pages[:FALLBACK_VISIBLE_PAGES]
        visible_set = set(visible)
        remainder = [n for n in all_pages if n not in visible_set]
        return visible, remainder

    async def _render_two_phase(self, token: RenderToken) -> int:
        visible, remainder = self._partition_pages()
        rendered = await self._render_pages_with_concurrency(
            visible, token, self._config.render_workers
        )
        if token.is_current():
            self._schedule_background_render(remainder, token)
        return rendered

    async def _render_pages_with_concurrency(
        self, pages: Sequence[int], token: RenderToken, concurrency: int
    ) -> int:
        if not pages:
            return 0
        cursor = iter(sorted(pages))
        rendered = 0

        async def worker() -> None:
            nonlocal rendered
            while token.is_current():
                page_number = next(cursor, None)
                if page_number is None:
                    return
                if await self._render_page(page_number, token):
                    rendered += 1

        limit = max(1, int(concurrency))
        await asyncio.gather(*(worker() for _ in range(min(limit, len(pages)))))
        return rendered

    def _schedule_background_render(self, pages: Sequence[int], token: RenderToken) -> None:
        if not pages:
            return

        async def run() -> None:
            # Let pending UI work run before the background pass starts.
            await asyncio.sleep(0)
            if not token.is_current():
                return
            count = await self._render_pages_with_concurrency(
                pages, token, self._config.render_workers
            )
            logger.debug(
                "Background pass for generation %s rendered %s/%s pages",
                token.generation,
                count,
                len(pages),
            )

        task = asyncio.get_running_loop().create_task(run())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def wait_for_background(self) -> None:
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def _render_page(self, page_number: int, token: RenderToken) -> bool:
        """Render one page; swap it into its slot only if `token` is still current."""
        document = self._document
        slot = self._layout.get(page_number)
        if document is None or slot is None or not token.is_current():
            return False
        zoom = self._zoom

        try:
            page = await document.get_page(page_number)
        except Exception as exc:
            logger.debug("Failed to load page %s: %s", page_number, exc)
            return False
        if not token.is_current():
            return False

        viewport = page.get_viewport(zoom)
        if (slot.width, slot.height) != (viewport.width, viewport.height):
            slot.resize(viewport.width, viewport.height)
            self._layout.relayout()
            self._notify_layout_changed()

        surface = Surface(int(math.ceil(viewport.width)), int(math.ceil(viewport.height)))
        try:
            task = page.render(surface, viewport)
        except Exception as exc:
            logger.debug("Failed to start render of page %s: %s", page_number, exc)
            return False
        self._in_flight[page_number] = task
        try:
            await task.wait()
        except RenderCancelled:
            return False
        except Exception as exc:
            logger.debug("Render of page %s failed: %s", page_number, exc)
            return False
        finally:
            if self._in_flight.get(page_number) is task:
                del self._in_flight[page_number]
        if not token.is_current() or surface.bitmap is None:
            return False

        try:
            text_content = await page.get_text_content()
            if not token.is_current():
                return False
            overlay = await self._build_text_overlay(document, text_content, viewport)
        except Exception as exc:
            logger.debug("Text overlay for page %s failed: %s", page_number, exc)
            return False
        if not token.is_current():
            return False

        slot.swap_content(surface.bitmap, overlay, token.generation)
        self._notify_page_rendered(page_number)
        return True

    @staticmethod
    async def _build_text_overlay(
        document: DocumentProxy, text_content: TextContent, viewport: Viewport
    ) -> TextOverlay:
        renderer = getattr(document, "render_text_layer", None)
        if callable(renderer):
            return await renderer(text_content, viewport)
        return layout_text_runs(text_content.runs, viewport)

    def _cancel_in_flight(self) -> None:
        for task in self._in_flight.values():
            cancel = getattr(task, "cancel", None)
            if not callable(cancel):
                continue
            try:
                cancel()
            except Exception as exc:
                logger.debug("Render task refused cancellation: %s", exc)
        self._in_flight.clear()

    # -------------------------------------------------------------- listeners
    def _notify_page_rendered(self, page_number: int) -> None:
        if self._on_page_rendered is None:
            return
        try:
            self._on_page_rendered(page_number)
        except Exception:
            logger.exception("Page rendered listener failed for page %s", page_number)

    def _notify_layout_changed(self) -> None:
        if self._on_layout_changed is None:
            return
        try:
            self._on_layout_changed()
        except Exception:
            logger.exception("Layout listener failed")


__all__ = ["DEFAULT_PAGE_SIZE", "RenderScheduler"]
