"""Document session: one open document with its pages, annotations and overlays."""

from __future__ import annotations

import enum
from typing import Callable, List, Optional

from marginalia.annotations.host import HostStorage
from marginalia.annotations.models import Annotation
from marginalia.annotations.notes import NoteContent
from marginalia.annotations.store import AnnotationStore
from marginalia.core.document import DocumentLoader, DocumentLoadError
from marginalia.core.pymupdf_backend import PyMuPDFLoader
from marginalia.core.render_scheduler import RenderScheduler
from marginalia.presentation.overlays import AnnotationPresenter
from marginalia.presentation.selection import (
    SelectionRange,
    compute_anchor,
    compute_highlight_rects,
)
from marginalia.utils.config import ViewerConfig
from marginalia.utils.logger import logger


class SessionState(enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    DESTROYED = "destroyed"


class SessionError(RuntimeError):
    """Raised when a destroyed session is asked to do work."""


LoaderFactory = Callable[[], DocumentLoader]
ChangeCallback = Callable[[str, Optional[int]], None]


class DocumentSession:
    """Wires the render scheduler, annotation store and presenter for one viewer."""

    def __init__(
        self,
        storage: HostStorage,
        loader_factory: LoaderFactory = PyMuPDFLoader,
        config: Optional[ViewerConfig] = None,
        *,
        on_change: Optional[ChangeCallback] = None,
    ) -> None:
        self._config = config or ViewerConfig()
        self._storage = storage
        self._loader_factory = loader_factory
        self._loader: Optional[DocumentLoader] = None
        self._state = SessionState.IDLE
        self._document_path: Optional[str] = None
        self._load_ticket = 0
        self._on_change = on_change
        self.scheduler = RenderScheduler(
            self._config,
            on_page_rendered=self._handle_page_rendered,
            on_layout_changed=self._handle_layout_changed,
        )
        self.store = AnnotationStore(storage, self._config)
        self.presenter = AnnotationPresenter(self.scheduler.layout)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def document_path(self) -> Optional[str]:
        return self._document_path

    @property
    def zoom(self) -> float:
        return self.scheduler.zoom

    @property
    def annotations(self) -> List[Annotation]:
        return self.store.annotations

    def _ensure_loader(self) -> DocumentLoader:
        if self._loader is None:
            self._loader = self._loader_factory()
        return self._loader

    # -------------------------------------------------------------- lifecycle
    async def load(self, document_path: str) -> None:
        """Open a document, replacing the current one; raises DocumentLoadError."""
        if self._state is SessionState.DESTROYED:
            raise SessionError("session has been destroyed")
        self._load_ticket += 1
        ticket = self._load_ticket
        self._teardown()
        self._state = SessionState.LOADING
        self._document_path = document_path
        self._emit("loading")
        logger.info("Loading document %s", document_path)

        try:
            self._document_path = self._storage.resolve(document_path)
            data = await self._storage.read_bytes(self._document_path)
            if ticket != self._load_ticket:
                return
            document = await self._ensure_loader().open(data)
            if ticket != self._load_ticket:
                document.destroy()
                return
            await self.scheduler.load(document)
            if ticket != self._load_ticket:
                return
            await self.store.load_for_document(self._document_path)
            if ticket != self._load_ticket:
                return
        except DocumentLoadError as exc:
            self._fail_load(ticket, str(exc), exc)
        except OSError as exc:
            self._fail_load(ticket, f"Could not read {self._document_path}: {exc}", exc)
        except ValueError as exc:
            self._fail_load(ticket, f"Invalid document path {document_path!r}: {exc}", exc)
        except Exception as exc:
            logger.exception("Unexpected error while loading %s", self._document_path)
            self._fail_load(ticket, f"Could not open {self._document_path}: {exc}", exc)

        self._state = SessionState.READY
        self.refresh_presentation()
        self._emit("ready")

    def _fail_load(self, ticket: int, message: str, cause: Exception) -> None:
        logger.error("Failed to load document: %s", message)
        if ticket == self._load_ticket:
            self._teardown()
            self._state = SessionState.IDLE
            self._document_path = None
            self._emit("failed")
        raise DocumentLoadError(message) from cause

    def _teardown(self) -> None:
        self.scheduler.destroy()
        self.store.close()
        self.presenter.clear()

    def close(self) -> None:
        """Drop the open document but keep the session usable."""
        if self._state is SessionState.DESTROYED:
            return
        self._load_ticket += 1
        self._teardown()
        self._document_path = None
        self._state = SessionState.IDLE
        self._emit("closed")

    def destroy(self) -> None:
        if self._state is SessionState.DESTROYED:
            return
        self._load_ticket += 1
        self._teardown()
        if self._loader is not None:
            self._loader.teardown()
            self._loader = None
        self._document_path = None
        self._state = SessionState.DESTROYED
        self._emit("destroyed")

    async def wait_until_idle(self) -> None:
        await self.scheduler.wait_for_background()
        await self.store.wait_for_pending()

    # ------------------------------------------------------------------- view
    async def set_zoom(self, zoom: float) -> None:
        if self._state is not SessionState.READY:
            logger.debug("Ignoring zoom change while %s", self._state.value)
            return
        await self.scheduler.set_zoom(self._config.clamp_zoom(zoom))
        if self._state is SessionState.READY:
            self.refresh_presentation()

    def set_preview_scale(self, scale: float) -> None:
        if self._state is SessionState.READY:
            self.scheduler.set_preview_scale(scale)

    def clear_preview_scale(self) -> None:
        self.scheduler.clear_preview_scale()

    def set_viewport(self, scroll_top: float, height: float) -> None:
        self.scheduler.set_viewport(scroll_top, height)

    def refresh_presentation(self) -> None:
        self.presenter.refresh(self.store.annotations)
        self._emit("presentation")

    # ------------------------------------------------------------ annotations
    async def create_annotation(self, selection: Optional[SelectionRange]) -> Optional[Annotation]:
        """Annotate the selection; None when it does not land on a page."""
        if self._state is not SessionState.READY:
            return None
        layout = self.scheduler.layout
        anchor = compute_anchor(selection, layout)
        highlights = compute_highlight_rects(selection, layout)
        if anchor is None or not highlights or selection is None:
            return None
        annotation = await self.store.create(anchor, selection.text.strip(), highlights)
        self.presenter.select(annotation.id)
        self.refresh_presentation()
        return annotation

    def select_annotation(self, annotation_id: Optional[str]) -> None:
        self.presenter.select(annotation_id)
        self._emit("presentation")

    async def remove_annotation(self, annotation_id: str) -> bool:
        removed = await self.store.remove(annotation_id)
        if removed:
            if self.presenter.selected_id == annotation_id:
                self.presenter.clear_selection()
            self.refresh_presentation()
        return removed

    async def load_comment(self, annotation_id: str) -> Optional[NoteContent]:
        annotation = self.store.get(annotation_id)
        if annotation is None:
            return None
        if not annotation.is_backed:
            await self.store.ensure_note_backing(annotation)
        return await self.store.load_note(annotation)

    async def save_comment(self, annotation_id: str, body: str) -> bool:
        annotation = self.store.get(annotation_id)
        if annotation is None:
            return False
        return await self.store.save_comment(annotation, body)

    # -------------------------------------------------------------- listeners
    def _handle_page_rendered(self, page_number: int) -> None:
        self._emit("page", page_number)

    def _handle_layout_changed(self) -> None:
        if self._state is SessionState.READY:
            self.presenter.refresh(self.store.annotations)
        self._emit("layout")

    def _emit(self, event: str, page_number: Optional[int] = None) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(event, page_number)
        except Exception:
            logger.exception("Session change listener failed for %s", event)


__all__ = ["DocumentSession", "SessionError", "SessionState"]
