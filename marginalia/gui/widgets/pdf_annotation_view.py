from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from qtpy import QtCore, QtGui, QtWidgets

from marginalia.annotations.host import HostStorage
from marginalia.core.document import Bitmap, DocumentLoadError
from marginalia.core.geometry import Rect
from marginalia.core.page_slots import PageLayout
from marginalia.core.pymupdf_backend import PyMuPDFLoader
from marginalia.presentation.overlays import Marker, nearest_marker
from marginalia.presentation.selection import SelectionRange, selection_from_region
from marginalia.session import DocumentSession, LoaderFactory, SessionState
from marginalia.utils.config import ViewerConfig
from marginalia.utils.logger import logger

ZOOM_COMMIT_DELAY_MS = 250
WHEEL_ZOOM_STEP = 1.1
MARKER_GUTTER = 18

_HIGHLIGHT_COLOR = QtGui.QColor(255, 220, 0, 90)
_SELECTED_HIGHLIGHT_COLOR = QtGui.QColor(255, 150, 0, 140)
_SELECTION_COLOR = QtGui.QColor(60, 120, 220, 70)
_MARKER_COLOR = QtGui.QColor(230, 170, 0)
_SELECTED_MARKER_COLOR = QtGui.QColor(220, 90, 0)


@dataclass
class ContextMenuAction:
    """Entry of the selection context menu; `callback` gets the selected text."""

    id: str
    label: str
    callback: Callable[[str], Any]


@dataclass(frozen=True)
class ViewFrame:
    """What the GUI thread paints and hit-tests, captured on the session loop."""

    layout: PageLayout
    markers: Tuple[Marker, ...] = ()
    preview_factor: float = 1.0
    zoom: float = 1.0
    ready: bool = False

    @classmethod
    def capture(cls, session: DocumentSession) -> "ViewFrame":
        scheduler = session.scheduler
        return cls(
            layout=scheduler.layout.snapshot(),
            markers=tuple(session.presenter.markers),
            preview_factor=scheduler.preview_factor or 1.0,
            zoom=scheduler.zoom,
            ready=session.state is SessionState.READY,
        )

    def marker_at(self, y: float) -> Optional[Marker]:
        return nearest_marker(self.markers, y)


def bitmap_to_qimage(bitmap: Bitmap) -> QtGui.QImage:
    fmt = QtGui.QImage.Format_RGBA8888 if bitmap.alpha else QtGui.QImage.Format_RGB888
    image = QtGui.QImage(bitmap.samples, bitmap.width, bitmap.height, bitmap.stride, fmt)
    # Detach from the Python bytes buffer.
    return image.copy()


class _PageCanvas(QtWidgets.QWidget):
    """Paints the page column of a PdfAnnotationView."""

    def __init__(self, view: "PdfAnnotationView") -> None:
        super().__init__(view)
        self._view = view
        self._images: dict = {}
        self._drag_origin: Optional[QtCore.QPointF] = None
        self._drag_rect: Optional[Rect] = None
        self.setMouseTracking(False)
        self.setContextMenuPolicy(QtCore.Qt.DefaultContextMenu)

    def invalidate_page(self, page_number: int) -> None:
        self._images.pop(page_number, None)

    def reset(self) -> None:
        self._images.clear()
        self._drag_origin = None
        self._drag_rect = None

    def _image_for(self, page_number: int, bitmap: Bitmap, generation: int) -> QtGui.QImage:
        cached = self._images.get(page_number)
        if cached is not None and cached[0] == generation:
            return cached[1]
        image = bitmap_to_qimage(bitmap)
        self._images[page_number] = (generation, image)
        return image

    def _to_content(self, pos: QtCore.QPointF) -> QtCore.QPointF:
        factor = self._view.frame.preview_factor or 1.0
        return QtCore.QPointF(pos.x() / factor, pos.y() / factor)

    def paintEvent(self, event: QtGui.QPaintEvent) -> None:
        painter = QtGui.QPainter(self)
        painter.fillRect(self.rect(), self.palette().color(QtGui.QPalette.Dark))
        frame = self._view.frame
        factor = frame.preview_factor
        painter.scale(factor, factor)
        for slot in frame.layout.ordered():
            target = QtCore.QRectF(slot.left, slot.top, slot.width, slot.height)
            layer = slot.bitmap_layer
            if layer is None:
                painter.fillRect(target, QtCore.Qt.white)
            else:
                image = self._image_for(slot.page_number, layer.bitmap, layer.generation)
                painter.drawImage(target, image)
            highlights = slot.highlight_layer
            if highlights is None:
                continue
            for box in highlights.boxes:
                color = _SELECTED_HIGHLIGHT_COLOR if box.selected else _HIGHLIGHT_COLOR
                painter.fillRect(
                    QtCore.QRectF(
                        slot.left + box.rect.x,
                        slot.top + box.rect.y,
                        box.rect.width,
                        box.rect.height,
                    ),
                    color,
                )
        if self._drag_rect is not None:
            rect = self._drag_rect
            painter.fillRect(QtCore.QRectF(rect.x, rect.y, rect.width, rect.height), _SELECTION_COLOR)
        for rect in self._view.selection.rects if self._view.selection else ():
            painter.fillRect(QtCore.QRectF(rect.x, rect.y, rect.width, rect.height), _SELECTION_COLOR)
        gutter_x = frame.layout.content_width + 4
        for marker in frame.markers:
            painter.setBrush(_SELECTED_MARKER_COLOR if marker.selected else _MARKER_COLOR)
            painter.setPen(QtCore.Qt.NoPen)
            painter.drawEllipse(QtCore.QPointF(gutter_x + MARKER_GUTTER / 2, marker.top), 5, 5)
        painter.end()

    def mousePressEvent(self, event: QtGui.QMouseEvent) -> None:
        if event.button() != QtCore.Qt.LeftButton:
            super().mousePressEvent(event)
            return
        point = self._to_content(QtCore.QPointF(event.pos()))
        frame = self._view.frame
        if point.x() > frame.layout.content_width:
            marker = frame.marker_at(point.y())
            if marker is not None:
                self._view.select_annotation(marker.annotation_id)
                self._view.annotationActivated.emit(marker.annotation_id)
                return
        self._drag_origin = point
        self._drag_rect = None
        self._view.set_selection(None)

    def mouseMoveEvent(self, event: QtGui.QMouseEvent) -> None:
        if self._drag_origin is None:
            return
        point = self._to_content(QtCore.QPointF(event.pos()))
        self._drag_rect = Rect.from_points(
            self._drag_origin.x(), self._drag_origin.y(), point.x(), point.y()
        )
        self.update()

    def mouseReleaseEvent(self, event: QtGui.QMouseEvent) -> None:
        if self._drag_origin is None or event.button() != QtCore.Qt.LeftButton:
            return
        region = self._drag_rect
        self._drag_origin = None
        self._drag_rect = None
        if region is None or region.is_degenerate():
            self.update()
            return
        selection = selection_from_region(self._view.frame.layout, region)
        self._view.set_selection(None if selection.collapsed else selection)

    def contextMenuEvent(self, event: QtGui.QContextMenuEvent) -> None:
        selection = self._view.selection
        if selection is None:
            return
        menu = QtWidgets.QMenu(self)
        for action in self._view.context_actions:
            item = menu.addAction(action.label)
            item.setData(action.id)
        chosen = menu.exec_(event.globalPos())
        if chosen is not None:
            self._view.trigger_action(str(chosen.data()))


class PdfAnnotationView(QtWidgets.QWidget):
    """Scrollable PDF page column with annotation markers and highlights.

    The DocumentSession runs on a private asyncio loop thread; everything it
    reports reaches the widget through queued signals. Each signal carries a
    ViewFrame snapshot, and the widget paints only from the latest one.
    """

    documentLoaded = QtCore.Signal(str)
    loadFailed = QtCore.Signal(str)
    annotationCreated = QtCore.Signal(str)
    annotationActivated = QtCore.Signal(str)
    textSelected = QtCore.Signal(str)
    _sessionChanged = QtCore.Signal(str, int, object)

    def __init__(
        self,
        storage: HostStorage,
        parent: Optional[QtWidgets.QWidget] = None,
        *,
        config: Optional[ViewerConfig] = None,
        loader_factory: LoaderFactory = PyMuPDFLoader,
        actions: Optional[List[ContextMenuAction]] = None,
    ) -> None:
        super().__init__(parent)
        self._config = config or ViewerConfig()
        self._selection: Optional[SelectionRange] = None
        self._pending_zoom: Optional[float] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_ready = threading.Event()
        self._loop_thread: Optional[threading.Thread] = None
        self._frame = ViewFrame(
            PageLayout(self._config.page_gap), zoom=float(self._config.initial_zoom)
        )

        self.session = DocumentSession(
            storage,
            loader_factory,
            self._config,
            on_change=self._publish,
        )
        self.context_actions: List[ContextMenuAction] = (
            list(actions) if actions is not None else self._default_actions()
        )

        self._scroll = QtWidgets.QScrollArea(self)
        self._scroll.setWidgetResizable(False)
        self._scroll.setAlignment(QtCore.Qt.AlignHCenter)
        self._canvas = _PageCanvas(self)
        self._scroll.setWidget(self._canvas)
        self._scroll.verticalScrollBar().valueChanged.connect(self._sync_viewport)
        layout = QtWidgets.QVBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)
        layout.addWidget(self._scroll)

        self._zoom_timer = QtCore.QTimer(self)
        self._zoom_timer.setSingleShot(True)
        self._zoom_timer.setInterval(ZOOM_COMMIT_DELAY_MS)
        self._zoom_timer.timeout.connect(self._commit_zoom)

        self._sessionChanged.connect(self._on_session_changed)
        self._scroll.viewport().installEventFilter(self)
        self._start_loop()

    # ------------------------------------------------------------ event loop
    def _start_loop(self) -> None:
        def _run_loop() -> None:
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            self._loop = loop
            self._loop_ready.set()
            try:
                loop.run_forever()
            finally:
                loop.close()
                self._loop = None

        self._loop_thread = threading.Thread(
            target=_run_loop, name="MarginaliaRender", daemon=True
        )
        self._loop_thread.start()
        self._loop_ready.wait(timeout=5.0)

    def _submit(
        self,
        coro: Awaitable[Any],
        on_done: Optional[Callable[["asyncio.Future[Any]"], None]] = None,
    ) -> Optional["asyncio.Future[Any]"]:
        if self._loop is None:
            coro.close()
            return None
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        if on_done is not None:
            future.add_done_callback(on_done)
        return future

    def _call_soon(self, callback: Callable[..., Any], *args: Any) -> None:
        if self._loop is not None:
            self._loop.call_soon_threadsafe(callback, *args)

    def shutdown(self) -> None:
        """Destroy the session and stop the loop thread."""
        self._zoom_timer.stop()
        if self._loop is not None:
            future = self._submit(self._destroy_session())
            try:
                if future is not None:
                    future.result(timeout=2.0)
            except Exception:
                logger.exception("Failed destroying document session")
            loop = self._loop
            if loop is not None:
                loop.call_soon_threadsafe(loop.stop)
        if self._loop_thread is not None:
            self._loop_thread.join(timeout=1.0)
            self._loop_thread = None

    async def _destroy_session(self) -> None:
        self.session.destroy()

    def closeEvent(self, event: QtGui.QCloseEvent) -> None:
        self.shutdown()
        super().closeEvent(event)

    # ------------------------------------------------------------- lifecycle
    def open(self, path: str) -> None:
        self._canvas.reset()
        self._selection = None

        def _done(future: "asyncio.Future[Any]") -> None:
            if future.cancelled():
                return
            exc = future.exception()
            if exc is None:
                if self.session.state is SessionState.READY:
                    self.documentLoaded.emit(path)
            elif isinstance(exc, DocumentLoadError):
                self.loadFailed.emit(str(exc))
            else:
                logger.error("Opening %s failed: %s", path, exc)
                self.loadFailed.emit(str(exc))

        self._sync_viewport()
        self._submit(self.session.load(path), _done)

    def close_document(self) -> None:
        self._zoom_timer.stop()
        self._pending_zoom = None
        self._selection = None
        self._canvas.reset()
        self._call_soon(self.session.close)

    def render(self) -> None:
        """Resize the canvas to the page column and repaint."""
        frame = self._frame
        factor = frame.preview_factor
        width = int((frame.layout.content_width + MARKER_GUTTER + 8) * factor)
        height = int(frame.layout.content_height * factor)
        self._canvas.resize(max(width, 1), max(height, 1))
        self._canvas.update()

    # ------------------------------------------------------------- selection
    @property
    def selection(self) -> Optional[SelectionRange]:
        return self._selection

    @property
    def frame(self) -> ViewFrame:
        return self._frame

    def set_selection(self, selection: Optional[SelectionRange]) -> None:
        self._selection = selection
        self._canvas.update()
        if selection is not None and not selection.collapsed:
            self.textSelected.emit(selection.text)

    def selected_text(self) -> str:
        return self._selection.text if self._selection is not None else ""

    def select_annotation(self, annotation_id: Optional[str]) -> None:
        self._call_soon(self.session.select_annotation, annotation_id)

    def _default_actions(self) -> List[ContextMenuAction]:
        return [
            ContextMenuAction("add-comment", "Add comment", lambda _text: self.add_comment()),
            ContextMenuAction("copy", "Copy", self._copy_text),
        ]

    def trigger_action(self, action_id: str) -> None:
        selection = self._selection
        text = selection.text if selection is not None else ""
        for action in self.context_actions:
            if action.id == action_id:
                try:
                    action.callback(text)
                except Exception:
                    logger.exception("Context menu action %s failed", action_id)
                return

    @staticmethod
    def _copy_text(text: str) -> None:
        QtWidgets.QApplication.clipboard().setText(text)

    def add_comment(self) -> None:
        selection = self._selection
        if selection is None:
            return
        self.set_selection(None)

        def _done(future: "asyncio.Future[Any]") -> None:
            if future.cancelled() or future.exception() is not None:
                logger.error("Could not create annotation: %s", future.exception())
                return
            annotation = future.result()
            if annotation is not None:
                self.annotationCreated.emit(annotation.id)

        self._submit(self.session.create_annotation(selection), _done)

    # ------------------------------------------------------------------ zoom
    def eventFilter(self, obj: QtCore.QObject, event: QtCore.QEvent) -> bool:
        if obj is self._scroll.viewport():
            if event.type() == QtCore.QEvent.Wheel and (
                event.modifiers() & QtCore.Qt.ControlModifier
            ):
                self._preview_zoom(event.angleDelta().y())
                return True
            if event.type() == QtCore.QEvent.Resize:
                self._sync_viewport()
        return super().eventFilter(obj, event)

    def _preview_zoom(self, delta: int) -> None:
        if not self._frame.ready or not delta:
            return
        base = self._pending_zoom if self._pending_zoom is not None else self._frame.zoom
        target = self._config.clamp_zoom(base * WHEEL_ZOOM_STEP ** (delta / 120.0))
        self._pending_zoom = target
        self._call_soon(self.session.set_preview_scale, target)
        self._zoom_timer.start()

    def _commit_zoom(self) -> None:
        target = self._pending_zoom
        self._pending_zoom = None
        if target is None:
            return
        self._canvas.reset()
        self._submit(self.session.set_zoom(target))

    def zoom_to(self, zoom: float) -> None:
        self._pending_zoom = self._config.clamp_zoom(zoom)
        self._zoom_timer.stop()
        self._commit_zoom()

    def _sync_viewport(self, *_args: Any) -> None:
        factor = self._frame.preview_factor or 1.0
        self._call_soon(
            self.session.set_viewport,
            self._scroll.verticalScrollBar().value() / factor,
            self._scroll.viewport().height() / factor,
        )

    # ------------------------------------------------------------- listeners
    def _publish(self, event: str, page_number: Optional[int]) -> None:
        # Runs on the loop thread, the only thread that touches the session.
        self._sessionChanged.emit(event, page_number or 0, ViewFrame.capture(self.session))

    def _on_session_changed(self, event: str, page_number: int, frame: ViewFrame) -> None:
        self._frame = frame
        if event == "page" and page_number:
            self._canvas.invalidate_page(page_number)
        elif event in ("loading", "closed", "failed", "destroyed"):
            self._canvas.reset()
        self.render()


__all__ = ["ContextMenuAction", "PdfAnnotationView", "ViewFrame", "bitmap_to_qimage"]
