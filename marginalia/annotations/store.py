"""Annotations of the open document, their sidecar record and backing notes."""

from __future__ import annotations

import asyncio
import re
import secrets
import time
from pathlib import PurePosixPath
from typing import Callable, Dict, List, Optional, Sequence, Set

from marginalia.annotations.host import HostStorage, host_path_stem, join_host_path
from marginalia.annotations.models import Anchor, Annotation, HighlightGroup, SidecarRecord
from marginalia.annotations.notes import (
    NoteContent,
    build_note_content,
    compose_note,
    note_header,
    parse_note,
    quote_text,
)
from marginalia.annotations.sidecar import load_sidecar, save_sidecar
from marginalia.utils.config import ViewerConfig
from marginalia.utils.logger import logger

_UNSAFE_NAME_CHARS = re.compile(r'[\\/:*?"<>|#^\[\]]+')

# Upper bound on numeric suffixes tried when a folder or note name is taken.
MAX_NAME_ATTEMPTS = 1000


def safe_file_name(name: str) -> str:
    return _UNSAFE_NAME_CHARS.sub("-", str(name or "")).strip(" .") or "Untitled"


class AnnotationStore:
    """In-memory annotation list for one document, persisted in full on every change."""

    def __init__(
        self,
        storage: HostStorage,
        config: Optional[ViewerConfig] = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._config = config or ViewerConfig()
        self._clock = clock
        self._document_path: Optional[str] = None
        self._notes_folder: Optional[str] = None
        self._annotations: List[Annotation] = []
        self._pending_notes: Dict[str, asyncio.Future[Optional[str]]] = {}
        self._background: Set[asyncio.Future[Optional[str]]] = set()
        self._save_lock: Optional[asyncio.Lock] = None
        # Bumped whenever the open document changes; stale note writes check it.
        self._epoch = 0

    @property
    def document_path(self) -> Optional[str]:
        return self._document_path

    @property
    def notes_folder(self) -> Optional[str]:
        return self._notes_folder

    @property
    def annotations(self) -> List[Annotation]:
        return list(self._annotations)

    def get(self, annotation_id: str) -> Optional[Annotation]:
        for annotation in self._annotations:
            if annotation.id == annotation_id:
                return annotation
        return None

    # -------------------------------------------------------------- lifecycle
    async def load_for_document(self, document_path: str) -> List[Annotation]:
        self.close()
        epoch = self._epoch
        path = self._storage.resolve(document_path)
        self._document_path = path

        record = await load_sidecar(self._storage, path, self._config.sidecar_suffix)
        if epoch != self._epoch:
            return []
        self._annotations = list(record.annotations) if record is not None else []
        self._notes_folder = await self._ensure_notes_folder(path)
        if epoch != self._epoch:
            return []

        migrated = 0
        for annotation in list(self._annotations):
            if annotation.is_backed:
                continue
            if await self._ensure_backing(annotation, persist=False):
                migrated += 1
            if epoch != self._epoch:
                return []
        if migrated:
            await self.save()
        logger.info(
            "Loaded %s annotations for %s (%s notes created)",
            len(self._annotations),
            path,
            migrated,
        )
        return self.annotations

    def close(self) -> None:
        self._epoch += 1
        self._document_path = None
        self._notes_folder = None
        self._annotations = []
        self._pending_notes.clear()
        self._background.clear()

    async def wait_for_pending(self) -> None:
        while self._background or self._pending_notes:
            pending = list(self._background) + list(self._pending_notes.values())
            await asyncio.gather(*pending, return_exceptions=True)

    # ---------------------------------------------------------------- records
    async def save(self) -> bool:
        """Rewrite the whole sidecar record; False when it could not be written."""
        if self._save_lock is None:
            # Bound to the loop that first saves, not the constructing thread.
            self._save_lock = asyncio.Lock()
        async with self._save_lock:
            if self._document_path is None:
                return False
            record = SidecarRecord(self._document_path, list(self._annotations))
            try:
                await save_sidecar(self._storage, record, self._config.sidecar_suffix)
            except OSError as exc:
                logger.error("Failed to save annotations for %s: %s", record.document_path, exc)
                return False
            return True

    def _new_id(self) -> str:
        existing = {annotation.id for annotation in self._annotations}
        while True:
            candidate = f"{int(self._clock() * 1000)}-{secrets.token_hex(3)}"
            if candidate not in existing:
                return candidate

    async def create(
        self,
        anchor: Anchor,
        selected_text: str,
        highlights: Sequence[HighlightGroup],
    ) -> Annotation:
        annotation = Annotation(
            id=self._new_id(),
            created_at=int(self._clock() * 1000),
            selected_text=str(selected_text or ""),
            anchor=anchor,
            highlights=list(highlights),
        )
        self._annotations.append(annotation)
        await self.save()
        if self._document_path is not None:
            task = asyncio.ensure_future(self.ensure_note_backing(annotation))
            self._background.add(task)
            task.add_done_callback(self._background.discard)
        return annotation

    async def remove(self, annotation_id: str) -> bool:
        """Drop an annotation from the record; its note file is left to the user."""
        annotation = self.get(annotation_id)
        if annotation is None:
            return False
        self._annotations.remove(annotation)
        self._pending_notes.pop(annotation_id, None)
        await self.save()
        return True

    # ------------------------------------------------------------------ notes
    async def ensure_note_backing(self, annotation: Annotation) -> Optional[str]:
        """Return the note path for `annotation`, creating the note at most once."""
        return await self._ensure_backing(annotation, persist=True)

    async def _ensure_backing(self, annotation: Annotation, *, persist: bool) -> Optional[str]:
        if annotation.note_path:
            return annotation.note_path
        if self._document_path is None:
            return None
        pending = self._pending_notes.get(annotation.id)
        if pending is None:
            pending = asyncio.ensure_future(
                self._create_note(annotation, self._epoch, persist=persist)
            )
            self._pending_notes[annotation.id] = pending
            pending.add_done_callback(
                lambda done, key=annotation.id: self._forget_pending(key, done)
            )
        return await asyncio.shield(pending)

    def _forget_pending(self, annotation_id: str, task: asyncio.Future) -> None:
        if self._pending_notes.get(annotation_id) is task:
            del self._pending_notes[annotation_id]

    async def _create_note(
        self, annotation: Annotation, epoch: int, *, persist: bool
    ) -> Optional[str]:
        document_path = self._document_path
        folder = self._notes_folder
        if document_path is None:
            return None
        if folder is None:
            folder = await self._ensure_notes_folder(document_path)
            if folder is None or epoch != self._epoch:
                return None
            self._notes_folder = folder

        stem = safe_file_name(host_path_stem(document_path))
        name = f"{stem} - p{annotation.anchor.page_number} - {annotation.id}.md"
        content = build_note_content(
            document_path, annotation, annotation.legacy_comment or ""
        )
        try:
            note_path = await self._unique_file_path(folder, safe_file_name(name))
            await self._storage.write_text(note_path, content)
        except OSError as exc:
            logger.warning("Failed to create note for annotation %s: %s", annotation.id, exc)
            return None
        if epoch != self._epoch:
            return note_path

        annotation.note_path = note_path
        annotation.legacy_comment = None
        logger.debug("Created note %s for annotation %s", note_path, annotation.id)
        if persist:
            await self.save()
        return note_path

    async def _ensure_notes_folder(self, document_path: str) -> Optional[str]:
        base = join_host_path(
            self._config.notes_root, safe_file_name(host_path_stem(document_path))
        )
        candidate = base
        for attempt in range(2, MAX_NAME_ATTEMPTS + 2):
            try:
                if await self._storage.exists(candidate):
                    if await self._storage.is_folder(candidate):
                        return candidate
                else:
                    await self._storage.create_folder(candidate)
                    return candidate
            except FileExistsError:
                # Created by someone else since the check; look again.
                continue
            except OSError as exc:
                logger.warning("Could not create notes folder %s: %s", candidate, exc)
                return None
            candidate = f"{base} {attempt}"
        logger.warning("No free notes folder name for %s", document_path)
        return None

    async def _unique_file_path(self, folder: str, name: str) -> str:
        pure = PurePosixPath(name)
        candidate = join_host_path(folder, name)
        for attempt in range(2, MAX_NAME_ATTEMPTS + 2):
            if not await self._storage.exists(candidate):
                return candidate
            candidate = join_host_path(folder, f"{pure.stem} {attempt}{pure.suffix}")
        raise FileExistsError(f"no free note name for {name!r} in {folder!r}")

    async def load_note(self, annotation: Annotation) -> Optional[NoteContent]:
        """Read the backing note fresh from storage and split it for editing."""
        if not annotation.note_path:
            return None
        try:
            text = await self._storage.read_text(annotation.note_path)
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Failed to read note %s: %s", annotation.note_path, exc)
            return None
        return parse_note(text)

    async def save_comment(self, annotation: Annotation, body: str) -> bool:
        """Replace the editable comment of a note; False leaves the editor retryable."""
        note_path = await self.ensure_note_backing(annotation)
        if not note_path or self._document_path is None:
            return False
        existing = await self.load_note(annotation)
        header = (
            existing.header
            if existing is not None and existing.header
            else note_header(self._document_path, annotation)
        )
        quote = (
            existing.quote_block
            if existing is not None and existing.quote_block
            else quote_text(annotation.selected_text)
            if annotation.selected_text.strip()
            else ""
        )
        try:
            await self._storage.write_text(note_path, compose_note(header, quote, body))
        except OSError as exc:
            logger.warning("Failed to save comment to %s: %s", note_path, exc)
            return False
        return True

    def open_note(self, annotation: Annotation) -> bool:
        if not annotation.note_path:
            return False
        self._storage.open_link(annotation.note_path)
        return True


__all__ = ["AnnotationStore", "MAX_NAME_ATTEMPTS", "safe_file_name"]
