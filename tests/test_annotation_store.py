from __future__ import annotations

import asyncio
import json
import threading
from pathlib import Path
from typing import List

from marginalia.annotations.host import LocalStorage
from marginalia.annotations.models import Anchor, Annotation, HighlightGroup, SidecarRecord
from marginalia.annotations.notes import parse_note
from marginalia.annotations.store import AnnotationStore, safe_file_name
from marginalia.core.geometry import NormalizedRect
from marginalia.utils.config import ViewerConfig

_NOW = 1760700000.0


class _RecordingStorage(LocalStorage):
    """LocalStorage that records writes and can be told to fail them."""

    def __init__(self, root: Path) -> None:
        super().__init__(root)
        self.writes: List[str] = []
        self.fail_suffixes: tuple = ()

    async def write_text(self, path: str, content: str) -> None:
        if self.fail_suffixes and path.endswith(self.fail_suffixes):
            raise OSError(f"disk full: {path}")
        self.writes.append(path)
        await super().write_text(path, content)


def _highlights(page: int = 3) -> List[HighlightGroup]:
    return [HighlightGroup(page, [NormalizedRect(0.1, 0.4, 0.5, 0.02)])]


def _note_files(root: Path) -> List[Path]:
    return sorted(root.glob("PDF Notes/**/*.md"))


def test_create_persists_record_and_backs_note(tmp_path: Path) -> None:
    async def _run() -> None:
        storage = LocalStorage(tmp_path)
        store = AnnotationStore(storage, clock=lambda: _NOW)
        await store.load_for_document("papers/a.pdf")
        assert store.notes_folder == "PDF Notes/a"

        annotation = await store.create(Anchor(3, 0.41), "selected words", _highlights())
        assert annotation.id.startswith("1760700000000-")
        await store.wait_for_pending()

        assert annotation.note_path == f"PDF Notes/a/a - p3 - {annotation.id}.md"
        payload = json.loads(
            (tmp_path / "papers/a.pdf.annotations.json").read_text(encoding="utf-8")
        )
        assert payload["annotations"][0]["notePath"] == annotation.note_path

        note = parse_note((tmp_path / annotation.note_path).read_text(encoding="utf-8"))
        assert note.header["annotationId"] == annotation.id
        assert note.quote_block == "> selected words"
        assert note.comment_body == ""

    asyncio.run(_run())


def test_concurrent_ensure_note_backing_creates_one_note(tmp_path: Path) -> None:
    async def _run() -> None:
        store = AnnotationStore(LocalStorage(tmp_path), clock=lambda: _NOW)
        await store.load_for_document("a.pdf")
        annotation = await store.create(Anchor(1, 0.5), "text", _highlights(1))

        first, second = await asyncio.gather(
            store.ensure_note_backing(annotation),
            store.ensure_note_backing(annotation),
        )
        await store.wait_for_pending()

        assert first == second == annotation.note_path
        assert len(_note_files(tmp_path)) == 1

    asyncio.run(_run())


def test_load_migrates_unbacked_annotations_with_single_save(tmp_path: Path) -> None:
    async def _run() -> None:
        legacy = Annotation(
            id="100-aaaaaa",
            created_at=100,
            selected_text="old quote",
            anchor=Anchor(2, 0.2),
            highlights=_highlights(2),
            legacy_comment="kept from the inline editor",
        )
        plain = Annotation(
            id="200-bbbbbb",
            created_at=200,
            selected_text="another",
            anchor=Anchor(4, 0.9),
        )
        sidecar = tmp_path / "a.pdf.annotations.json"
        sidecar.write_text(
            json.dumps(SidecarRecord("a.pdf", [legacy, plain]).to_dict()), encoding="utf-8"
        )

        storage = _RecordingStorage(tmp_path)
        store = AnnotationStore(storage)
        loaded = await store.load_for_document("a.pdf")

        assert [a.id for a in loaded] == ["100-aaaaaa", "200-bbbbbb"]
        assert all(a.is_backed for a in loaded)
        assert storage.writes.count("a.pdf.annotations.json") == 1
        assert len(_note_files(tmp_path)) == 2

        migrated = store.get("100-aaaaaa")
        note = parse_note((tmp_path / migrated.note_path).read_text(encoding="utf-8"))
        assert note.comment_body == "kept from the inline editor"
        payload = json.loads(sidecar.read_text(encoding="utf-8"))
        assert all("commentText" not in item for item in payload["annotations"])

    asyncio.run(_run())


def test_load_without_unbacked_annotations_does_not_rewrite(tmp_path: Path) -> None:
    async def _run() -> None:
        backed = Annotation("1-cccccc", 1, "x", Anchor(1, 0.1), note_path="PDF Notes/a/x.md")
        (tmp_path / "a.pdf.annotations.json").write_text(
            json.dumps(SidecarRecord("a.pdf", [backed]).to_dict()), encoding="utf-8"
        )
        storage = _RecordingStorage(tmp_path)
        store = AnnotationStore(storage)
        await store.load_for_document("a.pdf")
        assert storage.writes == []
        assert store.get("1-cccccc").note_path == "PDF Notes/a/x.md"

    asyncio.run(_run())


def test_notes_folder_collision_with_file_gets_suffix(tmp_path: Path) -> None:
    async def _run() -> None:
        (tmp_path / "PDF Notes").mkdir()
        (tmp_path / "PDF Notes" / "a").write_text("not a folder", encoding="utf-8")
        store = AnnotationStore(LocalStorage(tmp_path))
        await store.load_for_document("docs/a.pdf")
        assert store.notes_folder == "PDF Notes/a 2"
        assert (tmp_path / "PDF Notes" / "a 2").is_dir()

    asyncio.run(_run())


def test_existing_notes_folder_is_reused(tmp_path: Path) -> None:
    async def _run() -> None:
        (tmp_path / "Notes" / "a").mkdir(parents=True)
        store = AnnotationStore(LocalStorage(tmp_path), ViewerConfig(notes_root="Notes"))
        await store.load_for_document("a.pdf")
        assert store.notes_folder == "Notes/a"
        assert not (tmp_path / "Notes" / "a 2").exists()

    asyncio.run(_run())


def test_reload_restores_annotations(tmp_path: Path) -> None:
    async def _run() -> None:
        storage = LocalStorage(tmp_path)
        store = AnnotationStore(storage, clock=lambda: _NOW)
        await store.load_for_document("a.pdf")
        created = await store.create(Anchor(5, 0.75), "quoted", _highlights(5))
        await store.wait_for_pending()

        fresh = AnnotationStore(storage)
        loaded = await fresh.load_for_document("a.pdf")
        assert len(loaded) == 1
        assert loaded[0].id == created.id
        assert loaded[0].anchor == Anchor(5, 0.75)
        assert loaded[0].highlights == created.highlights

    asyncio.run(_run())


def test_save_comment_replaces_only_the_body(tmp_path: Path) -> None:
    async def _run() -> None:
        storage = _RecordingStorage(tmp_path)
        store = AnnotationStore(storage, clock=lambda: _NOW)
        await store.load_for_document("a.pdf")
        annotation = await store.create(Anchor(1, 0.3), "line 1\nline 2", _highlights(1))
        await store.wait_for_pending()

        assert await store.save_comment(annotation, "first thoughts")
        note = await store.load_note(annotation)
        assert note.quote_block == "> line 1\n> line 2"
        assert note.comment_body == "first thoughts"
        assert note.header["annotationId"] == annotation.id

        storage.fail_suffixes = (".md",)
        assert not await store.save_comment(annotation, "lost edit")
        note = await store.load_note(annotation)
        assert note.comment_body == "first thoughts"

    asyncio.run(_run())


def test_save_failure_is_reported_not_raised(tmp_path: Path) -> None:
    async def _run() -> None:
        storage = _RecordingStorage(tmp_path)
        store = AnnotationStore(storage)
        await store.load_for_document("a.pdf")
        storage.fail_suffixes = (".json",)
        assert await store.save() is False
        annotation = await store.create(Anchor(1, 0.5), "x", _highlights(1))
        assert store.get(annotation.id) is annotation
        await store.wait_for_pending()

    asyncio.run(_run())


def test_remove_drops_annotation_from_record(tmp_path: Path) -> None:
    async def _run() -> None:
        store = AnnotationStore(LocalStorage(tmp_path))
        await store.load_for_document("a.pdf")
        annotation = await store.create(Anchor(1, 0.5), "x", _highlights(1))
        await store.wait_for_pending()

        assert await store.remove(annotation.id)
        assert not await store.remove(annotation.id)
        payload = json.loads((tmp_path / "a.pdf.annotations.json").read_text(encoding="utf-8"))
        assert payload["annotations"] == []

    asyncio.run(_run())


def test_annotations_created_without_document_stay_in_memory(tmp_path: Path) -> None:
    async def _run() -> None:
        store = AnnotationStore(LocalStorage(tmp_path))
        annotation = await store.create(Anchor(1, 0.5), "x", [])
        assert await store.ensure_note_backing(annotation) is None
        assert store.annotations == [annotation]
        assert list(tmp_path.iterdir()) == []

    asyncio.run(_run())


def test_store_built_on_one_thread_saves_concurrently_on_another(tmp_path: Path) -> None:
    store = AnnotationStore(LocalStorage(tmp_path))
    results: List[bool] = []
    errors: List[BaseException] = []

    async def _run() -> None:
        await store.load_for_document("a.pdf")
        await store.create(Anchor(1, 0.5), "x", _highlights(1))
        results.extend(await asyncio.gather(store.save(), store.save(), store.save()))
        await store.wait_for_pending()

    def _target() -> None:
        try:
            asyncio.run(_run())
        except BaseException as exc:
            errors.append(exc)

    worker = threading.Thread(target=_target)
    worker.start()
    worker.join(timeout=10.0)
    assert errors == []
    assert results == [True, True, True]


def test_safe_file_name_replaces_reserved_characters() -> None:
    assert safe_file_name('a/b:c?"d"') == "a-b-c-d-"
    assert safe_file_name("  ") == "Untitled"
