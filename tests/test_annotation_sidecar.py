from __future__ import annotations

import asyncio
import json
from pathlib import Path

from marginalia.annotations.host import LocalStorage
from marginalia.annotations.models import Anchor, Annotation, HighlightGroup, SidecarRecord
from marginalia.annotations.sidecar import load_sidecar, save_sidecar, sidecar_path
from marginalia.core.geometry import NormalizedRect


def _annotation(annotation_id: str = "1760700000000-abc123", **kwargs) -> Annotation:
    return Annotation(
        id=annotation_id,
        created_at=1760700000000,
        selected_text="attention is all you need",
        anchor=Anchor(3, 0.4),
        highlights=[HighlightGroup(3, [NormalizedRect(0.1, 0.38, 0.5, 0.02)])],
        **kwargs,
    )


def _write_raw(tmp_path: Path, document: str, payload) -> None:
    target = tmp_path / (document + ".annotations.json")
    target.parent.mkdir(parents=True, exist_ok=True)
    text = payload if isinstance(payload, str) else json.dumps(payload)
    target.write_text(text, encoding="utf-8")


def test_sidecar_path_is_derived_from_document_path() -> None:
    assert sidecar_path("papers/a.pdf") == "papers/a.pdf.annotations.json"
    assert sidecar_path("papers\\a.pdf", ".notes.json") == "papers/a.pdf.notes.json"


def test_save_and_load_sidecar_round_trip(tmp_path: Path) -> None:
    async def _run() -> None:
        storage = LocalStorage(tmp_path)
        record = SidecarRecord("papers/a.pdf", [_annotation(note_path="PDF Notes/a/n.md")])
        written = await save_sidecar(storage, record)
        assert written == "papers/a.pdf.annotations.json"

        payload = json.loads((tmp_path / written).read_text(encoding="utf-8"))
        assert payload["version"] == 1
        assert payload["documentPath"] == "papers/a.pdf"
        item = payload["annotations"][0]
        assert item["anchor"] == {"pageNumber": 3, "yNorm": 0.4}
        assert item["highlights"][0]["rects"][0] == {"x": 0.1, "y": 0.38, "w": 0.5, "h": 0.02}
        assert "commentText" not in item

        loaded = await load_sidecar(storage, "papers/a.pdf")
        assert loaded is not None
        assert loaded.annotations[0].note_path == "PDF Notes/a/n.md"

    asyncio.run(_run())


def test_missing_sidecar_loads_as_none(tmp_path: Path) -> None:
    assert asyncio.run(load_sidecar(LocalStorage(tmp_path), "papers/none.pdf")) is None


def test_unsupported_version_is_ignored(tmp_path: Path) -> None:
    record = SidecarRecord("a.pdf", [_annotation()]).to_dict()
    record["version"] = 2
    _write_raw(tmp_path, "a.pdf", record)
    assert asyncio.run(load_sidecar(LocalStorage(tmp_path), "a.pdf")) is None


def test_mismatched_document_path_is_ignored(tmp_path: Path) -> None:
    record = SidecarRecord("elsewhere/a.pdf", [_annotation()]).to_dict()
    _write_raw(tmp_path, "a.pdf", record)
    assert asyncio.run(load_sidecar(LocalStorage(tmp_path), "a.pdf")) is None


def test_malformed_sidecar_is_ignored(tmp_path: Path) -> None:
    _write_raw(tmp_path, "a.pdf", "{not json")
    assert asyncio.run(load_sidecar(LocalStorage(tmp_path), "a.pdf")) is None

    _write_raw(tmp_path, "b.pdf", {"version": 1, "documentPath": "b.pdf", "annotations": {}})
    assert asyncio.run(load_sidecar(LocalStorage(tmp_path), "b.pdf")) is None


def test_legacy_comment_text_is_read_and_kept_until_backed() -> None:
    data = _annotation().to_dict()
    data["commentText"] = "older inline comment"
    annotation = Annotation.from_dict(data)
    assert annotation.legacy_comment == "older inline comment"
    assert not annotation.is_backed
    assert annotation.to_dict()["commentText"] == "older inline comment"

    annotation.note_path = "PDF Notes/a/n.md"
    assert "commentText" not in annotation.to_dict()
