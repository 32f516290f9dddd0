"""File access the annotation layer needs from its host application.

Paths are host-relative and use forward slashes (`papers/attention.pdf`),
the way a notes vault addresses files.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path, PurePosixPath
from typing import Callable, Optional, Protocol


class HostStorage(Protocol):
    async def read_bytes(self, path: str) -> bytes: ...

    async def read_text(self, path: str) -> str: ...

    async def write_text(self, path: str, content: str) -> None: ...

    async def exists(self, path: str) -> bool: ...

    async def is_folder(self, path: str) -> bool: ...

    async def create_folder(self, path: str) -> None: ...

    def resolve(self, path: str) -> str: ...

    def open_link(self, target: str) -> None: ...


def normalize_host_path(path: str) -> str:
    parts = [p for p in str(path or "").replace("\\", "/").split("/") if p not in ("", ".")]
    if any(p == ".." for p in parts):
        raise ValueError(f"path escapes the storage root: {path!r}")
    return "/".join(parts)


def join_host_path(*parts: str) -> str:
    return normalize_host_path("/".join(str(p) for p in parts if p))


def host_path_stem(path: str) -> str:
    return PurePosixPath(normalize_host_path(path)).stem


class LocalStorage:
    """HostStorage over a directory on the local filesystem."""

    def __init__(
        self,
        root: Path | str,
        *,
        on_open_link: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.root = Path(root).expanduser().resolve()
        self._on_open_link = on_open_link

    def _abs(self, path: str) -> Path:
        return self.root / normalize_host_path(path)

    def resolve(self, path: str) -> str:
        return normalize_host_path(path)

    async def read_bytes(self, path: str) -> bytes:
        return await asyncio.to_thread(self._abs(path).read_bytes)

    async def read_text(self, path: str) -> str:
        return await asyncio.to_thread(self._abs(path).read_text, encoding="utf-8")

    async def write_text(self, path: str, content: str) -> None:
        target = self._abs(path)

        def write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.with_name(target.name + ".tmp")
            tmp.write_text(content, encoding="utf-8")
            os.replace(str(tmp), str(target))

        await asyncio.to_thread(write)

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self._abs(path).exists)

    async def is_folder(self, path: str) -> bool:
        return await asyncio.to_thread(self._abs(path).is_dir)

    async def create_folder(self, path: str) -> None:
        await asyncio.to_thread(self._abs(path).mkdir, parents=True, exist_ok=False)

    def open_link(self, target: str) -> None:
        if self._on_open_link is not None:
            self._on_open_link(normalize_host_path(target))


__all__ = [
    "HostStorage",
    "LocalStorage",
    "host_path_stem",
    "join_host_path",
    "normalize_host_path",
]
