from __future__ import annotations

import json
from typing import Optional

from marginalia.annotations.host import HostStorage, normalize_host_path
from marginalia.annotations.models import SidecarRecord
from marginalia.utils.logger import logger

DEFAULT_SIDECAR_SUFFIX = ".annotations.json"


def sidecar_path(document_path: str, suffix: str = DEFAULT_SIDECAR_SUFFIX) -> str:
    return normalize_host_path(document_path) + suffix


async def load_sidecar(
    storage: HostStorage,
    document_path: str,
    suffix: str = DEFAULT_SIDECAR_SUFFIX,
) -> Optional[SidecarRecord]:
    """Read the record for `document_path`; None when missing, unreadable or foreign."""
    path = sidecar_path(document_path, suffix)
    try:
        if not await storage.exists(path):
            return None
        raw = await storage.read_text(path)
    except (OSError, UnicodeDecodeError) as exc:
        logger.debug("Failed to read annotation sidecar %s: %s", path, exc)
        return None
    try:
        data = json.loads(raw)
        return SidecarRecord.from_dict(data, normalize_host_path(document_path))
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
        logger.warning("Ignoring annotation sidecar %s: %s", path, exc)
        return None


def dump_sidecar(record: SidecarRecord) -> str:
    return json.dumps(record.to_dict(), ensure_ascii=False, indent=2) + "\n"


async def save_sidecar(
    storage: HostStorage,
    record: SidecarRecord,
    suffix: str = DEFAULT_SIDECAR_SUFFIX,
) -> str:
    """Write the whole record; raises OSError on failure."""
    path = sidecar_path(record.document_path, suffix)
    await storage.write_text(path, dump_sidecar(record))
    return path


__all__ = [
    "DEFAULT_SIDECAR_SUFFIX",
    "dump_sidecar",
    "load_sidecar",
    "save_sidecar",
    "sidecar_path",
]
