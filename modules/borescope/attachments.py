"""Filesystem storage for record images and documents.

Files live under ``<attachments>/<record id>/`` and the record keeps the
absolute paths.  Replacing or deleting a record never removes files; those
become orphans on disk.
"""
from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from utils.filesystem import safe_name
from utils.timefmt import epoch_millis

from .repository import RecordRepository

logger = logging.getLogger(__name__)

_IMAGE_MIME = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
}


@dataclass(slots=True)
class AttachmentBlob:
    """A named chunk of bytes on its way to or from disk."""

    name: str
    data: bytes

    @classmethod
    def coerce(cls, value: Union["AttachmentBlob", Mapping[str, Any]]) -> "AttachmentBlob":
        """Accept a blob, or a ``{name, data}`` / ``{name, dataB64}`` mapping."""
        if isinstance(value, cls):
            return value
        name = str(value.get("name") or "file")
        if "dataB64" in value:
            return cls(name, base64.b64decode(str(value.get("dataB64") or "")))
        raw = value.get("data") or b""
        return cls(name, raw if isinstance(raw, bytes) else bytes(bytearray(raw)))


BlobLike = Union[AttachmentBlob, Mapping[str, Any]]


class AttachmentStore:
    def __init__(self, root: Path, records: RecordRepository) -> None:
        self.root = Path(root)
        self._records = records

    def record_dir(self, record_id: int) -> Path:
        return self.root / str(int(record_id))

    def write(self, record_id: int, blobs: Iterable[BlobLike]) -> List[str]:
        """Write ``blobs`` for ``record_id`` and return the absolute paths."""
        items = [AttachmentBlob.coerce(b) for b in blobs or []]
        if not items:
            return []
        target = self.record_dir(record_id)
        target.mkdir(parents=True, exist_ok=True)
        written: List[str] = []
        for blob in items:
            path = self._unique_path(target, safe_name(blob.name))
            path.write_bytes(blob.data)
            written.append(str(path.resolve()))
        logger.debug("Wrote %d attachment(s) for record %s", len(written), record_id)
        return written

    def save_for_record(
        self,
        record_id: int,
        images: Optional[Iterable[BlobLike]] = None,
        docs: Optional[Iterable[BlobLike]] = None,
    ) -> Dict[str, List[str]]:
        """Write images and documents, then store both path lists on the record."""
        saved_images = self.write(record_id, images or [])
        saved_docs = self.write(record_id, docs or [])
        self._records.update_attachments(record_id, saved_images, saved_docs)
        return {"images": saved_images, "docs": saved_docs}

    @staticmethod
    def read_blob(path: Union[str, Path]) -> Optional[AttachmentBlob]:
        """Load a stored file, or ``None`` when it no longer exists."""
        if not path:
            return None
        p = Path(path)
        if not p.is_file():
            return None
        return AttachmentBlob(p.name, p.read_bytes())

    @staticmethod
    def image_data_url(path: Union[str, Path]) -> str:
        if not path:
            return ""
        p = Path(path)
        if not p.is_file():
            return ""
        mime = _IMAGE_MIME.get(p.suffix.lower(), "image/jpeg")
        encoded = base64.b64encode(p.read_bytes()).decode("ascii")
        return f"data:{mime};base64,{encoded}"

    @staticmethod
    def open_external(path: Union[str, Path]) -> Dict[str, Any]:
        """Open a stored file with the desktop's default application."""
        if not path:
            return {"ok": False}
        p = Path(path)
        if not p.exists():
            return {"ok": False, "error": "File not found."}
        from PySide6.QtCore import QUrl
        from PySide6.QtGui import QDesktopServices

        if not QDesktopServices.openUrl(QUrl.fromLocalFile(str(p))):
            return {"ok": False, "error": "No application is associated with this file."}
        return {"ok": True}

    @staticmethod
    def _unique_path(directory: Path, name: str) -> Path:
        stamp = epoch_millis()
        candidate = directory / f"{stamp}_{name}"
        counter = 1
        while candidate.exists():
            candidate = directory / f"{stamp}_{counter}_{name}"
            counter += 1
        return candidate


__all__ = ["AttachmentBlob", "AttachmentStore"]
