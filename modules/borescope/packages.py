"""Document schemas for full backups and transfer packages.

Both file kinds are single JSON documents tagged with ``app``/``type``/
``version``.  Parsing goes through these models so a malformed or foreign
file is rejected before anything on disk or in the database changes.
"""
from __future__ import annotations

import base64
import binascii
import json
from pathlib import Path
from typing import List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import PackageFormatError

APP_MARKER = "BDAS"
FORMAT_VERSION = 1
BACKUP_TYPE = "FullBackup"
TAIL_PACKAGE_TYPE = "TailPackage"
ENGINE_PACKAGE_TYPE = "EnginePackage"

BACKUP_EXTENSION = ".bdasbak"
PACKAGE_EXTENSION = ".bdas"


def decode_b64(text: str, what: str) -> bytes:
    try:
        return base64.b64decode(text or "", validate=True)
    except (binascii.Error, ValueError) as exc:
        raise PackageFormatError(f"Corrupt {what} data.") from exc


def encode_b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


# ---------------------------------------------------------------------------
# Full backup
# ---------------------------------------------------------------------------


class BackupFile(BaseModel):
    rel: str
    dataB64: str = ""


class FullBackupDocument(BaseModel):
    app: Literal["BDAS"]
    type: Literal["FullBackup"]
    version: int = FORMAT_VERSION
    exportedAt: str = ""
    dbB64: str = Field(min_length=1)
    files: List[BackupFile] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Transfer package
# ---------------------------------------------------------------------------


class PackagedFile(BaseModel):
    name: str = "file"
    dataB64: str = ""


class PackagedRecord(BaseModel):
    """One record row plus its inlined attachment bytes.

    Every record column travels as an extra field so the schema does not
    need to change when the table gains a column.
    """

    model_config = ConfigDict(extra="allow")

    recordUuid: str
    imageFiles: List[PackagedFile] = Field(default_factory=list)
    docFiles: List[PackagedFile] = Field(default_factory=list)

    @field_validator("recordUuid")
    @classmethod
    def _uuid_present(cls, value: str) -> str:
        if not str(value or "").strip():
            raise ValueError("Invalid package record UUID.")
        return value

    def row(self) -> dict:
        return self.model_dump(exclude={"imageFiles", "docFiles"})


class TransferPackage(BaseModel):
    app: Literal["BDAS"]
    type: Literal["TailPackage", "EnginePackage"]
    version: int = FORMAT_VERSION
    exportedAt: str = ""
    tailNo: Optional[str] = None
    tails: Optional[List[str]] = None
    engines: Optional[List[str]] = None
    dateFrom: Optional[str] = None
    dateTo: Optional[str] = None
    records: List[PackagedRecord] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_Doc = TypeVar("_Doc", bound=BaseModel)


def load_document(path: Path, model: Type[_Doc], label: str) -> _Doc:
    """Read ``path`` and validate it as ``model``.

    Raises :class:`PackageFormatError` for unreadable JSON, a foreign
    ``app``/``type`` marker or any missing required part.
    """
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise PackageFormatError(f"Cannot read {label} file: {exc}") from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise PackageFormatError(f"Invalid {label} file.") from exc
    if not isinstance(data, dict):
        raise PackageFormatError(f"Invalid {label} file.")
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        locs = {str(err["loc"][0]) for err in exc.errors() if err.get("loc")}
        if locs & {"app", "type"}:
            raise PackageFormatError(f"Unsupported {label} file.") from exc
        if "dbB64" in locs:
            raise PackageFormatError("Backup does not contain database data.") from exc
        raise PackageFormatError(f"Invalid {label} file: {exc.errors()[0]['msg']}") from exc


__all__ = [
    "APP_MARKER",
    "BACKUP_EXTENSION",
    "BACKUP_TYPE",
    "BackupFile",
    "ENGINE_PACKAGE_TYPE",
    "FORMAT_VERSION",
    "FullBackupDocument",
    "PACKAGE_EXTENSION",
    "PackagedFile",
    "PackagedRecord",
    "TAIL_PACKAGE_TYPE",
    "TransferPackage",
    "decode_b64",
    "encode_b64",
    "load_document",
]
