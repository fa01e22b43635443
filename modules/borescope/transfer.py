"""Scoped record packages for moving data between units.

A package holds every record for a set of tails or engines inside a date
window, with attachment bytes inlined.  Importing merges by record uuid, so
the same package can be imported any number of times.
"""
from __future__ import annotations

import logging
import os
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from utils.db import DatabaseHandle
from utils.filesystem import ensure_parent, safe_name
from utils.timefmt import ddmmyyyy, now_utc_iso

from .attachments import AttachmentBlob, AttachmentStore
from .exceptions import ValidationError
from .fleet import FleetRepository
from .identity import resolve_followups
from .models import TailEnginePair
from .packages import (
    APP_MARKER,
    ENGINE_PACKAGE_TYPE,
    FORMAT_VERSION,
    PACKAGE_EXTENSION,
    TAIL_PACKAGE_TYPE,
    PackagedFile,
    PackagedRecord,
    TransferPackage,
    decode_b64,
    encode_b64,
    load_document,
)
from .repository import RecordRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ExportResult:
    file_path: str
    package_type: str
    scope: List[str]
    record_count: int


@dataclass(slots=True)
class ImportResult:
    """Outcome of merging one package into the local database."""

    package_type: str
    imported: int = 0
    skipped: int = 0
    relinked: int = 0
    attachment_failures: int = 0
    required_pairs: List[TailEnginePair] = field(default_factory=list)
    missing_pairs: List[TailEnginePair] = field(default_factory=list)


def _scope_values(values: Iterable[object]) -> List[str]:
    seen: List[str] = []
    for value in values or []:
        text = str(value or "").strip()
        if text and text not in seen:
            seen.append(text)
    return seen


def default_package_name(scope_values: Iterable[object]) -> str:
    values = _scope_values(scope_values)
    label = values[0] if len(values) == 1 else "MULTI"
    return f"BDAS_{safe_name(label)}_{ddmmyyyy()}{PACKAGE_EXTENSION}"


class TransferService:
    def __init__(
        self,
        handle: DatabaseHandle,
        records: RecordRepository,
        fleet: FleetRepository,
        attachments: AttachmentStore,
    ) -> None:
        self._handle = handle
        self._records = records
        self._fleet = fleet
        self._attachments = attachments

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------
    def export_tail_package(
        self,
        tails: Iterable[object],
        date_from: Optional[str],
        date_to: Optional[str],
        target_path: Path,
    ) -> ExportResult:
        scope = _scope_values(tails)
        if not scope:
            raise ValidationError("Tail No is required.")
        records: List[PackagedRecord] = []
        for tail in scope:
            rows = self._records.list_for_transfer(tail_no=tail, date_from=date_from, date_to=date_to)
            records.extend(self._package_row(row) for row in rows)

        package = TransferPackage(
            app=APP_MARKER,
            type=TAIL_PACKAGE_TYPE,
            version=FORMAT_VERSION,
            exportedAt=now_utc_iso(),
            tailNo=scope[0] if len(scope) == 1 else "",
            tails=scope,
            dateFrom=str(date_from or ""),
            dateTo=str(date_to or ""),
            records=records,
        )
        return self._write(package, scope, target_path)

    def export_engine_package(
        self,
        engines: Iterable[object],
        date_from: Optional[str],
        date_to: Optional[str],
        target_path: Path,
    ) -> ExportResult:
        scope = _scope_values(engines)
        if not scope:
            raise ValidationError("Engine S No is required.")
        records: List[PackagedRecord] = []
        for engine in scope:
            rows = self._records.list_for_transfer(engine_sn=engine, date_from=date_from, date_to=date_to)
            records.extend(self._package_row(row) for row in rows)

        package = TransferPackage(
            app=APP_MARKER,
            type=ENGINE_PACKAGE_TYPE,
            version=FORMAT_VERSION,
            exportedAt=now_utc_iso(),
            engines=scope,
            dateFrom=str(date_from or "").strip() or None,
            dateTo=str(date_to or "").strip() or None,
            records=records,
        )
        return self._write(package, scope, target_path)

    def _package_row(self, row: dict) -> PackagedRecord:
        data = dict(row)
        image_paths = data.pop("imagePaths", []) or []
        doc_paths = data.pop("docPaths", []) or []
        return PackagedRecord(
            **data,
            imageFiles=self._inline_files(image_paths),
            docFiles=self._inline_files(doc_paths),
        )

    def _inline_files(self, paths: Iterable[str]) -> List[PackagedFile]:
        inlined: List[PackagedFile] = []
        for path in paths:
            blob = self._attachments.read_blob(path)
            if blob is None:
                logger.warning("Attachment missing on disk, not packaged: %s", path)
                continue
            inlined.append(PackagedFile(name=blob.name, dataB64=encode_b64(blob.data)))
        return inlined

    @staticmethod
    def _write(package: TransferPackage, scope: List[str], target_path: Path) -> ExportResult:
        target = Path(target_path)
        ensure_parent(target)
        partial = target.with_name(target.name + ".part")
        unused = {"engines"} if package.type == TAIL_PACKAGE_TYPE else {"tailNo", "tails"}
        partial.write_text(package.model_dump_json(exclude=unused), encoding="utf-8")
        os.replace(partial, target)
        logger.info(
            "Exported %s with %d record(s) for %s to %s",
            package.type,
            len(package.records),
            ", ".join(scope),
            target,
        )
        return ExportResult(
            file_path=str(target),
            package_type=package.type,
            scope=list(scope),
            record_count=len(package.records),
        )

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------
    def import_package(self, package_path: Path) -> ImportResult:
        """Merge a tail or engine package into the local database.

        The whole file is parsed and every attachment decoded before the
        first insert, so a malformed package changes nothing.  Records whose
        uuid already exists are skipped.  An attachment that cannot be
        written is logged and counted; its record stays imported.
        """
        package = load_document(Path(package_path), TransferPackage, "package")
        decoded: List[Tuple[PackagedRecord, List[AttachmentBlob], List[AttachmentBlob]]] = []
        for record in package.records:
            images = [AttachmentBlob(f.name, decode_b64(f.dataB64, f.name)) for f in record.imageFiles]
            docs = [AttachmentBlob(f.name, decode_b64(f.dataB64, f.name)) for f in record.docFiles]
            decoded.append((record, images, docs))

        result = ImportResult(package_type=package.type)
        for record, images, docs in decoded:
            outcome = self._records.insert_if_new(record.row())
            if outcome.skipped:
                result.skipped += 1
                continue
            result.imported += 1
            if not images and not docs:
                continue
            try:
                self._attachments.save_for_record(outcome.id, images, docs)
            except (OSError, sqlite3.Error) as exc:
                result.attachment_failures += 1
                logger.error(
                    "Attachments for imported record %s (uuid %s) not saved: %s",
                    outcome.id,
                    record.recordUuid,
                    exc,
                )

        result.relinked = resolve_followups(self._handle.connection)
        result.required_pairs = self.required_pairs(package)
        active = self._fleet.active_pairs()
        result.missing_pairs = [pair for pair in result.required_pairs if pair not in active]

        logger.info(
            "Imported %s: %d new, %d skipped, %d relinked, %d missing assignment(s)",
            package.type,
            result.imported,
            result.skipped,
            result.relinked,
            len(result.missing_pairs),
        )
        return result

    @staticmethod
    def required_pairs(package: TransferPackage) -> List[TailEnginePair]:
        """Distinct (tail, engine) pairs named by the package, in record order."""
        pairs: List[TailEnginePair] = []
        for record in package.records:
            row = record.row()
            tail = str(row.get("aircraftTailNo") or "").strip()
            engine = str(row.get("engineSN") or "").strip()
            if not tail or not engine:
                continue
            pair = TailEnginePair(tail, engine)
            if pair not in pairs:
                pairs.append(pair)
        return pairs


__all__ = [
    "ExportResult",
    "ImportResult",
    "TransferService",
    "default_package_name",
]
