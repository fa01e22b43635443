"""SQLite-backed repository for borescope inspection records."""
from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Dict, Iterable, List, Mapping, Optional

from utils.db import DatabaseHandle
from utils.timefmt import now_utc_iso

from .exceptions import PackageFormatError, RecordValidationError, StorageError, ValidationError
from .fleet import FleetRepository, ensure_engine, ensure_tail
from .identity import new_record_uuid
from .models import INSERT_COLUMNS, InsertOutcome, InspectionRecord, coerce_optional_int
from .schema import RECORDS_TABLE
from .validators import validate_record

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 5000


def _record_id(value: Any) -> int:
    record_id = coerce_optional_int(value)
    if record_id is None:
        raise ValidationError(f"Invalid record id: {value!r}")
    return record_id


class RecordRepository:
    """Persistence helper for inspection records."""

    def __init__(self, handle: DatabaseHandle, fleet: FleetRepository) -> None:
        self._handle = handle
        self._fleet = fleet

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------
    def save(self, data: Mapping[str, Any]) -> InspectionRecord:
        """Validate and insert a new record, returning the persisted row.

        With ``overrideUsed`` set no business rule is checked; the row is
        still written with every text field normalized to a string.
        """
        record = InspectionRecord.from_input(data or {})
        if not record.override_used:
            validate_record(record)

        record.id = None
        record.image_paths = []
        record.doc_paths = []
        record.record_uuid = record.record_uuid.strip() or new_record_uuid()
        record.created_at = record.created_at.strip() or now_utc_iso()

        with self._handle.transaction() as conn:
            duplicate = conn.execute(
                f"SELECT id FROM {RECORDS_TABLE} WHERE recordUuid = ? LIMIT 1",
                (record.record_uuid,),
            ).fetchone()
            if duplicate is not None:
                raise RecordValidationError("Record UUID", "A record with this UUID already exists.")
            if record.is_follow_up and record.previous_record_id:
                row = conn.execute(
                    f"SELECT recordUuid FROM {RECORDS_TABLE} WHERE id = ?",
                    (record.previous_record_id,),
                ).fetchone()
                record.previous_record_uuid = (row["recordUuid"] if row else "") or ""
            record_id = self._insert(conn, record)

        saved = self.fetch(record_id)
        if saved is None:  # pragma: no cover
            raise StorageError("Failed to load newly saved record")
        logger.info(
            "Saved record %s (tail=%s engine=%s override=%s)",
            record_id,
            saved.aircraft_tail_no,
            saved.engine_sn,
            saved.override_used,
        )
        return saved

    def insert_if_new(self, data: Mapping[str, Any]) -> InsertOutcome:
        """Insert a packaged record unless its uuid is already present.

        The packaged local ids belong to the exporting database, so the
        follow-up link is carried only by ``previousRecordUuid`` and rebuilt
        by :func:`identity.resolve_followups` once the whole package is in.
        """
        record = InspectionRecord.from_input(data)
        record_uuid = record.record_uuid.strip()
        if not record_uuid:
            raise PackageFormatError("Invalid package record UUID.")

        with self._handle.transaction() as conn:
            existing = conn.execute(
                f"SELECT id FROM {RECORDS_TABLE} WHERE recordUuid = ? LIMIT 1",
                (record_uuid,),
            ).fetchone()
            if existing is not None:
                return InsertOutcome(id=int(existing["id"]), skipped=True)

            ensure_tail(conn, record.aircraft_tail_no)
            ensure_engine(conn, record.engine_sn)
            record.id = None
            record.record_uuid = record_uuid
            record.previous_record_id = None
            record.image_paths = []
            record.doc_paths = []
            record_id = self._insert(conn, record)
        return InsertOutcome(id=record_id, skipped=False)

    # ------------------------------------------------------------------
    # Update / delete
    # ------------------------------------------------------------------
    def update_attachments(
        self,
        record_id: int,
        image_paths: Optional[Iterable[str]],
        doc_paths: Optional[Iterable[str]],
    ) -> None:
        row_id = _record_id(record_id)
        images = [str(p) for p in (image_paths or [])]
        docs = [str(p) for p in (doc_paths or [])]
        with self._handle.transaction() as conn:
            conn.execute(
                f"UPDATE {RECORDS_TABLE} SET imagePaths = ?, docPaths = ? WHERE id = ?",
                (json.dumps(images, ensure_ascii=False), json.dumps(docs, ensure_ascii=False), row_id),
            )

    def delete(self, record_id: int) -> None:
        row_id = _record_id(record_id)
        with self._handle.transaction() as conn:
            conn.execute(f"DELETE FROM {RECORDS_TABLE} WHERE id = ?", (row_id,))
        logger.info("Deleted record %s", row_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def fetch(self, record_id: int) -> Optional[InspectionRecord]:
        row = self._handle.connection.execute(
            f"SELECT * FROM {RECORDS_TABLE} WHERE id = ?", (_record_id(record_id),)
        ).fetchone()
        return InspectionRecord.from_row(row) if row else None

    def find_by_uuid(self, record_uuid: str) -> Optional[InspectionRecord]:
        row = self._handle.connection.execute(
            f"SELECT * FROM {RECORDS_TABLE} WHERE recordUuid = ? LIMIT 1", (record_uuid,)
        ).fetchone()
        return InspectionRecord.from_row(row) if row else None

    def list(self, limit: int = DEFAULT_LIST_LIMIT) -> List[Dict[str, Any]]:
        """Return records visible to the operator, oldest inspection first.

        A record whose engine is not attached to any tail right now is hidden;
        re-attaching the engine makes it visible again.  Records without an
        engine are always shown.
        """
        active = self._fleet.active_engines()
        rows = self._handle.connection.execute(
            f"SELECT * FROM {RECORDS_TABLE} ORDER BY inspectionDate ASC, id ASC LIMIT ?",
            (int(limit or DEFAULT_LIST_LIMIT),),
        ).fetchall()
        visible: List[Dict[str, Any]] = []
        for row in rows:
            record = InspectionRecord.from_row(row)
            engine = record.engine_sn.strip()
            if engine and engine not in active:
                continue
            visible.append(record.to_display())
        return visible

    def count(self) -> int:
        return int(
            self._handle.connection.execute(f"SELECT COUNT(*) FROM {RECORDS_TABLE}").fetchone()[0]
        )

    def list_for_transfer(
        self,
        *,
        tail_no: Optional[str] = None,
        engine_sn: Optional[str] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Return full rows for one tail or engine within inclusive date bounds."""
        if tail_no is not None:
            column, scope, label = "aircraftTailNo", str(tail_no).strip(), "Tail No"
        else:
            column, scope, label = "engineSN", str(engine_sn or "").strip(), "Engine S No"
        if not scope:
            raise ValidationError(f"{label} is required.")

        where = [f"{column} = ?"]
        params: List[Any] = [scope]
        # inspectionDate is stored as YYYY-MM-DD so lexical compare works
        lower = str(date_from or "").strip()
        upper = str(date_to or "").strip()
        if lower:
            where.append("inspectionDate >= ?")
            params.append(lower)
        if upper:
            where.append("inspectionDate <= ?")
            params.append(upper)

        rows = self._handle.connection.execute(
            f"SELECT * FROM {RECORDS_TABLE} WHERE {' AND '.join(where)} "
            "ORDER BY inspectionDate ASC, id ASC",
            params,
        ).fetchall()
        return [InspectionRecord.from_row(row).to_transfer_row() for row in rows]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _insert(conn: sqlite3.Connection, record: InspectionRecord) -> int:
        row = record.to_row()
        placeholders = ", ".join("?" for _ in INSERT_COLUMNS)
        cur = conn.execute(
            f"INSERT INTO {RECORDS_TABLE} ({', '.join(INSERT_COLUMNS)}) VALUES ({placeholders})",
            [row[col] for col in INSERT_COLUMNS],
        )
        return int(cur.lastrowid)


__all__ = ["DEFAULT_LIST_LIMIT", "RecordRepository"]
