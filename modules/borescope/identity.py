"""Global record identifiers and follow-up link reconciliation.

Local ``id`` values are assigned independently by every database, so they
cannot survive a transfer between units.  Each record therefore also carries
a ``recordUuid``; follow-up links are stored both as the local id and as the
previous record's uuid, and the uuid is what re-establishes the local link
after an import.
"""
from __future__ import annotations

import logging
import sqlite3
import uuid

from .schema import RECORDS_TABLE

logger = logging.getLogger(__name__)


def new_record_uuid() -> str:
    return str(uuid.uuid4())


def backfill_identities(conn: sqlite3.Connection) -> int:
    """Give every record a uuid and fill missing previous-record uuids.

    Returns the number of rows updated.
    """
    updated = 0
    with conn:
        rows = conn.execute(
            f"SELECT id FROM {RECORDS_TABLE} WHERE TRIM(COALESCE(recordUuid, '')) = ''"
        ).fetchall()
        for row in rows:
            conn.execute(
                f"UPDATE {RECORDS_TABLE} SET recordUuid = ? WHERE id = ?",
                (new_record_uuid(), int(row["id"])),
            )
            updated += 1

        cur = conn.execute(
            f"""
            UPDATE {RECORDS_TABLE}
               SET previousRecordUuid = (
                       SELECT prev.recordUuid FROM {RECORDS_TABLE} AS prev
                        WHERE prev.id = {RECORDS_TABLE}.previousRecordId
                   )
             WHERE previousRecordId IS NOT NULL
               AND TRIM(COALESCE(previousRecordUuid, '')) = ''
               AND EXISTS (
                       SELECT 1 FROM {RECORDS_TABLE} AS prev
                        WHERE prev.id = {RECORDS_TABLE}.previousRecordId
                          AND prev.recordUuid <> ''
                   )
            """
        )
        updated += max(cur.rowcount, 0)
    if updated:
        logger.info("Backfilled identities on %d record(s)", updated)
    return updated


def resolve_followups(conn: sqlite3.Connection) -> int:
    """Point each follow-up's local link at the record its uuid names.

    Only follow-ups whose previous uuid exists locally are touched.  Returns
    the number of rows whose link changed.
    """
    with conn:
        cur = conn.execute(
            f"""
            UPDATE {RECORDS_TABLE}
               SET previousRecordId = (
                       SELECT prev.id FROM {RECORDS_TABLE} AS prev
                        WHERE prev.recordUuid = {RECORDS_TABLE}.previousRecordUuid
                        LIMIT 1
                   )
             WHERE isFollowUp = 1
               AND TRIM(COALESCE(previousRecordUuid, '')) <> ''
               AND EXISTS (
                       SELECT 1 FROM {RECORDS_TABLE} AS prev
                        WHERE prev.recordUuid = {RECORDS_TABLE}.previousRecordUuid
                          AND prev.id IS NOT {RECORDS_TABLE}.previousRecordId
                   )
            """
        )
    changed = max(cur.rowcount, 0)
    if changed:
        logger.info("Rewired %d follow-up link(s) by record uuid", changed)
    return changed


__all__ = ["backfill_identities", "new_record_uuid", "resolve_followups"]
