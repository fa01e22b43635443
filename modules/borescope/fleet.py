"""Tail numbers, engine serial numbers and their assignment history."""
from __future__ import annotations

import logging
import sqlite3
from typing import List, Set

from utils.db import DatabaseHandle
from utils.timefmt import now_utc_iso

from .exceptions import ActiveAssignmentError, ValidationError
from .models import Assignment, TailEnginePair

logger = logging.getLogger(__name__)

DEFAULT_ASSIGNMENT_LIMIT = 5000


def _required(value: object, label: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValidationError(f"{label} is required.")
    return text


def ensure_tail(conn: sqlite3.Connection, tail_no: object) -> None:
    """Create the tail row if ``tail_no`` is non-blank and unknown."""
    code = str(tail_no or "").strip()
    if code:
        conn.execute("INSERT OR IGNORE INTO tails (tailNo) VALUES (?)", (code,))


def ensure_engine(conn: sqlite3.Connection, engine_sn: object) -> None:
    """Create the engine row if ``engine_sn`` is non-blank and unknown."""
    code = str(engine_sn or "").strip()
    if code:
        conn.execute("INSERT OR IGNORE INTO engines (engineSN) VALUES (?)", (code,))


class FleetRepository:
    """Persistence helper for the tail/engine registry."""

    def __init__(self, handle: DatabaseHandle) -> None:
        self._handle = handle

    # ------------------------------------------------------------------
    # Tails and engines
    # ------------------------------------------------------------------
    def list_tails(self) -> List[str]:
        rows = self._handle.connection.execute(
            "SELECT tailNo FROM tails ORDER BY tailNo ASC"
        ).fetchall()
        return [row["tailNo"] for row in rows]

    def add_tail(self, tail_no: str) -> None:
        code = _required(tail_no, "Tail No")
        with self._handle.transaction() as conn:
            ensure_tail(conn, code)

    def delete_tail(self, tail_no: str) -> None:
        code = _required(tail_no, "Tail No")
        with self._handle.transaction() as conn:
            if self._has_active(conn, "tailNo", code):
                raise ActiveAssignmentError(
                    "Cannot delete this Tail No because it is attached to an Engine. "
                    "Detach it first."
                )
            conn.execute("DELETE FROM assignments WHERE tailNo = ?", (code,))
            conn.execute("DELETE FROM tails WHERE tailNo = ?", (code,))
        logger.info("Deleted tail %s and its assignment history", code)

    def list_engines(self) -> List[str]:
        rows = self._handle.connection.execute(
            "SELECT engineSN FROM engines ORDER BY engineSN ASC"
        ).fetchall()
        return [row["engineSN"] for row in rows]

    def add_engine(self, engine_sn: str) -> None:
        code = _required(engine_sn, "Engine S/N")
        with self._handle.transaction() as conn:
            ensure_engine(conn, code)

    def delete_engine(self, engine_sn: str) -> None:
        code = _required(engine_sn, "Engine S/N")
        with self._handle.transaction() as conn:
            if self._has_active(conn, "engineSN", code):
                raise ActiveAssignmentError(
                    "Cannot delete this Engine S/N because it is attached to a Tail No. "
                    "Detach it first."
                )
            conn.execute("DELETE FROM assignments WHERE engineSN = ?", (code,))
            conn.execute("DELETE FROM engines WHERE engineSN = ?", (code,))
        logger.info("Deleted engine %s and its assignment history", code)

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------
    def list_assignments(self, limit: int = DEFAULT_ASSIGNMENT_LIMIT) -> List[Assignment]:
        rows = self._handle.connection.execute(
            "SELECT id, tailNo, engineSN, attachedAt, detachedAt FROM assignments "
            "ORDER BY id DESC LIMIT ?",
            (int(limit or DEFAULT_ASSIGNMENT_LIMIT),),
        ).fetchall()
        return [Assignment.from_row(row) for row in rows]

    def attach(self, tail_no: str, engine_sn: str) -> Assignment:
        """Attach ``engine_sn`` to ``tail_no``, closing whatever either had."""
        tail = _required(tail_no, "Tail No")
        engine = _required(engine_sn, "Engine S/N")
        now = now_utc_iso()
        with self._handle.transaction() as conn:
            ensure_tail(conn, tail)
            ensure_engine(conn, engine)
            conn.execute(
                "UPDATE assignments SET detachedAt = ? WHERE tailNo = ? AND detachedAt IS NULL",
                (now, tail),
            )
            conn.execute(
                "UPDATE assignments SET detachedAt = ? WHERE engineSN = ? AND detachedAt IS NULL",
                (now, engine),
            )
            cur = conn.execute(
                "INSERT INTO assignments (tailNo, engineSN, attachedAt, detachedAt) "
                "VALUES (?, ?, ?, NULL)",
                (tail, engine, now),
            )
            assignment_id = int(cur.lastrowid)
        logger.info("Attached engine %s to tail %s", engine, tail)
        return Assignment(id=assignment_id, tail_no=tail, engine_sn=engine, attached_at=now)

    def detach(self, tail_no: str) -> bool:
        """Close the active assignment of ``tail_no``; return whether one existed."""
        tail = _required(tail_no, "Tail No")
        with self._handle.transaction() as conn:
            cur = conn.execute(
                "UPDATE assignments SET detachedAt = ? WHERE tailNo = ? AND detachedAt IS NULL",
                (now_utc_iso(), tail),
            )
        if cur.rowcount:
            logger.info("Detached tail %s", tail)
        return cur.rowcount > 0

    def get_assigned_engine(self, tail_no: str) -> str:
        tail = str(tail_no or "").strip()
        if not tail:
            return ""
        row = self._handle.connection.execute(
            "SELECT engineSN FROM assignments WHERE tailNo = ? AND detachedAt IS NULL "
            "ORDER BY id DESC LIMIT 1",
            (tail,),
        ).fetchone()
        return row["engineSN"] if row else ""

    def active_engines(self) -> Set[str]:
        rows = self._handle.connection.execute(
            "SELECT DISTINCT engineSN FROM assignments WHERE detachedAt IS NULL"
        ).fetchall()
        return {str(row["engineSN"] or "").strip() for row in rows} - {""}

    def active_pairs(self) -> Set[TailEnginePair]:
        rows = self._handle.connection.execute(
            "SELECT tailNo, engineSN FROM assignments WHERE detachedAt IS NULL"
        ).fetchall()
        return {
            TailEnginePair(str(row["tailNo"]).strip(), str(row["engineSN"]).strip())
            for row in rows
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _has_active(conn: sqlite3.Connection, column: str, code: str) -> bool:
        row = conn.execute(
            f"SELECT id FROM assignments WHERE {column} = ? AND detachedAt IS NULL LIMIT 1",
            (code,),
        ).fetchone()
        return row is not None


__all__ = ["FleetRepository", "ensure_engine", "ensure_tail"]
