"""SQLite schema management for the borescope data store.

The schema only ever grows.  It is described as an ordered list of migration
steps; each step inspects the live database and applies itself only when its
table, column or index is missing, so :func:`ensure_schema` is safe on every
startup and after a restore.  Repair steps run ahead of each unique index and
rewrite older rows that would otherwise break it.
"""
from __future__ import annotations

import logging
import sqlite3
import uuid
from dataclasses import dataclass
from typing import Callable, List, Sequence, Union

from utils.sqlite_helpers import index_exists, table_columns, table_exists
from utils.timefmt import now_utc_iso

from .exceptions import SchemaError

logger = logging.getLogger(__name__)

RECORDS_TABLE = "bsi_records"

_RECORDS_TABLE_DDL = f"""
CREATE TABLE IF NOT EXISTS {RECORDS_TABLE} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    aircraftTailNo TEXT NOT NULL DEFAULT '',
    engineSN TEXT NOT NULL DEFAULT '',
    inspectionDate TEXT NOT NULL DEFAULT '',
    engineHours TEXT NOT NULL DEFAULT '',
    inspectionType TEXT NOT NULL DEFAULT '',
    scheduledUnscheduled TEXT NOT NULL DEFAULT '',
    inspectionArea TEXT NOT NULL DEFAULT '',
    subArea TEXT NOT NULL DEFAULT '',
    stageNumber TEXT NOT NULL DEFAULT '',
    edge TEXT NOT NULL DEFAULT '',
    zone TEXT NOT NULL DEFAULT '',
    bladeCoverage TEXT NOT NULL DEFAULT '',
    defectType TEXT NOT NULL DEFAULT '',
    length TEXT NOT NULL DEFAULT '',
    width TEXT NOT NULL DEFAULT '',
    height TEXT NOT NULL DEFAULT '',
    area TEXT NOT NULL DEFAULT '',
    shortSamplingHours TEXT NOT NULL DEFAULT '',
    inspectorName TEXT NOT NULL DEFAULT '',
    inspectorId TEXT NOT NULL DEFAULT '',
    unitSection TEXT NOT NULL DEFAULT '',
    disposal TEXT NOT NULL DEFAULT '',
    remarks TEXT NOT NULL DEFAULT '',
    tstTafEnabled INTEGER NOT NULL DEFAULT 0,
    tstTafNumber TEXT NOT NULL DEFAULT '',
    imagePaths TEXT NOT NULL DEFAULT '[]',
    docPaths TEXT NOT NULL DEFAULT '[]',
    isFollowUp INTEGER NOT NULL DEFAULT 0,
    previousRecordId INTEGER,
    overrideUsed INTEGER NOT NULL DEFAULT 0,
    createdAt TEXT NOT NULL DEFAULT '',
    recordUuid TEXT NOT NULL DEFAULT '',
    previousRecordUuid TEXT NOT NULL DEFAULT ''
)
"""

# Columns introduced after the first release, in the order they appeared.
LATER_RECORD_COLUMNS = (
    ("subArea", "TEXT NOT NULL DEFAULT ''"),
    ("docPaths", "TEXT NOT NULL DEFAULT '[]'"),
    ("isFollowUp", "INTEGER NOT NULL DEFAULT 0"),
    ("previousRecordId", "INTEGER"),
    ("overrideUsed", "INTEGER NOT NULL DEFAULT 0"),
    ("createdAt", "TEXT NOT NULL DEFAULT ''"),
    ("recordUuid", "TEXT NOT NULL DEFAULT ''"),
    ("previousRecordUuid", "TEXT NOT NULL DEFAULT ''"),
    ("imagePaths", "TEXT NOT NULL DEFAULT '[]'"),
    ("tstTafEnabled", "INTEGER NOT NULL DEFAULT 0"),
    ("tstTafNumber", "TEXT NOT NULL DEFAULT ''"),
    ("unitSection", "TEXT NOT NULL DEFAULT ''"),
    ("bladeCoverage", "TEXT NOT NULL DEFAULT ''"),
)

_TAILS_TABLE = """
CREATE TABLE IF NOT EXISTS tails (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tailNo TEXT UNIQUE NOT NULL
)
"""

_ENGINES_TABLE = """
CREATE TABLE IF NOT EXISTS engines (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    engineSN TEXT UNIQUE NOT NULL
)
"""

_ASSIGNMENTS_TABLE = """
CREATE TABLE IF NOT EXISTS assignments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tailNo TEXT NOT NULL,
    engineSN TEXT NOT NULL,
    attachedAt TEXT NOT NULL,
    detachedAt TEXT,
    FOREIGN KEY (tailNo) REFERENCES tails(tailNo),
    FOREIGN KEY (engineSN) REFERENCES engines(engineSN)
)
"""

_SETTINGS_TABLE = """
CREATE TABLE IF NOT EXISTS app_settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL DEFAULT ''
)
"""


# ---------------------------------------------------------------------------
# Migration steps
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CreateTable:
    table: str
    ddl: str

    @property
    def name(self) -> str:
        return f"create table {self.table}"

    def needed(self, conn: sqlite3.Connection) -> bool:
        return not table_exists(conn, self.table)

    def apply(self, conn: sqlite3.Connection) -> None:
        conn.execute(self.ddl)


@dataclass(frozen=True)
class AddColumn:
    table: str
    column: str
    ddl: str

    @property
    def name(self) -> str:
        return f"add column {self.table}.{self.column}"

    def needed(self, conn: sqlite3.Connection) -> bool:
        return self.column not in table_columns(conn, self.table)

    def apply(self, conn: sqlite3.Connection) -> None:
        conn.execute(f"ALTER TABLE {self.table} ADD COLUMN {self.column} {self.ddl}")


@dataclass(frozen=True)
class CreateIndex:
    index: str
    ddl: str

    @property
    def name(self) -> str:
        return f"create index {self.index}"

    def needed(self, conn: sqlite3.Connection) -> bool:
        return not index_exists(conn, self.index)

    def apply(self, conn: sqlite3.Connection) -> None:
        conn.execute(self.ddl)


@dataclass(frozen=True)
class RepairData:
    """Rewrites rows that would violate a constraint added by a later step."""

    label: str
    check: str
    repair: Callable[[sqlite3.Connection], int]

    @property
    def name(self) -> str:
        return f"repair {self.label}"

    def needed(self, conn: sqlite3.Connection) -> bool:
        return conn.execute(self.check).fetchone() is not None

    def apply(self, conn: sqlite3.Connection) -> None:
        changed = self.repair(conn)
        logger.warning("Repaired %d row(s) before adding constraint: %s", changed, self.label)


_DUPLICATE_UUID_CHECK = f"""
SELECT 1 FROM {RECORDS_TABLE}
 WHERE recordUuid <> ''
 GROUP BY recordUuid HAVING COUNT(*) > 1
 LIMIT 1
"""

_DUPLICATE_ACTIVE_CHECK = """
SELECT 1 FROM (
    SELECT tailNo FROM assignments WHERE detachedAt IS NULL GROUP BY tailNo HAVING COUNT(*) > 1
    UNION ALL
    SELECT engineSN FROM assignments WHERE detachedAt IS NULL GROUP BY engineSN HAVING COUNT(*) > 1
)
LIMIT 1
"""


def _reissue_duplicate_uuids(conn: sqlite3.Connection) -> int:
    """Keep each uuid on its lowest id; every later copy gets a fresh uuid."""
    rows = conn.execute(
        f"""
        SELECT id FROM {RECORDS_TABLE} AS r
         WHERE r.recordUuid <> ''
           AND EXISTS (
                   SELECT 1 FROM {RECORDS_TABLE} AS first
                    WHERE first.recordUuid = r.recordUuid AND first.id < r.id
               )
        """
    ).fetchall()
    for row in rows:
        conn.execute(
            f"UPDATE {RECORDS_TABLE} SET recordUuid = ? WHERE id = ?",
            (str(uuid.uuid4()), int(row[0])),
        )
    return len(rows)


def _close_superseded_assignments(conn: sqlite3.Connection) -> int:
    """Leave only the newest active assignment per tail, then per engine."""
    now = now_utc_iso()
    closed = 0
    for column in ("tailNo", "engineSN"):
        cur = conn.execute(
            f"""
            UPDATE assignments SET detachedAt = ?
             WHERE detachedAt IS NULL
               AND EXISTS (
                       SELECT 1 FROM assignments AS newer
                        WHERE newer.{column} = assignments.{column}
                          AND newer.detachedAt IS NULL
                          AND newer.id > assignments.id
                   )
            """,
            (now,),
        )
        closed += max(cur.rowcount, 0)
    return closed


MigrationStep = Union[CreateTable, AddColumn, RepairData, CreateIndex]

MIGRATION_STEPS: List[MigrationStep] = [
    CreateTable(RECORDS_TABLE, _RECORDS_TABLE_DDL),
    *(AddColumn(RECORDS_TABLE, column, ddl) for column, ddl in LATER_RECORD_COLUMNS),
    CreateTable("tails", _TAILS_TABLE),
    CreateTable("engines", _ENGINES_TABLE),
    CreateTable("assignments", _ASSIGNMENTS_TABLE),
    CreateTable("app_settings", _SETTINGS_TABLE),
    CreateIndex(
        "idx_bsi_records_date",
        f"CREATE INDEX IF NOT EXISTS idx_bsi_records_date ON {RECORDS_TABLE}(inspectionDate, id)",
    ),
    CreateIndex(
        "idx_bsi_records_engine",
        f"CREATE INDEX IF NOT EXISTS idx_bsi_records_engine ON {RECORDS_TABLE}(engineSN)",
    ),
    RepairData("duplicate record uuids", _DUPLICATE_UUID_CHECK, _reissue_duplicate_uuids),
    RepairData("duplicate active assignments", _DUPLICATE_ACTIVE_CHECK, _close_superseded_assignments),
    CreateIndex(
        "uq_bsi_records_uuid",
        f"CREATE UNIQUE INDEX IF NOT EXISTS uq_bsi_records_uuid ON {RECORDS_TABLE}(recordUuid) "
        "WHERE recordUuid <> ''",
    ),
    CreateIndex(
        "uq_assignments_active_tail",
        "CREATE UNIQUE INDEX IF NOT EXISTS uq_assignments_active_tail ON assignments(tailNo) "
        "WHERE detachedAt IS NULL",
    ),
    CreateIndex(
        "uq_assignments_active_engine",
        "CREATE UNIQUE INDEX IF NOT EXISTS uq_assignments_active_engine ON assignments(engineSN) "
        "WHERE detachedAt IS NULL",
    ),
]


def schema_version(conn: sqlite3.Connection) -> int:
    return int(conn.execute("PRAGMA user_version").fetchone()[0])


def ensure_schema(
    conn: sqlite3.Connection, steps: Sequence[MigrationStep] = MIGRATION_STEPS
) -> int:
    """Apply every missing migration step and return how many ran.

    Raises :class:`SchemaError` on the first failing step; the caller treats
    that as fatal.
    """
    applied = 0
    for step in steps:
        try:
            if not step.needed(conn):
                continue
            logger.info("Applying schema step: %s", step.name)
            step.apply(conn)
            applied += 1
        except sqlite3.Error as exc:
            conn.rollback()
            raise SchemaError(f"Schema step '{step.name}' failed: {exc}") from exc
    if schema_version(conn) < len(steps):
        conn.execute(f"PRAGMA user_version = {len(steps)}")
    conn.commit()
    return applied


__all__ = [
    "AddColumn",
    "CreateIndex",
    "CreateTable",
    "LATER_RECORD_COLUMNS",
    "MIGRATION_STEPS",
    "MigrationStep",
    "RECORDS_TABLE",
    "RepairData",
    "ensure_schema",
    "schema_version",
]
