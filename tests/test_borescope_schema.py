from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from modules.borescope.exceptions import SchemaError
from modules.borescope.identity import backfill_identities, resolve_followups
from modules.borescope.schema import (
    LATER_RECORD_COLUMNS,
    MIGRATION_STEPS,
    RECORDS_TABLE,
    CreateTable,
    RepairData,
    ensure_schema,
    schema_version,
)
from utils.db import DatabaseHandle, DatabaseNotOpenError
from utils.sqlite_helpers import index_exists, table_columns, table_exists

FIRST_RELEASE_TABLE = f"""
CREATE TABLE {RECORDS_TABLE} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    aircraftTailNo TEXT, engineSN TEXT, inspectionDate TEXT, engineHours TEXT,
    inspectionType TEXT, scheduledUnscheduled TEXT, inspectionArea TEXT,
    stageNumber TEXT, edge TEXT, zone TEXT, defectType TEXT,
    length TEXT, width TEXT, height TEXT, area TEXT, shortSamplingHours TEXT,
    inspectorName TEXT, inspectorId TEXT, disposal TEXT, remarks TEXT
)
"""


def _connect(path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    return conn


def test_fresh_database_gets_every_table_and_index(tmp_path: Path) -> None:
    conn = _connect(tmp_path / "fresh.sqlite")
    applied = ensure_schema(conn)

    assert applied > 0
    for table in (RECORDS_TABLE, "tails", "engines", "assignments", "app_settings"):
        assert table_exists(conn, table)
    assert index_exists(conn, "uq_bsi_records_uuid")
    assert index_exists(conn, "uq_assignments_active_engine")
    assert schema_version(conn) == len(MIGRATION_STEPS)


def test_ensure_schema_is_idempotent(tmp_path: Path) -> None:
    conn = _connect(tmp_path / "twice.sqlite")
    ensure_schema(conn)
    assert ensure_schema(conn) == 0


def test_legacy_table_is_upgraded_without_losing_rows(tmp_path: Path) -> None:
    conn = _connect(tmp_path / "legacy.sqlite")
    conn.execute(FIRST_RELEASE_TABLE)
    conn.execute(
        f"INSERT INTO {RECORDS_TABLE} (aircraftTailNo, engineSN, inspectionDate, defectType) "
        "VALUES ('ZK-OLD', 'ENG-OLD', '2019-05-04', 'Crack')"
    )
    conn.commit()

    ensure_schema(conn)
    backfill_identities(conn)

    columns = table_columns(conn, RECORDS_TABLE)
    for column, _ in LATER_RECORD_COLUMNS:
        assert column in columns
    row = conn.execute(f"SELECT * FROM {RECORDS_TABLE}").fetchone()
    assert row["aircraftTailNo"] == "ZK-OLD"
    assert row["defectType"] == "Crack"
    assert row["imagePaths"] == "[]"
    assert row["isFollowUp"] == 0
    assert row["recordUuid"] != ""


def test_failing_step_raises_schema_error(tmp_path: Path) -> None:
    conn = _connect(tmp_path / "broken.sqlite")
    steps = [CreateTable("broken", "CREATE TABLE broken (")]
    with pytest.raises(SchemaError):
        ensure_schema(conn, steps)


def test_backfill_assigns_uuids_and_previous_links(tmp_path: Path) -> None:
    conn = _connect(tmp_path / "backfill.sqlite")
    ensure_schema(conn)
    with conn:
        first = conn.execute(
            f"INSERT INTO {RECORDS_TABLE} (aircraftTailNo) VALUES ('ZK-1')"
        ).lastrowid
        conn.execute(
            f"INSERT INTO {RECORDS_TABLE} (aircraftTailNo, isFollowUp, previousRecordId) "
            "VALUES ('ZK-1', 1, ?)",
            (first,),
        )

    backfill_identities(conn)

    rows = conn.execute(f"SELECT * FROM {RECORDS_TABLE} ORDER BY id").fetchall()
    assert all(row["recordUuid"] for row in rows)
    assert rows[0]["recordUuid"] != rows[1]["recordUuid"]
    assert rows[1]["previousRecordUuid"] == rows[0]["recordUuid"]
    assert backfill_identities(conn) == 0


def test_resolve_followups_rewires_by_uuid(tmp_path: Path) -> None:
    conn = _connect(tmp_path / "resolve.sqlite")
    ensure_schema(conn)
    with conn:
        target = conn.execute(
            f"INSERT INTO {RECORDS_TABLE} (recordUuid) VALUES ('uuid-parent')"
        ).lastrowid
        follow = conn.execute(
            f"INSERT INTO {RECORDS_TABLE} (recordUuid, isFollowUp, previousRecordUuid) "
            "VALUES ('uuid-child', 1, 'uuid-parent')"
        ).lastrowid
        conn.execute(
            f"INSERT INTO {RECORDS_TABLE} (recordUuid, isFollowUp, previousRecordUuid) "
            "VALUES ('uuid-orphan', 1, 'uuid-elsewhere')"
        )

    assert resolve_followups(conn) == 1
    row = conn.execute(
        f"SELECT previousRecordId FROM {RECORDS_TABLE} WHERE id = ?", (follow,)
    ).fetchone()
    assert row["previousRecordId"] == target
    assert resolve_followups(conn) == 0


def test_closed_handle_fails_fast(tmp_path: Path) -> None:
    handle = DatabaseHandle(tmp_path / "handle.sqlite", on_open=[ensure_schema])
    with pytest.raises(DatabaseNotOpenError):
        handle.connection
    handle.open()
    assert handle.is_open
    handle.close()
    with pytest.raises(DatabaseNotOpenError, match="DB not initialized"):
        handle.connection.execute("SELECT 1")


def test_failing_open_hook_leaves_handle_closed(tmp_path: Path) -> None:
    def _boom(conn: sqlite3.Connection) -> None:
        raise SchemaError("nope")

    handle = DatabaseHandle(tmp_path / "hook.sqlite", on_open=[_boom])
    with pytest.raises(SchemaError):
        handle.open()
    assert not handle.is_open


def _before_unique_indexes() -> list:
    first_repair = next(i for i, step in enumerate(MIGRATION_STEPS) if isinstance(step, RepairData))
    return list(MIGRATION_STEPS[:first_repair])


def test_duplicate_active_assignments_are_closed_before_indexing(tmp_path: Path) -> None:
    conn = _connect(tmp_path / "assignments.sqlite")
    ensure_schema(conn, _before_unique_indexes())
    with conn:
        conn.executemany(
            "INSERT INTO assignments (tailNo, engineSN, attachedAt, detachedAt) VALUES (?, ?, ?, NULL)",
            [
                ("T1", "E1", "2020-01-01T00:00:00.000Z"),
                ("T1", "E2", "2021-01-01T00:00:00.000Z"),
                ("T2", "E2", "2022-01-01T00:00:00.000Z"),
                ("T3", "E3", "2022-06-01T00:00:00.000Z"),
            ],
        )

    ensure_schema(conn)

    active = conn.execute(
        "SELECT tailNo, engineSN FROM assignments WHERE detachedAt IS NULL ORDER BY id"
    ).fetchall()
    assert [tuple(row) for row in active] == [("T2", "E2"), ("T3", "E3")]
    assert index_exists(conn, "uq_assignments_active_tail")
    assert index_exists(conn, "uq_assignments_active_engine")
    assert conn.execute("SELECT COUNT(*) FROM assignments").fetchone()[0] == 4
    assert schema_version(conn) == len(MIGRATION_STEPS)


def test_duplicate_record_uuids_are_reissued_before_indexing(tmp_path: Path) -> None:
    conn = _connect(tmp_path / "uuids.sqlite")
    ensure_schema(conn, _before_unique_indexes())
    with conn:
        conn.executemany(
            f"INSERT INTO {RECORDS_TABLE} (aircraftTailNo, recordUuid) VALUES (?, ?)",
            [("ZK-1", "shared"), ("ZK-2", "shared"), ("ZK-3", ""), ("ZK-4", ""), ("ZK-5", "own")],
        )

    ensure_schema(conn)

    uuids = [row[0] for row in conn.execute(f"SELECT recordUuid FROM {RECORDS_TABLE} ORDER BY id")]
    assert uuids[0] == "shared"
    assert uuids[1] not in ("", "shared")
    assert uuids[2:] == ["", "", "own"]
    assert index_exists(conn, "uq_bsi_records_uuid")
