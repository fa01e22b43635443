"""Full backup and restore of the local data directory.

A backup is one JSON document holding a consistent copy of the database,
every attachment file and the admin credential file, all base64 encoded.
Restoring moves the live database and attachments aside, writes the backup
in their place and reopens the connection so the running process can carry
on.  If any of that fails the previous files are moved back.
"""
from __future__ import annotations

import logging
import os
import posixpath
import re
import sqlite3
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from utils.app_settings import ATTACHMENTS_DIR_NAME, CREDENTIAL_FILE_NAME, AppPaths
from utils.db import DatabaseHandle
from utils.filesystem import ensure_parent, remove_if_exists, walk_files
from utils.timefmt import ddmmyyyy, epoch_millis, now_utc_iso, whole_days_since

from .exceptions import PackageFormatError, StorageError
from .packages import (
    APP_MARKER,
    BACKUP_EXTENSION,
    BACKUP_TYPE,
    FORMAT_VERSION,
    BackupFile,
    FullBackupDocument,
    decode_b64,
    encode_b64,
    load_document,
)
from .settings_store import LAST_BACKUP_AT, LAST_BACKUP_FILE, SettingsRepository

logger = logging.getLogger(__name__)

_SQLITE_HEADER = b"SQLite format 3\x00"
_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:")
_ASIDE_SUFFIX = ".pre-restore"


@dataclass(slots=True)
class BackupResult:
    file_path: str
    exported_at: str
    snapshot_used: bool


@dataclass(slots=True)
class RestoreResult:
    restored_from: str
    files_restored: int
    files_skipped: int


@dataclass(slots=True)
class BackupInfo:
    last_backup_at: str
    last_backup_file: str
    days_since: Optional[int]


def default_backup_name() -> str:
    return f"BDAS_BACKUP_{ddmmyyyy()}{BACKUP_EXTENSION}"


def relaunch_app() -> str:
    """Restart the process for a clean reload after a restore.

    Returns ``"relaunch"`` when a Qt application was running and has been
    asked to quit, ``"reload"`` when there is nothing to restart.
    """
    from PySide6.QtCore import QCoreApplication, QProcess

    app = QCoreApplication.instance()
    if app is None:
        return "reload"
    QProcess.startDetached(sys.executable, sys.argv)
    app.quit()
    return "relaunch"


class BackupService:
    def __init__(self, paths: AppPaths, handle: DatabaseHandle, settings: SettingsRepository) -> None:
        self._paths = paths
        self._handle = handle
        self._settings = settings

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------
    def create_backup(self, target_path: Path) -> BackupResult:
        target = Path(target_path)
        exported_at = now_utc_iso()
        snapshot = self._paths.data_dir / f"bsi_snapshot_{epoch_millis()}.sqlite"
        try:
            snapshot_used = self._snapshot(snapshot)
            source = snapshot if snapshot_used else self._paths.db_path
            if not source.exists():
                raise StorageError("Database file not found.")

            document = FullBackupDocument(
                app=APP_MARKER,
                type=BACKUP_TYPE,
                version=FORMAT_VERSION,
                exportedAt=exported_at,
                dbB64=encode_b64(source.read_bytes()),
                files=self._collect_files(),
            )
            partial = target.with_name(target.name + ".part")
            ensure_parent(target)
            partial.write_text(document.model_dump_json(), encoding="utf-8")
            os.replace(partial, target)
        finally:
            remove_if_exists(snapshot)

        try:
            self._settings.set(LAST_BACKUP_AT, exported_at)
            self._settings.set(LAST_BACKUP_FILE, target.name)
        except sqlite3.Error as exc:
            logger.warning("Backup written but last-backup settings not saved: %s", exc)
        logger.info("Full backup written to %s (%d file(s))", target, len(document.files))
        return BackupResult(file_path=str(target), exported_at=exported_at, snapshot_used=snapshot_used)

    def last_backup_info(self) -> BackupInfo:
        at = self._settings.get(LAST_BACKUP_AT).strip()
        return BackupInfo(
            last_backup_at=at,
            last_backup_file=self._settings.get(LAST_BACKUP_FILE),
            days_since=whole_days_since(at),
        )

    def _snapshot(self, snapshot: Path) -> bool:
        """Copy the live database into ``snapshot`` with ``VACUUM INTO``.

        Returns ``False`` when the copy could not be made, in which case the
        raw database file is used instead.
        """
        conn = self._handle.connection
        try:
            conn.execute("VACUUM INTO ?", (str(snapshot),))
            return True
        except sqlite3.Error as exc:
            logger.warning("VACUUM INTO failed (%s); falling back to the raw database file", exc)
            remove_if_exists(snapshot)
        try:
            conn.execute("PRAGMA wal_checkpoint(FULL)")
        except sqlite3.Error as exc:
            logger.warning("WAL checkpoint before raw copy failed: %s", exc)
        return False

    def _collect_files(self) -> List[BackupFile]:
        files: List[BackupFile] = []
        data_dir = self._paths.data_dir
        for path in walk_files(self._paths.attachments_dir):
            rel = path.relative_to(data_dir).as_posix()
            files.append(BackupFile(rel=rel, dataB64=encode_b64(path.read_bytes())))
        credential = self._paths.credential_path
        if credential.exists():
            files.append(BackupFile(rel=CREDENTIAL_FILE_NAME, dataB64=encode_b64(credential.read_bytes())))
        return files

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------
    def restore_backup(self, backup_path: Path) -> RestoreResult:
        """Replace the live database and files with the contents of a backup.

        Everything in the backup is parsed and decoded before the database is
        closed, so an unusable file leaves the running state untouched.
        """
        source = Path(backup_path)
        document = load_document(source, FullBackupDocument, "backup")
        db_bytes = decode_b64(document.dbB64, "database")
        if not db_bytes.startswith(_SQLITE_HEADER):
            raise PackageFormatError("Backup does not contain a SQLite database.")

        planned: List[Tuple[Path, bytes]] = []
        skipped = 0
        for entry in document.files:
            target = self.safe_restore_path(entry.rel)
            if target is None:
                logger.warning("Skipping backup entry outside the data directory: %r", entry.rel)
                skipped += 1
                continue
            planned.append((target, decode_b64(entry.dataB64, entry.rel)))

        self._handle.close()
        moved: List[Tuple[Path, Path]] = []
        try:
            self._move_aside(self._restore_targets(planned), moved)
            self._write_files(db_bytes, planned)
            self._handle.open()
        except Exception as exc:
            logger.error("Restore from %s failed, putting previous data back: %s", source, exc)
            try:
                self._roll_back(planned, moved)
            except Exception as rollback_exc:
                raise StorageError(
                    f"Restore failed and previous data could not be put back: {rollback_exc}"
                ) from exc
            raise StorageError(f"Restore failed; previous data kept: {exc}") from exc

        for _, aside in moved:
            try:
                remove_if_exists(aside)
            except OSError as exc:
                logger.warning("Could not remove %s after restore: %s", aside, exc)

        logger.info("Restored backup %s (%d file(s), %d skipped)", source.name, len(planned), skipped)
        return RestoreResult(restored_from=source.name, files_restored=len(planned), files_skipped=skipped)

    def safe_restore_path(self, rel: str) -> Optional[Path]:
        """Map a backup entry to a target path, or ``None`` if it is not allowed.

        Only entries under ``attachments/`` and the credential file are
        written.  Absolute paths and any ``..`` component are refused.
        """
        text = str(rel or "").replace("\\", "/").strip()
        if not text or text.startswith("/") or _DRIVE_PREFIX.match(text):
            return None
        if ".." in text.split("/"):
            return None
        norm = posixpath.normpath(text)

        root = self._paths.data_dir.resolve()
        if norm == CREDENTIAL_FILE_NAME:
            return root / CREDENTIAL_FILE_NAME
        if not norm.startswith(f"{ATTACHMENTS_DIR_NAME}/"):
            return None
        target = (root / norm).resolve()
        attachments_root = (root / ATTACHMENTS_DIR_NAME).resolve()
        if target == attachments_root or not target.is_relative_to(attachments_root):
            return None
        return target

    def _restore_targets(self, planned: List[Tuple[Path, bytes]]) -> List[Path]:
        """Live paths a restore replaces.

        The credential file is only touched when the backup carries one.
        """
        targets = [
            self._paths.db_path,
            self._paths.wal_path,
            self._paths.shm_path,
            self._paths.attachments_dir,
        ]
        restored_credential = self._paths.data_dir.resolve() / CREDENTIAL_FILE_NAME
        if any(target == restored_credential for target, _ in planned):
            targets.append(self._paths.credential_path)
        return targets

    @staticmethod
    def _move_aside(targets: List[Path], moved: List[Tuple[Path, Path]]) -> None:
        for live in targets:
            if not live.exists():
                continue
            aside = live.with_name(live.name + _ASIDE_SUFFIX)
            remove_if_exists(aside)
            os.replace(live, aside)
            moved.append((live, aside))

    def _write_files(self, db_bytes: bytes, planned: List[Tuple[Path, bytes]]) -> None:
        ensure_parent(self._paths.db_path)
        self._paths.db_path.write_bytes(db_bytes)
        self._paths.attachments_dir.mkdir(parents=True, exist_ok=True)
        for target, data in planned:
            ensure_parent(target)
            target.write_bytes(data)

    def _roll_back(self, planned: List[Tuple[Path, bytes]], moved: List[Tuple[Path, Path]]) -> None:
        self._handle.close()
        for live in self._restore_targets(planned):
            remove_if_exists(live)
        for live, aside in reversed(moved):
            os.replace(aside, live)
        self._handle.open()


__all__ = [
    "BackupInfo",
    "BackupResult",
    "BackupService",
    "RestoreResult",
    "default_backup_name",
    "relaunch_app",
]
