"""Facade over the borescope data store.

This is the only object the presentation layer talks to.  It owns the
database handle and every store, checks admin capabilities on gated calls
and announces changes through :data:`utils.app_signals.app_signals`.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from utils.app_settings import AppPaths
from utils.db import DatabaseHandle

from .attachments import AttachmentStore, BlobLike
from .backup import BackupInfo, BackupResult, BackupService, RestoreResult, default_backup_name, relaunch_app
from .credentials import AdminCapability, CredentialStore, require_capability
from .fleet import FleetRepository
from .identity import backfill_identities
from .models import Assignment
from .repository import DEFAULT_LIST_LIMIT, RecordRepository
from .schema import ensure_schema
from .settings_store import SettingsRepository
from .transfer import ExportResult, ImportResult, TransferService, default_package_name

logger = logging.getLogger(__name__)


def _default_signals():
    from utils.app_signals import app_signals

    return app_signals


class BorescopeService:
    """Request/response boundary of the inspection data store."""

    def __init__(self, paths: Optional[AppPaths] = None, signals: Any = None) -> None:
        self.paths = paths or AppPaths.from_environment()
        self._signals = signals if signals is not None else _default_signals()
        self.handle = DatabaseHandle(self.paths.db_path, on_open=[ensure_schema, backfill_identities])
        self.fleet = FleetRepository(self.handle)
        self.records = RecordRepository(self.handle, self.fleet)
        self.settings = SettingsRepository(self.handle)
        self.attachments = AttachmentStore(self.paths.attachments_dir, self.records)
        self.credentials = CredentialStore(self.paths.credential_path)
        self.backups = BackupService(self.paths, self.handle, self.settings)
        self.transfers = TransferService(self.handle, self.records, self.fleet, self.attachments)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def initialize(self) -> None:
        """Create the data directory and open the database.

        Schema or identity failures propagate; the caller is expected to halt.
        """
        self.paths.ensure_dirs()
        self.handle.open()
        logger.info("Data store ready in %s (%d record(s))", self.paths.data_dir, self.records.count())

    def shutdown(self) -> None:
        self.handle.close()

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------
    def save_record(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        record = self.records.save(data)
        self._emit("recordsChanged")
        return record.to_display()

    def list_records(self, limit: int = DEFAULT_LIST_LIMIT) -> List[Dict[str, Any]]:
        return self.records.list(limit)

    def delete_record(self, record_id: int, *, capability: Optional[AdminCapability]) -> None:
        require_capability(capability)
        self.records.delete(record_id)
        self._emit("recordsChanged")

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------
    def save_attachments(
        self,
        record_id: int,
        images: Optional[Iterable[BlobLike]] = None,
        docs: Optional[Iterable[BlobLike]] = None,
    ) -> Dict[str, List[str]]:
        saved = self.attachments.save_for_record(record_id, images, docs)
        self._emit("recordsChanged")
        return saved

    def image_data_url(self, path: str) -> str:
        return self.attachments.image_data_url(path)

    def open_attachment(self, path: str) -> Dict[str, Any]:
        return self.attachments.open_external(path)

    # ------------------------------------------------------------------
    # Fleet
    # ------------------------------------------------------------------
    def list_tails(self) -> List[str]:
        return self.fleet.list_tails()

    def add_tail(self, tail_no: str) -> None:
        self.fleet.add_tail(tail_no)
        self._emit("fleetChanged")

    def delete_tail(self, tail_no: str, *, capability: Optional[AdminCapability]) -> None:
        require_capability(capability)
        self.fleet.delete_tail(tail_no)
        self._emit("fleetChanged")

    def list_engines(self) -> List[str]:
        return self.fleet.list_engines()

    def add_engine(self, engine_sn: str) -> None:
        self.fleet.add_engine(engine_sn)
        self._emit("fleetChanged")

    def delete_engine(self, engine_sn: str, *, capability: Optional[AdminCapability]) -> None:
        require_capability(capability)
        self.fleet.delete_engine(engine_sn)
        self._emit("fleetChanged")

    def list_assignments(self, limit: int = 5000) -> List[Assignment]:
        return self.fleet.list_assignments(limit)

    def attach_engine_to_tail(self, tail_no: str, engine_sn: str) -> Assignment:
        assignment = self.fleet.attach(tail_no, engine_sn)
        self._emit("fleetChanged")
        self._emit("recordsChanged")
        return assignment

    def detach_tail(self, tail_no: str) -> bool:
        detached = self.fleet.detach(tail_no)
        if detached:
            self._emit("fleetChanged")
            self._emit("recordsChanged")
        return detached

    def get_assigned_engine(self, tail_no: str) -> str:
        return self.fleet.get_assigned_engine(tail_no)

    # ------------------------------------------------------------------
    # Settings, backup and restore
    # ------------------------------------------------------------------
    def get_setting(self, key: str) -> str:
        return self.settings.get(key)

    def set_setting(self, key: str, value: Any) -> None:
        self.settings.set(key, value)

    def last_backup_info(self) -> BackupInfo:
        return self.backups.last_backup_info()

    def create_backup(self, target_path: Optional[Path] = None) -> BackupResult:
        target = Path(target_path) if target_path else Path.cwd() / default_backup_name()
        result = self.backups.create_backup(target)
        self._emit("backupCreated", result.file_path)
        return result

    def restore_backup(self, backup_path: Path) -> RestoreResult:
        result = self.backups.restore_backup(backup_path)
        self._emit("databaseReopened")
        self._emit("fleetChanged")
        self._emit("recordsChanged")
        return result

    def relaunch_app(self) -> Dict[str, str]:
        return {"mode": relaunch_app()}

    # ------------------------------------------------------------------
    # Transfer packages
    # ------------------------------------------------------------------
    def export_tail_package(
        self,
        tails: Iterable[str],
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        target_path: Optional[Path] = None,
        *,
        capability: Optional[AdminCapability],
    ) -> ExportResult:
        require_capability(capability)
        tails = list(tails or [])
        target = Path(target_path) if target_path else Path.cwd() / default_package_name(tails)
        return self.transfers.export_tail_package(tails, date_from, date_to, target)

    def export_engine_package(
        self,
        engines: Iterable[str],
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        target_path: Optional[Path] = None,
        *,
        capability: Optional[AdminCapability],
    ) -> ExportResult:
        require_capability(capability)
        engines = list(engines or [])
        target = Path(target_path) if target_path else Path.cwd() / default_package_name(engines)
        return self.transfers.export_engine_package(engines, date_from, date_to, target)

    def import_package(self, package_path: Path, *, capability: Optional[AdminCapability]) -> ImportResult:
        require_capability(capability)
        result = self.transfers.import_package(package_path)
        self._emit("recordsChanged")
        self._emit("fleetChanged")
        self._emit("packageImported", result.imported, result.skipped)
        return result

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------
    def verify_password(self, password: str) -> Optional[AdminCapability]:
        return self.credentials.verify(password)

    def change_password(self, current: str, new: str) -> bool:
        return self.credentials.change_password(current, new)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _emit(self, name: str, *args: Any) -> None:
        try:
            getattr(self._signals, name).emit(*args)
        except Exception as exc:
            logger.warning("Failed to emit %s: %s", name, exc)


__all__ = ["BorescopeService"]
