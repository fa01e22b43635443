"""Key/value process metadata kept in ``app_settings``."""
from __future__ import annotations

from typing import Any

from utils.db import DatabaseHandle
from utils.sqlite_helpers import upsert

from .exceptions import ValidationError

LAST_BACKUP_AT = "lastBackupAt"
LAST_BACKUP_FILE = "lastBackupFile"


class SettingsRepository:
    def __init__(self, handle: DatabaseHandle) -> None:
        self._handle = handle

    def get(self, key: str) -> str:
        k = str(key or "").strip()
        if not k:
            return ""
        row = self._handle.connection.execute(
            "SELECT value FROM app_settings WHERE key = ? LIMIT 1", (k,)
        ).fetchone()
        return row["value"] if row and row["value"] is not None else ""

    def set(self, key: str, value: Any) -> None:
        k = str(key or "").strip()
        if not k:
            raise ValidationError("Setting key is required.")
        v = "" if value is None else str(value)
        with self._handle.transaction() as conn:
            upsert(conn, "app_settings", ["key"], {"key": k, "value": v})


__all__ = ["LAST_BACKUP_AT", "LAST_BACKUP_FILE", "SettingsRepository"]
