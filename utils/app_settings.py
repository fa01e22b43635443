"""Application storage settings and derived filesystem paths.

The data directory is resolved from the ``BDAS_DATA_DIR`` environment
variable when set, otherwise from a config INI at ``data/app.ini`` with a
section ``[storage]`` and key ``data_dir``.  Defaults to ``data`` in the
working directory when neither is present.
"""

from __future__ import annotations

import configparser
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DB_FILE_NAME = "bsi.sqlite"
ATTACHMENTS_DIR_NAME = "attachments"
CREDENTIAL_FILE_NAME = "override_password.txt"

_DEFAULT_DATA_DIR = Path("data")


def _read_ini_data_dir(ini_path: Path) -> Optional[Path]:
    if not ini_path.exists():
        return None
    try:
        cp = configparser.ConfigParser()
        cp.read(ini_path)
        raw = cp.get("storage", "data_dir", fallback="").strip()
    except configparser.Error:
        return None
    return Path(raw).expanduser() if raw else None


def resolve_data_dir() -> Path:
    """Return the directory holding the database, attachments and credentials."""
    env = os.environ.get("BDAS_DATA_DIR", "").strip()
    if env:
        return Path(env).expanduser()
    from_ini = _read_ini_data_dir(_DEFAULT_DATA_DIR / "app.ini")
    return from_ini or _DEFAULT_DATA_DIR


@dataclass(frozen=True, slots=True)
class AppPaths:
    """All on-disk locations derived from one data directory."""

    data_dir: Path

    @classmethod
    def from_environment(cls) -> "AppPaths":
        return cls(resolve_data_dir().resolve())

    @property
    def db_path(self) -> Path:
        return self.data_dir / DB_FILE_NAME

    @property
    def wal_path(self) -> Path:
        return self.data_dir / f"{DB_FILE_NAME}-wal"

    @property
    def shm_path(self) -> Path:
        return self.data_dir / f"{DB_FILE_NAME}-shm"

    @property
    def attachments_dir(self) -> Path:
        return self.data_dir / ATTACHMENTS_DIR_NAME

    @property
    def credential_path(self) -> Path:
        return self.data_dir / CREDENTIAL_FILE_NAME

    def ensure_dirs(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.attachments_dir.mkdir(parents=True, exist_ok=True)


__all__ = [
    "AppPaths",
    "ATTACHMENTS_DIR_NAME",
    "CREDENTIAL_FILE_NAME",
    "DB_FILE_NAME",
    "resolve_data_dir",
]
