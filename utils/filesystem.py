"""Small filesystem helpers used by attachment, backup and transfer code."""
from __future__ import annotations

import re
import shutil
from pathlib import Path
from typing import List

_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
MAX_NAME_LENGTH = 180


def safe_name(name: object) -> str:
    """Replace characters illegal in file names and cap the length."""
    text = str(name or "file")
    return _UNSAFE_CHARS.sub("_", text)[:MAX_NAME_LENGTH]


def walk_files(directory: Path) -> List[Path]:
    """Return every regular file below ``directory`` in a stable order."""
    if not directory.exists():
        return []
    return sorted(p for p in directory.rglob("*") if p.is_file())


def remove_if_exists(path: Path) -> None:
    if path.is_dir():
        shutil.rmtree(path)
    elif path.exists():
        path.unlink()


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


__all__ = ["MAX_NAME_LENGTH", "ensure_parent", "remove_if_exists", "safe_name", "walk_files"]
