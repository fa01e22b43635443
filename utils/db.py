"""Single-connection SQLite holder.

The application keeps exactly one live connection to its database.  Restore
needs to close that connection, replace the file underneath it and open it
again, so the connection lives in an explicit holder with an open/close/reopen
lifecycle instead of a module-level variable.  Every store resolves the
current connection through :attr:`DatabaseHandle.connection`, which fails fast
while the handle is closed.
"""
from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, List, Optional

logger = logging.getLogger(__name__)

OpenHook = Callable[[sqlite3.Connection], None]


class DatabaseNotOpenError(RuntimeError):
    """Raised when the database is used while no connection is open."""

    def __init__(self) -> None:
        super().__init__("DB not initialized.")


def _connect(path: Path) -> sqlite3.Connection:
    """Create a SQLite connection with row factory configured."""
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    return conn


class DatabaseHandle:
    """Owns the process-wide connection and its lifecycle."""

    def __init__(self, path: Path, on_open: Optional[List[OpenHook]] = None) -> None:
        self.path = Path(path)
        self._conn: Optional[sqlite3.Connection] = None
        self._on_open: List[OpenHook] = list(on_open or [])

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise DatabaseNotOpenError()
        return self._conn

    def add_open_hook(self, hook: OpenHook) -> None:
        self._on_open.append(hook)

    def open(self) -> sqlite3.Connection:
        if self._conn is not None:
            return self._conn
        conn = _connect(self.path)
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA foreign_keys = ON")
            for hook in self._on_open:
                hook(conn)
        except Exception:
            conn.close()
            raise
        self._conn = conn
        logger.info("SQLite DB: %s", self.path)
        return conn

    def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        conn.close()
        logger.debug("Closed database %s", self.path)

    def reopen(self) -> sqlite3.Connection:
        self.close()
        return self.open()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block of statements atomically on the live connection."""
        conn = self.connection
        with conn:
            yield conn


__all__ = ["DatabaseHandle", "DatabaseNotOpenError"]
