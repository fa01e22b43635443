from __future__ import annotations

from PySide6.QtCore import QObject, Signal


class AppSignals(QObject):
    """Global Qt signals for data-store events.

    Views can subscribe to these to refresh after the store changes.
    """

    # Emitted after a record is saved, deleted, or its attachments change
    recordsChanged = Signal()
    # Emitted when tails, engines or assignments change
    fleetChanged = Signal()
    # Emitted after the database handle was reopened (e.g. after restore)
    databaseReopened = Signal()
    # Emitted with the written file path after a full backup
    backupCreated = Signal(str)
    # Emitted with (imported, skipped) counts after a package import
    packageImported = Signal(int, int)


# Global singleton instance
app_signals = AppSignals()


__all__ = ["app_signals", "AppSignals"]
