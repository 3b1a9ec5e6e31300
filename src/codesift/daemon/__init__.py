"""Watch mode - filesystem events applied incrementally to the indexes."""

from codesift.daemon.lifecycle import WatchSession
from codesift.daemon.updater import Updater, UpdaterState, UpdaterStatus, coalesce_events
from codesift.daemon.watcher import FileWatcher

__all__ = [
    "FileWatcher",
    "Updater",
    "UpdaterState",
    "UpdaterStatus",
    "WatchSession",
    "coalesce_events",
]
