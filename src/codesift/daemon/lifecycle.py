"""Watch-mode lifecycle management."""

from __future__ import annotations

import signal
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from types import FrameType
from typing import TYPE_CHECKING

import structlog

from codesift.daemon.updater import Updater
from codesift.daemon.watcher import FileWatcher
from codesift.index.models import BuildSummary, UpdateSummary

if TYPE_CHECKING:
    from codesift.index.ops import IndexCoordinator

log = structlog.get_logger()


@dataclass
class WatchSession:
    """
    Orchestrates watch-mode components for one workspace.

    Components:
    - IndexCoordinator: owns the indexes; its writer lock is held for the
      whole session so no other process can build meanwhile
    - Updater: debounced queue + single dispatcher thread
    - FileWatcher: watchfiles event source on its own thread
    """

    coordinator: IndexCoordinator
    on_batch: Callable[[UpdateSummary], None] | None = None
    force_polling: bool | None = None

    updater: Updater = field(init=False)
    watcher: FileWatcher = field(init=False)
    _shutdown: threading.Event = field(default_factory=threading.Event, init=False)

    def __post_init__(self) -> None:
        cfg = self.coordinator.config.indexer
        self.updater = Updater(
            coordinator=self.coordinator,
            debounce_sec=cfg.debounce_sec,
            max_wait_sec=cfg.max_wait_sec,
            queue_max_size=cfg.queue_max_size,
            on_batch=self.on_batch,
        )
        self.watcher = FileWatcher(
            root=self.coordinator.workspace.root_path,
            on_events=self.updater.submit,
            config=cfg,
            force_polling=self.force_polling,
        )

    def run(self, on_ready: Callable[[BuildSummary], None] | None = None) -> None:
        """Bring the index up to date, then watch until ``shutdown()``.

        Raises:
            IndexLockedError: Another process is writing this workspace.
        """
        with self.coordinator.writer():
            summary = self.coordinator.build()
            if on_ready is not None:
                on_ready(summary)
            self.start()
            try:
                self._shutdown.wait()
            finally:
                self.stop()

    def start(self) -> None:
        """Start all watch components."""
        log.info("watch.starting", root=str(self.coordinator.workspace.root_path))
        self.updater.start()
        self.watcher.start()

    def stop(self) -> None:
        """Stop the watcher first (no new events), then drain the updater."""
        log.info("watch.stopping")
        self.watcher.stop()
        self.updater.stop()
        log.info("watch.stopped")

    def shutdown(self) -> None:
        self._shutdown.set()

    def install_signal_handlers(self) -> None:
        """SIGINT/SIGTERM end the session (main thread only)."""

        def handler(signum: int, frame: FrameType | None) -> None:  # noqa: ARG001
            log.info("watch.shutdown_signal_received", signal=signum)
            self.shutdown()

        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, handler)
