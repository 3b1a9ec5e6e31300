"""Debounced event queue drained by a single dispatcher thread."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

import structlog

from codesift.config.constants import WATCH_STOP_TIMEOUT_SEC
from codesift.core.errors import CodeSiftError
from codesift.index.models import ChangeKind, UpdateSummary, WatchEvent

if TYPE_CHECKING:
    from codesift.index.ops import IndexCoordinator

log = structlog.get_logger()


def _merge(previous: WatchEvent, current: WatchEvent) -> list[WatchEvent]:
    """Collapse two events on the same path into the net change."""
    prev, cur = previous.kind, current.kind
    if prev is ChangeKind.RENAMED:
        if cur is ChangeKind.REMOVED and previous.old_path is not None:
            return [WatchEvent(previous.old_path, ChangeKind.REMOVED), current]
        return [previous]
    if prev is ChangeKind.CREATED and cur is ChangeKind.MODIFIED:
        return [previous]
    if prev is ChangeKind.REMOVED and cur is ChangeKind.CREATED:
        return [WatchEvent(current.path, ChangeKind.MODIFIED)]
    return [current]


def coalesce_events(events: Iterable[WatchEvent]) -> list[WatchEvent]:
    """Deduplicate a burst of events into at most one per path.

    Created+Modified stays Created, Removed+Created becomes Modified, and
    otherwise the latest kind wins. Output is ordered by path.
    """
    by_path: dict[str, WatchEvent] = {}
    for event in events:
        previous = by_path.get(event.path)
        merged = [event] if previous is None else _merge(previous, event)
        for item in merged:
            if item.path != event.path and item.path in by_path:
                continue
            by_path[item.path] = item
    return [by_path[path] for path in sorted(by_path)]


class UpdaterState(Enum):
    """Dispatcher state."""

    IDLE = "idle"
    UPDATING = "updating"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class UpdaterStatus:
    """Current updater status."""

    state: UpdaterState
    pending: int
    batches: int
    last_summary: UpdateSummary | None = None
    last_error: str | None = None


@dataclass
class Updater:
    """
    Applies filesystem events to a workspace's indexes in the background.

    Design:
    - Producers (the watcher thread) call ``submit`` and never block on indexing
    - Events are deduplicated per path while they wait
    - One dispatcher thread drains the queue after ``debounce_sec`` of quiet,
      or after ``max_wait_sec`` since the first pending event
    - Commits go through ``IndexCoordinator.apply_events``; per-file failures
      are absorbed there, batch failures are logged and the loop continues
    - More than ``queue_max_size`` pending paths collapses into one rescan
    """

    coordinator: IndexCoordinator
    debounce_sec: float = 0.5
    max_wait_sec: float = 2.0
    queue_max_size: int = 10_000
    on_batch: Callable[[UpdateSummary], None] | None = None

    _pending: dict[str, WatchEvent] = field(default_factory=dict, init=False)
    _overflowed: bool = field(default=False, init=False)
    _cond: threading.Condition = field(default_factory=threading.Condition, init=False)
    _first_at: float = field(default=0.0, init=False)
    _last_at: float = field(default=0.0, init=False)
    _thread: threading.Thread | None = field(default=None, init=False)
    _stopping: bool = field(default=False, init=False)
    _state: UpdaterState = field(default=UpdaterState.STOPPED, init=False)
    _batches: int = field(default=0, init=False)
    _last_summary: UpdateSummary | None = field(default=None, init=False)
    _last_error: str | None = field(default=None, init=False)

    def start(self) -> None:
        """Start the dispatcher thread."""
        if self._thread is not None:
            return
        self._stopping = False
        self._state = UpdaterState.IDLE
        self._thread = threading.Thread(target=self._run, name="codesift-updater", daemon=True)
        self._thread.start()
        log.info("updater.started", debounce_sec=self.debounce_sec, max_wait_sec=self.max_wait_sec)

    def stop(self, timeout: float = WATCH_STOP_TIMEOUT_SEC) -> None:
        """Stop the dispatcher after applying anything still pending."""
        with self._cond:
            self._stopping = True
            self._state = UpdaterState.STOPPING
            self._cond.notify_all()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                log.warning("updater.stop_timeout", timeout=timeout)
            self._thread = None
        self._state = UpdaterState.STOPPED
        log.info("updater.stopped", batches=self._batches)

    def submit(self, events: Iterable[WatchEvent]) -> None:
        """Queue events for debounced delivery."""
        now = time.monotonic()
        with self._cond:
            if not self._pending and not self._overflowed:
                self._first_at = now
            merged = coalesce_events([*self._pending.values(), *events])
            self._pending = {event.path: event for event in merged}
            self._last_at = now
            if len(self._pending) > self.queue_max_size:
                log.warning("updater.queue_overflow", pending=len(self._pending))
                self._pending.clear()
                self._overflowed = True
            self._cond.notify_all()

    def status(self) -> UpdaterStatus:
        with self._cond:
            pending = len(self._pending)
        return UpdaterStatus(
            state=self._state,
            pending=pending,
            batches=self._batches,
            last_summary=self._last_summary,
            last_error=self._last_error,
        )

    def flush(self) -> UpdateSummary | None:
        """Apply everything pending now, on the calling thread."""
        with self._cond:
            events, overflowed = self._take()
        return self._apply(events, overflowed)

    # ------------------------------------------------------------------

    def _take(self) -> tuple[list[WatchEvent], bool]:
        events = [self._pending[path] for path in sorted(self._pending)]
        overflowed = self._overflowed
        self._pending.clear()
        self._overflowed = False
        self._first_at = self._last_at = 0.0
        return events, overflowed

    def _due_in(self, now: float) -> float | None:
        """Seconds until the pending batch is due; None when nothing is pending."""
        if not self._pending and not self._overflowed:
            return None
        quiet = self._last_at + self.debounce_sec - now
        capped = self._first_at + self.max_wait_sec - now
        return max(0.0, min(quiet, capped))

    def _run(self) -> None:
        while True:
            with self._cond:
                while True:
                    due = self._due_in(time.monotonic())
                    if self._stopping or due == 0.0:
                        break
                    self._cond.wait(timeout=due)
                events, overflowed = self._take()
                stopping = self._stopping
            self._apply(events, overflowed)
            if stopping:
                return

    def _apply(self, events: list[WatchEvent], overflowed: bool) -> UpdateSummary | None:
        if not events and not overflowed:
            return None
        self._state = UpdaterState.UPDATING
        try:
            if overflowed:
                rescan = self.coordinator.build()
                summary = UpdateSummary(failures=list(rescan.failures), duration_ms=rescan.duration_ms)
            else:
                summary = self.coordinator.apply_events(events)
        except CodeSiftError as e:
            self._last_error = str(e)
            log.error("updater.batch_failed", events=len(events), error=str(e))
            return None
        finally:
            if self._state is UpdaterState.UPDATING:
                self._state = UpdaterState.IDLE
        self._batches += 1
        self._last_summary = summary
        self._last_error = None
        if self.on_batch is not None:
            self.on_batch(summary)
        return summary
