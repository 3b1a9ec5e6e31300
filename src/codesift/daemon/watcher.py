"""File watcher using watchfiles on a background thread.

Design:
- watchfiles ``watch()`` runs recursively on its own thread until a stop event
- Its filter drops events under hardcoded directories (.git and friends)
- Each raw batch is translated to relative ``WatchEvent``s and filtered
  through the workspace ignore rules (ignore files themselves always pass)
- Falls back to polling on cross-filesystem mounts (WSL /mnt/*, network)
- Debouncing is left to the Updater
"""

from __future__ import annotations

import threading
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import structlog
from watchfiles import Change, watch

from codesift.config.constants import WATCH_STOP_TIMEOUT_SEC
from codesift.config.models import IndexerConfig
from codesift.core.excludes import is_hardcoded_dir
from codesift.core.languages import detect_language
from codesift.index.ignore import IgnoreChecker
from codesift.index.models import ChangeKind, WatchEvent

log = structlog.get_logger()

_CHANGE_KINDS: dict[Change, ChangeKind] = {
    Change.added: ChangeKind.CREATED,
    Change.modified: ChangeKind.MODIFIED,
    Change.deleted: ChangeKind.REMOVED,
}


def is_cross_filesystem(path: Path) -> bool:
    """Detect if path is on a cross-filesystem mount (WSL /mnt/*, network drives, etc.)."""
    path_str = str(path.resolve())
    # WSL drive mounts are a single letter: /mnt/c/ but not /mnt/data/
    if (
        path_str.startswith("/mnt/")
        and len(path_str) > 6
        and path_str[5].isalpha()
        and path_str[6] == "/"
    ):
        return True
    return path_str.startswith(("/run/user/", "/media/", "/net/"))


def summarize_changes(paths: list[str]) -> str:
    """Human-readable summary like ``"2 Python files, 1 Rust file"``."""
    counts: Counter[str] = Counter(detect_language(p) or "other" for p in paths)
    parts: list[str] = []
    for name, count in counts.most_common(3):
        label = name if name == "other" else name.capitalize()
        parts.append(f"{count} {label} {'file' if count == 1 else 'files'}")
    remaining = len(paths) - sum(count for _, count in counts.most_common(3))
    if remaining > 0:
        parts.append(f"{remaining} {'other' if remaining == 1 else 'others'}")
    return ", ".join(parts)


@dataclass
class FileWatcher:
    """
    Filesystem event source for one workspace root.

    ``on_events`` is called on the watcher thread with each non-empty batch;
    it must not block for long (the Updater only queues).
    """

    root: Path
    on_events: Callable[[list[WatchEvent]], None]
    config: IndexerConfig = field(default_factory=IndexerConfig)
    force_polling: bool | None = None

    _ignore: IgnoreChecker = field(init=False)
    _thread: threading.Thread | None = field(default=None, init=False)
    _stop_event: threading.Event = field(default_factory=threading.Event, init=False)

    def __post_init__(self) -> None:
        self.root = self.root.resolve()
        self._ignore = self._new_checker()
        if self.force_polling is None and is_cross_filesystem(self.root):
            self.force_polling = True

    def _new_checker(self) -> IgnoreChecker:
        return IgnoreChecker(
            self.root,
            self.config.extra_ignore,
            respect_gitignore=self.config.respect_gitignore,
        )

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start watching on a background thread."""
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="codesift-watcher", daemon=True)
        self._thread.start()
        log.info(
            "watcher.started",
            root=str(self.root),
            mode="polling" if self.force_polling else "native",
        )

    def stop(self, timeout: float = WATCH_STOP_TIMEOUT_SEC) -> None:
        """Signal the watch loop to exit and join its thread."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                log.warning("watcher.stop_timeout", timeout=timeout)
            self._thread = None
        log.info("watcher.stopped")

    # ------------------------------------------------------------------

    def _watch_filter(self, change: Change, path: str) -> bool:  # noqa: ARG002
        try:
            rel = Path(path).relative_to(self.root)
        except ValueError:
            return False
        return not any(is_hardcoded_dir(part) for part in rel.parts)

    def _run(self) -> None:
        try:
            for changes in watch(
                self.root,
                watch_filter=self._watch_filter,
                stop_event=self._stop_event,
                force_polling=self.force_polling,
                ignore_permission_denied=True,
                raise_interrupt=False,
            ):
                events = self.translate(changes)
                if events:
                    log.info(
                        "watcher.changes_detected",
                        count=len(events),
                        summary=summarize_changes([e.path for e in events]),
                    )
                    self.on_events(events)
        except OSError as e:
            log.error("watcher.failed", root=str(self.root), error=str(e))

    def translate(self, changes: set[tuple[Change, str]]) -> list[WatchEvent]:
        """Turn one raw watchfiles batch into sorted, filtered WatchEvents."""
        events: dict[str, WatchEvent] = {}
        for change, raw_path in sorted(changes, key=lambda c: (c[1], c[0].value)):
            path = Path(raw_path)
            try:
                rel = path.relative_to(self.root)
            except ValueError:
                continue
            if not rel.parts or any(is_hardcoded_dir(part) for part in rel.parts):
                continue
            rel_path = rel.as_posix()

            if rel.name in IgnoreChecker.IGNORE_FILE_NAMES:
                self._ignore = self._new_checker()
                log.info("watcher.ignore_file_changed", path=rel_path)
            elif any(self._ignore.should_prune_dir(part) for part in rel.parts[:-1]):
                continue
            elif self._ignore.is_ignored(rel_path, is_dir=path.is_dir()):
                log.debug("watcher.path_ignored", path=rel_path)
                continue

            events[rel_path] = WatchEvent(rel_path, _CHANGE_KINDS[change])
        return [events[p] for p in sorted(events)]
