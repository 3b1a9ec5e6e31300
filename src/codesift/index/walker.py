"""Directory walker producing indexable file candidates.

The walker applies, in order:

1. Tiered directory pruning (VCS internals, dependency/build dirs, dot-dirs)
2. .gitignore / .siftignore patterns (nested files apply to their subtree)
3. The size ceiling
4. The binary heuristic (known extension, or a NUL byte in the first 8 KiB)

Symlinks are followed. Every directory and file is identified by
``(st_dev, st_ino)``; an identity seen before in the same walk is pruned
silently, so symlink cycles terminate and each real file is yielded once.
Entries are visited in sorted order, so the path under which a multiply
linked file is reported is deterministic.
"""

from __future__ import annotations

import errno
import os
import stat
from collections import Counter
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from codesift.config.models import IndexerConfig
from codesift.core.excludes import BINARY_SNIFF_BYTES, has_binary_extension, looks_binary
from codesift.index.ignore import IgnoreChecker
from codesift.index.models import SkipReason

log = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class FileCandidate:
    """A file the walker considers indexable."""

    path: Path  # absolute path as reached (may contain symlinks)
    relative_path: str  # POSIX, relative to the workspace root
    size: int
    mtime: float
    inode: tuple[int, int] | None = None  # (st_dev, st_ino) of the target file


@dataclass
class WalkStats:
    """Counters for one walk."""

    dirs_visited: int = 0
    files_yielded: int = 0
    skipped: Counter[str] = field(default_factory=Counter)

    @property
    def files_skipped(self) -> int:
        return sum(n for reason, n in self.skipped.items() if reason != SkipReason.IGNORED.value)

    @property
    def cycles_pruned(self) -> int:
        return self.skipped[SkipReason.SYMLINK_CYCLE.value]

    def skip(self, reason: SkipReason) -> None:
        self.skipped[reason.value] += 1


class Walker:
    """Walks one workspace root. ``walk()`` returns a fresh, finite iterator."""

    def __init__(self, root: Path, config: IndexerConfig | None = None) -> None:
        self.root = root
        self._config = config or IndexerConfig()
        self.ignore = IgnoreChecker(
            root,
            self._config.extra_ignore,
            respect_gitignore=self._config.respect_gitignore,
        )
        self.stats = WalkStats()

    # ------------------------------------------------------------------
    # Full traversal
    # ------------------------------------------------------------------

    def walk(self) -> Iterator[FileCandidate]:
        """Yield every indexable file under the root, depth-first in name order."""
        self.stats = WalkStats()
        return self._walk(self.stats)

    def _walk(self, stats: WalkStats) -> Iterator[FileCandidate]:
        try:
            root_st = os.stat(self.root)
        except OSError as exc:
            log.warning("walk.root_unreadable", root=str(self.root), error=str(exc))
            return
        seen: set[tuple[int, int]] = {(root_st.st_dev, root_st.st_ino)}

        # Stack of (absolute dir, relative dir); reversed push keeps name order.
        stack: list[tuple[Path, str]] = [(self.root, "")]
        while stack:
            directory, rel_dir = stack.pop()
            stats.dirs_visited += 1
            self.ignore.load_dir(rel_dir)
            try:
                with os.scandir(directory) as it:
                    entries = sorted(it, key=lambda e: e.name)
            except OSError as exc:
                log.debug("walk.dir_unreadable", path=str(directory), error=str(exc))
                stats.skip(SkipReason.UNREADABLE)
                continue

            subdirs: list[tuple[Path, str]] = []
            for entry in entries:
                rel_path = f"{rel_dir}/{entry.name}" if rel_dir else entry.name
                try:
                    is_link = entry.is_symlink()
                    if is_link and not self._config.follow_symlinks:
                        continue
                    st = entry.stat(follow_symlinks=True)
                except FileNotFoundError:
                    stats.skip(SkipReason.BROKEN_SYMLINK)
                    continue
                except OSError as exc:
                    if exc.errno == errno.ELOOP:
                        stats.skip(SkipReason.SYMLINK_CYCLE)
                        continue
                    log.debug("walk.stat_failed", path=rel_path, error=str(exc))
                    stats.skip(SkipReason.UNREADABLE)
                    continue

                if stat.S_ISDIR(st.st_mode):
                    if self.ignore.should_prune_dir(entry.name) or self.ignore.is_ignored(
                        rel_path, is_dir=True
                    ):
                        stats.skip(SkipReason.IGNORED)
                        continue
                    key = (st.st_dev, st.st_ino)
                    if key in seen:
                        log.debug("walk.cycle_pruned", path=rel_path)
                        stats.skip(SkipReason.SYMLINK_CYCLE)
                        continue
                    seen.add(key)
                    subdirs.append((Path(entry.path), rel_path))
                    continue

                if not stat.S_ISREG(st.st_mode):
                    stats.skip(SkipReason.NOT_A_FILE)
                    continue
                if self.ignore.is_ignored(rel_path):
                    stats.skip(SkipReason.IGNORED)
                    continue
                key = (st.st_dev, st.st_ino)
                if key in seen:
                    stats.skip(SkipReason.SYMLINK_CYCLE)
                    continue
                seen.add(key)

                reason = self._classify_file(Path(entry.path), rel_path, st.st_size)
                if reason is not None:
                    stats.skip(reason)
                    continue
                stats.files_yielded += 1
                yield FileCandidate(
                    path=Path(entry.path),
                    relative_path=rel_path,
                    size=st.st_size,
                    mtime=st.st_mtime,
                    inode=key,
                )

            stack.extend(reversed(subdirs))

        log.debug(
            "walk.complete",
            root=str(self.root),
            dirs=stats.dirs_visited,
            files=stats.files_yielded,
            skipped=dict(stats.skipped),
        )

    # ------------------------------------------------------------------
    # Single-path classification
    # ------------------------------------------------------------------

    def candidate_for(self, path: Path) -> tuple[FileCandidate | None, SkipReason | None]:
        """Classify one path without walking the tree.

        Returns ``(candidate, None)`` for an indexable file, otherwise
        ``(None, reason)``. A path that no longer exists is reported as
        ``NOT_A_FILE``.
        """
        try:
            rel = path.relative_to(self.root)
        except ValueError:
            return None, SkipReason.OUTSIDE_ROOT
        rel_path = rel.as_posix()
        if not rel.parts:
            return None, SkipReason.NOT_A_FILE

        parts = rel.parts
        for i, part in enumerate(parts[:-1]):
            if self.ignore.should_prune_dir(part):
                return None, SkipReason.IGNORED
            if self.ignore.is_ignored("/".join(parts[: i + 1]), is_dir=True):
                return None, SkipReason.IGNORED
        if self.ignore.is_ignored(rel_path):
            return None, SkipReason.IGNORED

        try:
            if path.is_symlink() and not self._config.follow_symlinks:
                return None, SkipReason.IGNORED
            st = path.stat()
        except FileNotFoundError:
            return None, SkipReason.NOT_A_FILE
        except OSError:
            return None, SkipReason.UNREADABLE
        if not stat.S_ISREG(st.st_mode):
            return None, SkipReason.NOT_A_FILE

        reason = self._classify_file(path, rel_path, st.st_size)
        if reason is not None:
            return None, reason
        candidate = FileCandidate(
            path=path,
            relative_path=rel_path,
            size=st.st_size,
            mtime=st.st_mtime,
            inode=(st.st_dev, st.st_ino),
        )
        return candidate, None

    # ------------------------------------------------------------------

    def _classify_file(self, path: Path, rel_path: str, size: int) -> SkipReason | None:
        if size > self._config.max_file_size_bytes:
            return SkipReason.TOO_LARGE
        if has_binary_extension(rel_path):
            return SkipReason.BINARY
        try:
            with path.open("rb") as f:
                head = f.read(BINARY_SNIFF_BYTES)
        except OSError as exc:
            log.debug("walk.read_failed", path=rel_path, error=str(exc))
            return SkipReason.UNREADABLE
        if looks_binary(head):
            return SkipReason.BINARY
        return None
