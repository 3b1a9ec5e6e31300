"""Ignore pattern matching with tiered architecture.

Single source of truth for path exclusion logic used by:
- Walker (full builds, directory pruning)
- Walker.candidate_for (single-path classification for the updater)
- Watcher (runtime change filtering)

Tiered Architecture:
- HARDCODED_DIRS: Always excluded, cannot be overridden (VCS internals)
- DEFAULT_PRUNABLE_DIRS and dot-directories: excluded by default, user can
  opt-in via a root-level ``!dirname/`` pattern
- .gitignore / .siftignore patterns: user-configurable, nested files apply
  to their own subtree, later patterns override earlier ones
"""

from __future__ import annotations

import fnmatch
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

import structlog

from codesift.config.constants import SIFTIGNORE_FILE
from codesift.core.excludes import (
    DEFAULT_PRUNABLE_DIRS,
    is_hardcoded_dir,
    is_hidden_dir,
)

__all__ = ["IgnoreChecker", "IgnoreRule"]

log = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class IgnoreRule:
    """One parsed line of an ignore file."""

    base: str  # directory of the ignore file, relative to root ("" for root)
    pattern: str
    negated: bool
    dir_only: bool
    anchored: bool

    def matches(self, rel_path: str, *, is_dir: bool) -> bool:
        if self.dir_only and not is_dir:
            return False
        if self.base:
            prefix = self.base + "/"
            if not rel_path.startswith(prefix):
                return False
            rel_path = rel_path[len(prefix) :]
        if self.anchored:
            return fnmatch.fnmatchcase(rel_path, self.pattern)
        return fnmatch.fnmatchcase(PurePosixPath(rel_path).name, self.pattern)


def parse_ignore_line(line: str, base: str = "") -> IgnoreRule | None:
    """Parse a gitignore-syntax line; None for blanks and comments."""
    line = line.rstrip("\n").rstrip()
    if not line or line.startswith("#"):
        return None
    negated = line.startswith("!")
    if negated:
        line = line[1:]
    if line.startswith("\\"):
        line = line[1:]
    dir_only = line.endswith("/")
    line = line.rstrip("/")
    if line.startswith("**/"):
        line = line[3:]
    anchored = "/" in line
    line = line.lstrip("/")
    if not line:
        return None
    return IgnoreRule(
        base=base,
        pattern=line,
        negated=negated,
        dir_only=dir_only,
        anchored=anchored,
    )


class IgnoreChecker:
    """Checks if paths should be ignored based on tiered patterns.

    Ignore files are loaded lazily per directory: the walker calls
    ``load_dir`` when it enters a directory, and single-path checks load
    every ancestor directory on demand.

    .gitignore and .siftignore files themselves are NOT excluded, so that
    edits to them are visible to the watcher.
    """

    IGNORE_FILE_NAMES: tuple[str, ...] = (".gitignore", SIFTIGNORE_FILE)

    def __init__(
        self,
        root: Path,
        extra_patterns: list[str] | None = None,
        *,
        respect_gitignore: bool = True,
    ) -> None:
        self._root = root
        self._names = self.IGNORE_FILE_NAMES if respect_gitignore else (SIFTIGNORE_FILE,)
        self._rules: dict[str, list[IgnoreRule]] = {}
        self._negated_dirs: set[str] = set()
        self._extra: list[IgnoreRule] = [
            rule for rule in (parse_ignore_line(p) for p in extra_patterns or []) if rule
        ]
        self.load_dir("")

    @property
    def negated_dirs(self) -> frozenset[str]:
        """Directory names opted back in by a root-level ``!name/`` pattern."""
        return frozenset(self._negated_dirs)

    @property
    def ignore_file_paths(self) -> list[Path]:
        paths = []
        for rel_dir in sorted(self._rules):
            for name in self._names:
                candidate = self._root / rel_dir / name if rel_dir else self._root / name
                if candidate.is_file():
                    paths.append(candidate)
        return paths

    def load_dir(self, rel_dir: str) -> None:
        """Load ignore files found directly in ``rel_dir`` (once)."""
        if rel_dir in self._rules:
            return
        rules: list[IgnoreRule] = []
        directory = self._root / rel_dir if rel_dir else self._root
        for name in self._names:
            path = directory / name
            try:
                content = path.read_text(encoding="utf-8", errors="replace")
            except FileNotFoundError:
                continue
            except OSError as exc:
                log.debug("ignore.read_failed", path=str(path), error=str(exc))
                continue
            for line in content.splitlines():
                rule = parse_ignore_line(line, rel_dir)
                if rule is None:
                    continue
                rules.append(rule)
                if rule.negated and not rel_dir and "/" not in rule.pattern:
                    if "*" not in rule.pattern:
                        self._negated_dirs.add(rule.pattern)
        self._rules[rel_dir] = rules

    def should_prune_dir(self, dirname: str) -> bool:
        """Check if a directory should be pruned during traversal by name alone.

        - Tier 0 (HARDCODED_DIRS): always pruned
        - Tier 1 (DEFAULT_PRUNABLE_DIRS, dot-directories): pruned unless negated
        """
        if is_hardcoded_dir(dirname):
            return True
        if dirname in DEFAULT_PRUNABLE_DIRS or is_hidden_dir(dirname):
            return dirname not in self._negated_dirs
        return False

    def is_ignored(self, rel_path: str, *, is_dir: bool = False) -> bool:
        """Pattern verdict for one path; the last matching rule wins."""
        parent = PurePosixPath(rel_path).parent
        chain = [p.as_posix() for p in reversed(parent.parents)] + [parent.as_posix()]
        ignored = False
        for rule in self._extra:
            if rule.matches(rel_path, is_dir=is_dir):
                ignored = not rule.negated
        for rel_dir in chain:
            rel_dir = "" if rel_dir == "." else rel_dir
            self.load_dir(rel_dir)
            for rule in self._rules[rel_dir]:
                if rule.matches(rel_path, is_dir=is_dir):
                    ignored = not rule.negated
        return ignored

    def should_ignore(self, path: Path) -> bool:
        """Full verdict for an absolute path, including every ancestor directory."""
        try:
            rel_path = path.relative_to(self._root)
        except ValueError:
            return True
        parts = rel_path.parts
        for i, part in enumerate(parts[:-1]):
            if self.should_prune_dir(part):
                return True
            if self.is_ignored("/".join(parts[: i + 1]), is_dir=True):
                return True
        if not parts:
            return False
        return self.is_ignored(rel_path.as_posix(), is_dir=path.is_dir())
