"""Workspace identity and the on-disk index store.

Every workspace root maps to exactly one index directory:

    <data_dir>/indexes/<identity_hash>/
        metadata.json   IndexMetadata (mode, schema version, timestamps)
        text/           Tantivy index (meta.json + segments)
        vectors/        HNSW graph + chunk table (semantic mode only)
        .lock           advisory writer lock

``identity_hash`` is the first 16 hex characters of SHA-256 over the
canonical (symlink-resolved) root path, so it never changes while the root
path is stable, wherever the store itself lives.

Read paths (status, search) never create anything; only a build calls
``ensure_index_dir``.
"""

from __future__ import annotations

import errno
import hashlib
import os
import shutil
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

import structlog
from pydantic import ValidationError

from codesift.config.constants import (
    IDENTITY_HASH_LENGTH,
    LOCK_FILE,
    METADATA_FILE,
    PARENT_DISCOVERY_MAX_DEPTH,
    SCHEMA_VERSION,
    TEXT_DIR,
    TEXT_META_FILE,
    VECTOR_DIR,
)
from codesift.config.models import StorageConfig
from codesift.core.errors import (
    CorruptIndexError,
    IoFailureError,
    NotFoundError,
    SchemaMismatchError,
)
from codesift.index.models import IndexMetadata, IndexMode
from codesift.workspace.lock import is_locked

log = structlog.get_logger()


def canonical_root(root: Path | str) -> Path:
    return Path(root).expanduser().resolve()


def identity_hash(root: Path | str) -> str:
    """Stable digest of the canonical root path."""
    digest = hashlib.sha256(str(canonical_root(root)).encode("utf-8")).hexdigest()
    return digest[:IDENTITY_HASH_LENGTH]


def dir_size(path: Path) -> int:
    total = 0
    for dirpath, _dirnames, filenames in os.walk(path):
        for name in filenames:
            try:
                total += os.lstat(os.path.join(dirpath, name)).st_size
            except OSError:
                continue
    return total


@dataclass(frozen=True, slots=True)
class Workspace:
    """A root directory and where its index lives. Passed into every core call."""

    root_path: Path
    identity_hash: str
    index_dir: Path

    @property
    def metadata_path(self) -> Path:
        return self.index_dir / METADATA_FILE

    @property
    def lock_path(self) -> Path:
        return self.index_dir / LOCK_FILE

    @property
    def text_dir(self) -> Path:
        return self.index_dir / TEXT_DIR

    @property
    def vector_dir(self) -> Path:
        return self.index_dir / VECTOR_DIR


@dataclass(frozen=True, slots=True)
class IndexEntry:
    """One row of ``WorkspaceStore.list()``."""

    workspace: Workspace
    size_bytes: int
    mode: IndexMode | None
    metadata: IndexMetadata | None
    root_exists: bool


@dataclass(frozen=True, slots=True)
class CleanResult:
    removed: tuple[Workspace, ...]
    freed_bytes: int


class WorkspaceStore:
    """Maps roots to index directories and manages their metadata."""

    def __init__(self, config: StorageConfig | None = None) -> None:
        self._config = config or StorageConfig()

    @property
    def indexes_dir(self) -> Path:
        return self._config.indexes_dir

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def resolve(self, root: Path | str, *, create: bool = False) -> Workspace:
        """Canonicalize ``root`` and compute its identity.

        The index directory is created only when ``create`` is True.
        """
        canonical = canonical_root(root)
        if not canonical.is_dir():
            raise IoFailureError.from_os_error(
                str(canonical), OSError(errno.ENOTDIR, "not a directory", str(canonical))
            )
        digest = identity_hash(canonical)
        workspace = Workspace(
            root_path=canonical,
            identity_hash=digest,
            index_dir=self.indexes_dir / digest,
        )
        if create:
            self.ensure_index_dir(workspace)
        return workspace

    def ensure_index_dir(self, workspace: Workspace) -> Path:
        try:
            workspace.index_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IoFailureError.from_os_error(str(workspace.index_dir), e) from e
        return workspace.index_dir

    def find_indexed_parent(
        self, start: Path | str, max_depth: int = PARENT_DISCOVERY_MAX_DEPTH
    ) -> Workspace | None:
        """Nearest ancestor of ``start`` (inclusive) that has an index."""
        current = canonical_root(start)
        for _ in range(max_depth + 1):
            digest = identity_hash(current)
            candidate = Workspace(current, digest, self.indexes_dir / digest)
            if candidate.metadata_path.exists():
                return candidate
            if current.parent == current:
                break
            current = current.parent
        return None

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def read_metadata(self, workspace: Workspace) -> IndexMetadata | None:
        path = workspace.metadata_path
        try:
            raw = path.read_text()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise IoFailureError.from_os_error(str(path), e) from e
        try:
            return IndexMetadata.model_validate_json(raw)
        except ValidationError as e:
            raise CorruptIndexError.unreadable(str(path), str(e.errors()[0]["msg"])) from e

    def check_schema(self, workspace: Workspace, metadata: IndexMetadata) -> None:
        if metadata.schema_version != SCHEMA_VERSION:
            raise SchemaMismatchError.versions(
                str(workspace.root_path), metadata.schema_version, SCHEMA_VERSION
            )

    def write_metadata(self, workspace: Workspace, metadata: IndexMetadata) -> None:
        """Atomically replace ``metadata.json``."""
        path = workspace.metadata_path
        tmp = path.with_name(path.name + ".tmp")
        try:
            tmp.write_text(metadata.model_dump_json(indent=2))
            os.replace(tmp, path)
        except OSError as e:
            raise IoFailureError.from_os_error(str(path), e) from e

    def new_metadata(self, workspace: Workspace, mode: IndexMode) -> IndexMetadata:
        return IndexMetadata(
            root_path=str(workspace.root_path),
            identity_hash=workspace.identity_hash,
            mode=mode,
            schema_version=SCHEMA_VERSION,
        )

    def get_mode(self, workspace: Workspace) -> IndexMode | None:
        metadata = self.read_metadata(workspace)
        return metadata.mode if metadata else None

    def set_mode(self, workspace: Workspace, mode: IndexMode) -> IndexMetadata:
        """Persist ``mode``; it sticks until explicitly set again."""
        self.ensure_index_dir(workspace)
        metadata = self.read_metadata(workspace) or self.new_metadata(workspace, mode)
        metadata = metadata.model_copy(update={"mode": mode, "updated_at": datetime.now(UTC)})
        self.write_metadata(workspace, metadata)
        log.debug("workspace.mode_set", root=str(workspace.root_path), mode=mode.value)
        return metadata

    def is_indexed(self, workspace: Workspace) -> bool:
        return (
            workspace.metadata_path.exists()
            and (workspace.text_dir / TEXT_META_FILE).exists()
        )

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    def _workspace_for_dir(self, index_dir: Path) -> tuple[Workspace, IndexMetadata | None]:
        placeholder = Workspace(Path(), index_dir.name, index_dir)
        try:
            metadata = self.read_metadata(placeholder)
        except (CorruptIndexError, IoFailureError):
            metadata = None
        root = Path(metadata.root_path) if metadata else Path()
        return Workspace(root, index_dir.name, index_dir), metadata

    def list(self) -> list[IndexEntry]:
        """All index directories in the store, sorted by root path."""
        if not self.indexes_dir.is_dir():
            return []
        entries: list[IndexEntry] = []
        for index_dir in sorted(p for p in self.indexes_dir.iterdir() if p.is_dir()):
            workspace, metadata = self._workspace_for_dir(index_dir)
            entries.append(
                IndexEntry(
                    workspace=workspace,
                    size_bytes=dir_size(index_dir),
                    mode=metadata.mode if metadata else None,
                    metadata=metadata,
                    root_exists=bool(metadata) and workspace.root_path.is_dir(),
                )
            )
        entries.sort(key=lambda e: (str(e.workspace.root_path), e.workspace.identity_hash))
        return entries

    def remove(self, key: str | Path) -> Workspace:
        """Delete the index for an identity hash or root path.

        Raises:
            NotFoundError: No index matches; nothing is touched.
        """
        key_str = str(key)
        target: Workspace | None = None
        for entry in self.list():
            ws = entry.workspace
            if key_str == ws.identity_hash or (entry.metadata and key_str == entry.metadata.root_path):
                target = ws
                break
        if target is None:
            digest = identity_hash(key_str)
            candidate = self.indexes_dir / digest
            if candidate.is_dir():
                target = self._workspace_for_dir(candidate)[0]
        if target is None:
            raise NotFoundError.index(key_str)
        try:
            shutil.rmtree(target.index_dir)
        except OSError as e:
            raise IoFailureError.from_os_error(str(target.index_dir), e) from e
        log.info("workspace.removed", identity=target.identity_hash, root=str(target.root_path))
        return target

    def clean(self) -> CleanResult:
        """Remove indexes whose root directory no longer exists."""
        removed: list[Workspace] = []
        freed = 0
        for entry in self.list():
            if entry.metadata is None or entry.root_exists:
                continue
            if is_locked(entry.workspace.lock_path):
                log.warning("workspace.clean_skipped_locked", identity=entry.workspace.identity_hash)
                continue
            shutil.rmtree(entry.workspace.index_dir, ignore_errors=True)
            removed.append(entry.workspace)
            freed += entry.size_bytes
        log.info("workspace.cleaned", removed=len(removed), freed_bytes=freed)
        return CleanResult(removed=tuple(removed), freed_bytes=freed)

    def reset(self, workspace: Workspace) -> None:
        """Delete index data (not the lock) ahead of a full rebuild."""
        for child in (workspace.text_dir, workspace.vector_dir):
            if child.exists():
                shutil.rmtree(child)
        workspace.metadata_path.unlink(missing_ok=True)
