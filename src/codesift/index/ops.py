"""High-level orchestration of the indexing engine.

This module implements the IndexCoordinator, the entry point for every
mutation of a workspace index. It enforces the serialization rules:

- writer lock: one writing process per index directory (``.lock``, flock)
- apply lock: one build/update commit at a time inside the process

The coordinator owns both index lifecycles and runs the pipeline:
Walk -> Read + hash -> Tokenize (worker pool) -> Text commit -> Vector commit
"""

from __future__ import annotations

import hashlib
import os
import threading
import time
from collections.abc import Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

import structlog

from codesift.config.constants import SCHEMA_VERSION
from codesift.config.models import CodeSiftConfig
from codesift.core.errors import CodeSiftError, CorruptIndexError, NotIndexedError
from codesift.core.languages import detect_language
from codesift.core.logging import set_operation_id
from codesift.index.embedding import EmbeddingFunction, FastEmbedder
from codesift.index.ignore import IgnoreChecker
from codesift.index.models import (
    BuildSummary,
    ChangeKind,
    FileFailure,
    IndexMetadata,
    IndexMode,
    UpdateSummary,
    VectorStatus,
    WatchEvent,
)
from codesift.index.text import PreparedDocument, TextIndex, TextSnapshot, prepare_document
from codesift.index.vector import ChunkSource, VectorIndex
from codesift.index.walker import FileCandidate, Walker
from codesift.workspace.lock import writer_lock
from codesift.workspace.store import Workspace, WorkspaceStore

log = structlog.get_logger()


def make_embedder(config: CodeSiftConfig) -> FastEmbedder:
    cfg = config.embedding
    cache_dir = cfg.cache_dir or config.storage.data_dir / "models"
    return FastEmbedder(cfg.model_name, cache_dir=cache_dir, batch_size=cfg.batch_size)


@dataclass(frozen=True, slots=True)
class _Prepared:
    documents: list[PreparedDocument]
    failures: list[FileFailure]


class IndexCoordinator:
    """
    Build, open and incrementally update one workspace's indexes.

    SERIALIZATION:
    - ``writer()`` holds the cross-process lock; ``build`` takes it itself
      unless the caller (watch mode) already holds it for the session.
    - ``_apply_lock`` serializes commits from the build path and the
      updater's dispatcher thread.

    Readers use ``text.snapshot`` / ``vector`` directly and never lock.
    """

    def __init__(
        self,
        workspace: Workspace,
        store: WorkspaceStore,
        config: CodeSiftConfig | None = None,
        embedder: EmbeddingFunction | None = None,
    ) -> None:
        self.workspace = workspace
        self.store = store
        self.config = config or CodeSiftConfig()
        self.embedder = embedder if embedder is not None else make_embedder(self.config)
        self.text = TextIndex(workspace.text_dir)
        self.vector = VectorIndex(workspace.vector_dir, self.embedder, self.config.embedding)
        self._apply_lock = threading.Lock()
        self._lock_held = False
        self._loaded = False
        # (st_dev, st_ino) -> relative path that indexed it; symlink aliases
        # of an indexed file are not indexed a second time.
        self._inodes: dict[tuple[int, int], str] = {}
        self._inodes_ready = False

    # ------------------------------------------------------------------
    # Mode and metadata
    # ------------------------------------------------------------------

    @property
    def mode(self) -> IndexMode:
        """Mode persisted in metadata, re-read on every call."""
        return self.store.get_mode(self.workspace) or IndexMode.TEXT

    def metadata(self) -> IndexMetadata | None:
        return self.store.read_metadata(self.workspace)

    def _record(self, **fields: object) -> IndexMetadata:
        metadata = self.metadata() or self.store.new_metadata(self.workspace, self.mode)
        snapshot = self.text.snapshot
        metadata = metadata.model_copy(
            update={
                "doc_count": snapshot.doc_count,
                "chunk_count": self.vector.chunk_count,
                "updated_at": datetime.now(UTC),
                **fields,
            }
        )
        self.store.write_metadata(self.workspace, metadata)
        return metadata

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    @contextmanager
    def writer(self, timeout: float = 0.0) -> Iterator[IndexCoordinator]:
        """Hold the workspace writer lock for the duration of the block."""
        if self._lock_held:
            yield self
            return
        self.store.ensure_index_dir(self.workspace)
        with writer_lock(self.workspace.lock_path, timeout=timeout):
            self._lock_held = True
            try:
                yield self
            finally:
                self._lock_held = False

    # ------------------------------------------------------------------
    # Open
    # ------------------------------------------------------------------

    def open(self, requested: IndexMode | None = None) -> IndexMetadata:
        """Load persisted indexes for querying.

        Raises:
            NotIndexedError: No committed text index exists.
            SchemaMismatchError: The index was written by another layout version.
            CorruptIndexError: The text index or vector graph cannot be read.
        """
        metadata = self.metadata()
        mode = requested or (metadata.mode if metadata else IndexMode.TEXT)
        if metadata is None:
            raise NotIndexedError.for_workspace(str(self.workspace.root_path), mode.value)
        self.store.check_schema(self.workspace, metadata)
        if not self.text.load():
            raise NotIndexedError.for_workspace(str(self.workspace.root_path), mode.value)
        self._open_vectors(metadata.mode)
        self._loaded = True
        log.debug(
            "index.opened",
            root=str(self.workspace.root_path),
            mode=metadata.mode.value,
            docs=self.text.snapshot.doc_count,
            vector_status=self.vector.status.value,
        )
        return metadata

    def _open_vectors(self, mode: IndexMode) -> None:
        if mode is not IndexMode.SEMANTIC:
            self.vector.status = VectorStatus.DISABLED
            return
        loaded = self.vector.load()
        self.vector.status = VectorStatus.ACTIVE if loaded else VectorStatus.UNSUPPORTED

    def ensure_open(self) -> None:
        if not self._loaded:
            self.open()

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def build(self, mode: IndexMode | None = None, *, rebuild: bool = False) -> BuildSummary:
        """Index the whole workspace.

        An explicit ``mode`` is persisted and sticks; otherwise the stored
        mode is used (Text for a fresh workspace). An existing, compatible
        index in the same mode is refreshed in place unless ``rebuild``.
        """
        with self.writer(), self._apply_lock:
            set_operation_id()
            try:
                stored = self.metadata()
            except CorruptIndexError:
                log.warning("index.metadata_unreadable", root=str(self.workspace.root_path))
                stored = None
            effective = mode or (stored.mode if stored else IndexMode.TEXT)
            full = (
                rebuild
                or stored is None
                or stored.schema_version != SCHEMA_VERSION
                or stored.mode != effective
                or not self._try_load_for_refresh(effective)
            )
            if full:
                self.store.reset(self.workspace)
                self.store.set_mode(self.workspace, effective)
                return self._full_build(effective)
            return self._refresh(effective)

    def _try_load_for_refresh(self, mode: IndexMode) -> bool:
        try:
            if not self.text.load():
                return False
            if mode is IndexMode.SEMANTIC and not self.vector.load():
                return False
        except CodeSiftError as e:
            log.warning("index.refresh_load_failed", error=str(e))
            return False
        self._open_vectors(mode)
        return True

    def _full_build(self, mode: IndexMode) -> BuildSummary:
        start = time.monotonic()
        walker = Walker(self.workspace.root_path, self.config.indexer)
        candidates = list(walker.walk())
        prepared = self._prepare(candidates)
        snapshot = self.text.build(prepared.documents)
        self._remember_inodes(candidates, reset=True)

        summary = BuildSummary(mode=mode, files_indexed=snapshot.doc_count)
        summary.failures.extend(prepared.failures)
        self._build_vectors(mode, snapshot, prepared.documents, summary)

        summary.skipped_by_reason = dict(walker.stats.skipped)
        summary.files_skipped = walker.stats.files_skipped + len(prepared.failures)
        summary.duration_ms = round((time.monotonic() - start) * 1000)
        self._loaded = True
        self._record_build(summary)
        log.info(
            "index.build_complete",
            root=str(self.workspace.root_path),
            mode=mode.value,
            files=summary.files_indexed,
            skipped=summary.files_skipped,
            chunks=summary.chunks_embedded,
            vector_status=summary.vector_status.value,
            elapsed_ms=summary.duration_ms,
        )
        return summary

    def _build_vectors(
        self,
        mode: IndexMode,
        snapshot: TextSnapshot,
        documents: list[PreparedDocument],
        summary: BuildSummary,
    ) -> None:
        if mode is not IndexMode.SEMANTIC:
            self.vector.clear()
            self.vector.status = VectorStatus.DISABLED
            summary.vector_status = VectorStatus.DISABLED
            return

        def on_failure(path: str, message: str) -> None:
            summary.failures.append(FileFailure(path=path, error="EmbeddingFailed", message=message))

        graph = self.vector.build_or_skip(self._chunk_sources(snapshot, documents), on_failure)
        summary.vector_status = self.vector.status
        summary.chunks_embedded = self.vector.chunk_count if graph is not None else 0

    def _refresh(self, mode: IndexMode) -> BuildSummary:
        """Bring an existing index up to date with a walk and a diff."""
        start = time.monotonic()
        walker = Walker(self.workspace.root_path, self.config.indexer)
        snapshot = self.text.snapshot
        walked = list(walker.walk())
        seen = {candidate.relative_path for candidate in walked}
        changed: list[FileCandidate] = []
        for candidate in walked:
            existing = snapshot.document_for_path(candidate.relative_path)
            if existing is not None and existing.size == candidate.size and existing.mtime == candidate.mtime:
                continue
            changed.append(candidate)
        removals = [path for path in snapshot.paths if path not in seen]

        prepared = self._prepare(changed)
        upserts, touched = _split_unchanged(snapshot, prepared.documents)
        summary = BuildSummary(mode=mode, vector_status=self.vector.status)
        summary.failures.extend(prepared.failures)
        self._commit(upserts, removals, summary.failures, touched)
        self._remember_inodes(walked, reset=True)

        summary.files_indexed = self.text.snapshot.doc_count
        summary.chunks_embedded = self.vector.chunk_count
        summary.skipped_by_reason = dict(walker.stats.skipped)
        summary.files_skipped = walker.stats.files_skipped + len(prepared.failures)
        summary.duration_ms = round((time.monotonic() - start) * 1000)
        self._loaded = True
        self._record_build(summary)
        log.info(
            "index.refresh_complete",
            root=str(self.workspace.root_path),
            changed=len(upserts),
            removed=len(removals),
            elapsed_ms=summary.duration_ms,
        )
        return summary

    def _record_build(self, summary: BuildSummary) -> None:
        self._record(
            files_skipped=summary.files_skipped,
            embedding_model=self.embedder.name if summary.vector_status is VectorStatus.ACTIVE else None,
            last_build_time=datetime.now(UTC),
            last_build_ms=summary.duration_ms,
        )

    # ------------------------------------------------------------------
    # Incremental updates
    # ------------------------------------------------------------------

    def apply_events(self, events: Iterable[WatchEvent]) -> UpdateSummary:
        """Apply one deduplicated batch of filesystem changes.

        Renames are a removal of the old path plus a creation of the new one.
        Files that vanish or become unindexable are removed; unchanged
        content (same hash) is left alone. Per-file failures are recorded in
        the summary and never abort the batch.
        """
        start = time.monotonic()
        with self._apply_lock:
            set_operation_id()
            self.ensure_open()
            mode = self.mode
            if mode is IndexMode.SEMANTIC and self.vector.status is VectorStatus.DISABLED:
                self._open_vectors(mode)

            walker = Walker(self.workspace.root_path, self.config.indexer)
            snapshot = self.text.snapshot
            summary = UpdateSummary()
            removals: set[str] = set()
            candidates: dict[str, FileCandidate] = {}

            for event in events:
                if event.kind is ChangeKind.RENAMED and event.old_path is not None:
                    removals.update(self._paths_under(snapshot, event.old_path))
                if event.kind is ChangeKind.REMOVED and not (self.workspace.root_path / event.path).exists():
                    removals.update(self._paths_under(snapshot, event.path))
                    continue
                if Path(event.path).name in IgnoreChecker.IGNORE_FILE_NAMES:
                    log.info("index.ignore_rules_changed", path=event.path)
                    self._queue_rescan(walker, snapshot, candidates, removals)
                    continue
                for abs_path in self._expand(event.path):
                    candidate, reason = walker.candidate_for(abs_path)
                    rel = abs_path.relative_to(self.workspace.root_path).as_posix()
                    if candidate is not None:
                        candidates[rel] = candidate
                        removals.discard(rel)
                    elif rel in snapshot.paths:
                        removals.add(rel)
                    else:
                        summary.skipped += 1
                        log.debug("update.skipped", path=rel, reason=reason.value if reason else None)

            removals.difference_update(candidates)
            for rel in self._aliases(snapshot, candidates, removals):
                del candidates[rel]
                summary.skipped += 1
            prepared = self._prepare(list(candidates.values()))
            summary.failures.extend(prepared.failures)

            upserts, touched = _split_unchanged(snapshot, prepared.documents)
            for doc in upserts:
                if doc.relative_path in snapshot.paths:
                    summary.updated += 1
                else:
                    summary.added += 1
            summary.unchanged = len(prepared.documents) - len(upserts)
            summary.removed = sum(1 for path in removals if path in snapshot.paths)

            if upserts or removals or touched:
                self._commit(upserts, sorted(removals), summary.failures, touched)
                self._record()
            for path in removals:
                self._forget_inode(path)
            self._remember_inodes(candidates.values())
        summary.duration_ms = round((time.monotonic() - start) * 1000)
        if summary.changed:
            log.info(
                "index.update_complete",
                added=summary.added,
                updated=summary.updated,
                removed=summary.removed,
                failures=len(summary.failures),
                elapsed_ms=summary.duration_ms,
            )
        return summary

    def _queue_rescan(
        self,
        walker: Walker,
        snapshot: TextSnapshot,
        candidates: dict[str, FileCandidate],
        removals: set[str],
    ) -> None:
        seen: set[str] = set()
        for candidate in walker.walk():
            seen.add(candidate.relative_path)
            if candidate.relative_path not in snapshot.paths:
                candidates[candidate.relative_path] = candidate
        removals.update(path for path in snapshot.paths if path not in seen)

    def _expand(self, rel_path: str) -> list[Path]:
        """A changed path, or every file under it when it is a directory."""
        abs_path = self.workspace.root_path / rel_path
        if abs_path.is_dir() and not abs_path.is_symlink():
            return sorted(p for p in abs_path.rglob("*") if p.is_file())
        return [abs_path]

    @staticmethod
    def _paths_under(snapshot: TextSnapshot, rel_path: str) -> list[str]:
        if rel_path in snapshot.paths:
            return [rel_path]
        prefix = rel_path.rstrip("/") + "/"
        return [path for path in snapshot.paths if path.startswith(prefix)]

    # ------------------------------------------------------------------
    # Symlink aliases
    # ------------------------------------------------------------------

    def _aliases(
        self,
        snapshot: TextSnapshot,
        candidates: dict[str, FileCandidate],
        removals: set[str],
    ) -> list[str]:
        """Candidates whose file is already indexed under another path.

        A file keeps the path it was first indexed under for as long as that
        path stays indexed; among new paths the lowest one wins.
        """
        owners = {
            key: path
            for key, path in self._inode_map(snapshot).items()
            if path in snapshot.paths and path not in removals
        }
        aliases: list[str] = []
        for rel in sorted(candidates):
            key = candidates[rel].inode
            if key is None:
                continue
            owner = owners.setdefault(key, rel)
            if owner != rel:
                log.debug("update.alias_skipped", path=rel, indexed_as=owner)
                aliases.append(rel)
        return aliases

    def _inode_map(self, snapshot: TextSnapshot) -> dict[tuple[int, int], str]:
        """Inode owners, stat'ing indexed paths the first time after ``open``."""
        if not self._inodes_ready:
            for path in sorted(snapshot.paths):
                try:
                    st = os.stat(self.workspace.root_path / path)
                except OSError:
                    continue
                self._inodes.setdefault((st.st_dev, st.st_ino), path)
            self._inodes_ready = True
        return self._inodes

    def _remember_inodes(self, candidates: Iterable[FileCandidate], *, reset: bool = False) -> None:
        if reset:
            self._inodes.clear()
            self._inodes_ready = True
        paths = self.text.snapshot.paths
        for candidate in candidates:
            if candidate.inode is None or candidate.relative_path not in paths:
                continue
            owner = self._inodes.get(candidate.inode)
            if owner is None or owner not in paths:
                if not reset:
                    self._forget_inode(candidate.relative_path)
                self._inodes[candidate.inode] = candidate.relative_path

    def _forget_inode(self, relative_path: str) -> None:
        for key in [k for k, path in self._inodes.items() if path == relative_path]:
            del self._inodes[key]

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def _commit(
        self,
        upserts: list[PreparedDocument],
        removals: list[str],
        failures: list[FileFailure],
        touched: list[PreparedDocument] | None = None,
    ) -> None:
        """Commit text changes, then re-embed the documents whose content changed.

        ``touched`` documents kept their content but not their mtime or size;
        only their stored metadata is rewritten.
        """
        before = self.text.snapshot
        removed_ids = [before.paths[p] for p in removals if p in before.paths]
        after = self.text.update([*upserts, *(touched or ())], removals)
        if self.vector.status is not VectorStatus.ACTIVE:
            return
        sources = [
            ChunkSource(
                doc_id=after.paths[doc.relative_path],
                relative_path=doc.relative_path,
                lines=doc.lines,
            )
            for doc in upserts
        ]

        def on_failure(path: str, message: str) -> None:
            failures.append(FileFailure(path=path, error="EmbeddingFailed", message=message))

        self.vector.update(sources, removed_ids, on_failure)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _chunk_sources(snapshot: TextSnapshot, documents: list[PreparedDocument]) -> list[ChunkSource]:
        sources = [
            ChunkSource(doc_id=snapshot.paths[doc.relative_path], relative_path=doc.relative_path, lines=doc.lines)
            for doc in documents
            if doc.relative_path in snapshot.paths
        ]
        return sorted(sources, key=lambda s: s.doc_id)

    def _prepare(self, candidates: list[FileCandidate]) -> _Prepared:
        """Read, hash and tokenize files on the worker pool."""
        documents: list[PreparedDocument] = []
        failures: list[FileFailure] = []
        if not candidates:
            return _Prepared(documents, failures)
        workers = min(self.config.indexer.max_workers, len(candidates))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="codesift-index") as pool:
            for result in pool.map(_read_candidate, candidates):
                if isinstance(result, FileFailure):
                    log.warning("index.file_failed", path=result.path, error=result.message)
                    failures.append(result)
                else:
                    documents.append(result)
        return _Prepared(documents, failures)


def _split_unchanged(
    snapshot: TextSnapshot, documents: list[PreparedDocument]
) -> tuple[list[PreparedDocument], list[PreparedDocument]]:
    """``(upserts, touched)``: new or changed content, and same content with new stat data."""
    upserts: list[PreparedDocument] = []
    touched: list[PreparedDocument] = []
    for doc in documents:
        existing = snapshot.document_for_path(doc.relative_path)
        if existing is None or existing.content_hash != doc.content_hash:
            upserts.append(doc)
        elif existing.mtime != doc.mtime or existing.size != doc.size:
            touched.append(doc)
    return upserts, touched


def _read_candidate(candidate: FileCandidate) -> PreparedDocument | FileFailure:
    try:
        raw = candidate.path.read_bytes()
    except OSError as e:
        return FileFailure(path=candidate.relative_path, error="IoFailure", message=str(e))
    content = raw.decode("utf-8", errors="replace")
    return prepare_document(
        candidate.relative_path,
        content,
        content_hash=hashlib.sha256(raw).hexdigest(),
        mtime=candidate.mtime,
        size=len(raw),
        language_hint=detect_language(candidate.relative_path),
    )
