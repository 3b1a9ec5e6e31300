"""Query engine: retrieve, fuse, filter, truncate.

    Parse -> Retrieve(Text) || Retrieve(Vector) -> Fuse -> Filter -> Truncate

Both retrieval stages read the snapshot pinned at the start of the query,
so a concurrent commit never mixes two index states into one result.
Vector retrieval runs on a worker thread while text retrieval runs on the
caller's thread; when embeddings are unavailable the query degrades to
text-only with a warning.
"""

from __future__ import annotations

import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from codesift.config.models import CodeSiftConfig
from codesift.core.cancel import CancellationToken
from codesift.core.errors import InvalidQueryError, NotIndexedError, UnsupportedError
from codesift.index.embedding import EmbeddingFunction
from codesift.index.models import IndexMode, VectorStatus
from codesift.index.ops import IndexCoordinator
from codesift.index.text import StoredDocument, TextSnapshot
from codesift.search.fusion import Candidate, FusedHit, apply_filters, fuse
from codesift.search.models import MatchType, QueryMode, SearchHit, SearchRequest, SearchResult
from codesift.workspace.store import Workspace, WorkspaceStore

log = structlog.get_logger()


def open_workspace(
    root: Path | str,
    store: WorkspaceStore,
    *,
    discover_parent: bool = True,
) -> Workspace:
    """Resolve ``root`` for reading, falling back to the nearest indexed ancestor.

    Never creates anything on disk.

    Raises:
        NotIndexedError: Neither ``root`` nor an ancestor has an index.
    """
    workspace = store.resolve(root)
    if store.is_indexed(workspace):
        return workspace
    if discover_parent:
        parent = store.find_indexed_parent(workspace.root_path)
        if parent is not None and store.is_indexed(parent):
            log.debug("search.parent_workspace", requested=str(workspace.root_path), found=str(parent.root_path))
            return parent
    raise NotIndexedError.for_workspace(str(workspace.root_path), IndexMode.TEXT.value)


class QueryEngine:
    """Executes queries against one opened workspace."""

    def __init__(self, coordinator: IndexCoordinator) -> None:
        self.coordinator = coordinator
        self.config = coordinator.config.search

    @classmethod
    def open(
        cls,
        root: Path | str,
        *,
        store: WorkspaceStore,
        config: CodeSiftConfig | None = None,
        embedder: EmbeddingFunction | None = None,
        requested_mode: IndexMode | None = None,
    ) -> QueryEngine:
        """Open the index for ``root`` read-only.

        Raises:
            NotIndexedError: No index, or a text index when semantic was requested.
            SchemaMismatchError / CorruptIndexError: The index must be rebuilt.
        """
        workspace = open_workspace(root, store)
        coordinator = IndexCoordinator(workspace, store, config, embedder)
        metadata = coordinator.open()
        if requested_mode is IndexMode.SEMANTIC and metadata.mode is not IndexMode.SEMANTIC:
            raise NotIndexedError.for_workspace(str(workspace.root_path), IndexMode.SEMANTIC.value)
        return cls(coordinator)

    @property
    def workspace(self) -> Workspace:
        return self.coordinator.workspace

    # ------------------------------------------------------------------

    def search(
        self,
        query: str | SearchRequest,
        *,
        cancel: CancellationToken | None = None,
        **options: Any,
    ) -> SearchResult:
        """Run one query. ``options`` are ``SearchRequest`` fields.

        Raises:
            InvalidQueryError: Blank query, bad regex, bad options, or cancelled.
        """
        start = time.monotonic()
        request = self._request(query, options)
        snapshot = self.coordinator.text.snapshot
        result = SearchResult()

        vector_future: Future[list[Candidate]] | None = None
        executor: ThreadPoolExecutor | None = None
        if self._wants_vectors(request, result):
            executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="codesift-query")
            vector_future = executor.submit(self._retrieve_vector, request, snapshot)
        try:
            text_candidates = self._retrieve_text(request, snapshot, cancel)
            vector_candidates: list[Candidate] = []
            if vector_future is not None:
                try:
                    vector_candidates = vector_future.result()
                except UnsupportedError as e:
                    result.warnings.append(f"{e.message}; showing text results only")
                    log.warning("search.semantic_unavailable", reason=e.message)
        finally:
            if executor is not None:
                executor.shutdown(wait=True)

        fused = fuse(
            text_candidates,
            vector_candidates,
            text_weight=self.config.text_weight,
            vector_weight=self.config.vector_weight,
        )
        filtered = apply_filters(fused, request.filters, lambda d: _path_of(snapshot, d))
        result.total = len(filtered)
        result.hits = [
            self._to_hit(hit, stored, request.context_lines)
            for hit in filtered[: request.limit]
            if (stored := snapshot.get(hit.doc_id)) is not None
        ]
        result.text_hits = sum(1 for h in result.hits if h.match_type is not MatchType.SEMANTIC)
        result.semantic_hits = sum(1 for h in result.hits if h.match_type is not MatchType.TEXT)
        result.query_time_ms = round((time.monotonic() - start) * 1000)
        log.debug(
            "search.complete",
            mode=request.mode.value,
            text_candidates=len(text_candidates),
            vector_candidates=len(vector_candidates),
            total=result.total,
            returned=len(result.hits),
            elapsed_ms=result.query_time_ms,
        )
        return result

    def _request(self, query: str | SearchRequest, options: dict[str, Any]) -> SearchRequest:
        if isinstance(query, SearchRequest):
            return query
        if not query or not query.strip():
            raise InvalidQueryError.empty()
        options.setdefault("limit", self.config.default_limit)
        options.setdefault("context_lines", self.config.context_lines)
        try:
            return SearchRequest(query=query, **options)
        except ValidationError as e:
            first = e.errors()[0]
            name = ".".join(str(p) for p in first["loc"])
            raise InvalidQueryError.bad_option(name, first["msg"]) from e

    def _wants_vectors(self, request: SearchRequest, result: SearchResult) -> bool:
        if request.text_only or request.mode is QueryMode.REGEX:
            return False
        if self.coordinator.mode is not IndexMode.SEMANTIC:
            return False
        if self.coordinator.vector.status is not VectorStatus.ACTIVE:
            result.warnings.append("Semantic index unavailable; showing text results only")
            return False
        return True

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def _retrieve_text(
        self,
        request: SearchRequest,
        snapshot: TextSnapshot,
        cancel: CancellationToken | None,
    ) -> list[Candidate]:
        text = self.coordinator.text
        if request.mode is QueryMode.REGEX:
            matches = text.search_regex(request.query, cancel=cancel, snapshot=snapshot)
        else:
            matches = text.search_literal(request.query, cancel=cancel, snapshot=snapshot)
        return [Candidate(doc_id=m.doc_id, line=m.line, score=m.score) for m in matches]

    def _retrieve_vector(self, request: SearchRequest, snapshot: TextSnapshot) -> list[Candidate]:
        hits = self.coordinator.vector.query_text(request.query, self.config.vector_candidates)
        return [
            Candidate(
                doc_id=chunk.doc_id,
                line=chunk.line_start,
                score=similarity,
                line_start=chunk.line_start,
                line_end=chunk.line_end,
            )
            for chunk, similarity in hits
            if similarity >= self.config.min_similarity and chunk.doc_id in snapshot.catalog.documents
        ]

    # ------------------------------------------------------------------
    # Snippets
    # ------------------------------------------------------------------

    def _to_hit(self, hit: FusedHit, stored: StoredDocument, context: int) -> SearchHit:
        lines = stored.lines
        if hit.match_type is MatchType.SEMANTIC and hit.chunk_range is not None:
            start = hit.chunk_range[0]
            end = min(hit.chunk_range[1], start + 2 * context, max(len(lines), 1))
        else:
            start = max(1, hit.line - context)
            end = min(max(len(lines), 1), hit.line + context)
        snippet = "\n".join(lines[start - 1 : end])
        document = stored.document
        return SearchHit(
            path=document.relative_path,
            line=hit.line,
            line_start=start,
            line_end=end,
            score=hit.score,
            match_type=hit.match_type,
            snippet=snippet,
            doc_id=document.doc_id,
            language=document.language_hint,
        )


def _path_of(snapshot: TextSnapshot, doc_id: int) -> str | None:
    document = snapshot.catalog.documents.get(doc_id)
    return document.relative_path if document is not None else None
