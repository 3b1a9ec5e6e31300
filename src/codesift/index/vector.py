"""Semantic index: line-window chunks embedded into an HNSW graph.

Peer of the text index. Active only when the workspace mode is semantic and
the embedding capability is available; otherwise ``status`` is
``UNSUPPORTED`` (or ``DISABLED`` in text mode) and callers fall back to
text-only search.

Like the text index, each commit builds a new state (graph copy + chunk
table) and publishes it by reference swap.

The graph takes its dimension from the first embedded batch. A model that
later yields vectors of another size is reported as ``UnsupportedError`` and
semantic search degrades instead of failing the command.

Storage: <index_dir>/vectors/
  - graph.bin     (hnswlib index file, see hnsw.py)
  - chunks.json   (chunk table, model name, dimension)
"""

from __future__ import annotations

import json
import os
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
import structlog

from codesift.config.constants import SCHEMA_VERSION, VECTOR_CHUNKS_FILE, VECTOR_GRAPH_FILE
from codesift.config.models import EmbeddingConfig
from codesift.core.errors import CorruptIndexError, IoFailureError, UnsupportedError
from codesift.index.embedding import EmbeddingFunction
from codesift.index.hnsw import HNSWGraph
from codesift.index.models import Chunk, VectorStatus

log = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class ChunkSource:
    """What the vector index needs to know about one document."""

    doc_id: int
    relative_path: str
    lines: tuple[str, ...]


def chunk_windows(
    lines: tuple[str, ...],
    *,
    chunk_lines: int = 40,
    overlap: int = 10,
) -> list[tuple[int, int]]:
    """1-based inclusive ``(start, end)`` windows covering every line."""
    if not lines:
        return []
    step = chunk_lines - overlap
    windows: list[tuple[int, int]] = []
    start = 1
    while True:
        end = min(start + chunk_lines - 1, len(lines))
        windows.append((start, end))
        if end >= len(lines):
            return windows
        start += step


@dataclass(frozen=True)
class _VectorState:
    graph: HNSWGraph | None = None
    chunks: dict[int, Chunk] = field(default_factory=dict)
    doc_chunks: dict[int, tuple[int, ...]] = field(default_factory=dict)
    next_chunk_id: int = 0


@dataclass(frozen=True, slots=True)
class _Embedded:
    doc_id: int
    line_start: int
    line_end: int
    vector: np.ndarray


class VectorIndex:
    """Chunk table plus HNSW graph, owned exclusively by this object."""

    def __init__(
        self,
        directory: Path,
        embedder: EmbeddingFunction,
        config: EmbeddingConfig | None = None,
    ) -> None:
        self._directory = Path(directory)
        self._embedder = embedder
        self._config = config or EmbeddingConfig()
        self._state = _VectorState()
        self._write_lock = threading.Lock()
        self.status = VectorStatus.DISABLED

    @property
    def chunk_count(self) -> int:
        return len(self._state.chunks)

    @property
    def graph(self) -> HNSWGraph | None:
        return self._state.graph

    def chunk(self, chunk_id: int) -> Chunk | None:
        return self._state.chunks.get(chunk_id)

    def chunks_for(self, doc_id: int) -> list[Chunk]:
        state = self._state
        return [state.chunks[c] for c in state.doc_chunks.get(doc_id, ())]

    # ------------------------------------------------------------------
    # Chunking and embedding
    # ------------------------------------------------------------------

    def _chunk_texts(self, source: ChunkSource) -> list[tuple[int, int, str]]:
        cfg = self._config
        out: list[tuple[int, int, str]] = []
        for start, end in chunk_windows(
            source.lines, chunk_lines=cfg.chunk_lines, overlap=cfg.chunk_overlap
        ):
            body = "\n".join(source.lines[start - 1 : end])
            if sum(1 for ch in body if not ch.isspace()) < cfg.min_chunk_chars:
                continue
            text = f"{source.relative_path}\n{body}"[: cfg.max_chunk_chars]
            out.append((start, end, text))
        return out

    def _embed(
        self,
        sources: list[ChunkSource],
        dim: int | None,
        on_failure: Callable[[str, str], None] | None = None,
    ) -> list[_Embedded]:
        """Embed every chunk of ``sources``.

        ``dim`` is the dimension the vectors must have (None accepts the
        first batch's). A failed batch is logged and skipped; its documents
        are reported via ``on_failure`` and simply have no vectors. Vectors
        of the wrong size raise ``UnsupportedError``.
        """
        pending: list[tuple[ChunkSource, int, int, str]] = []
        for source in sources:
            for start, end, text in self._chunk_texts(source):
                pending.append((source, start, end, text))

        out: list[_Embedded] = []
        batch = self._config.batch_size
        for i in range(0, len(pending), batch):
            part = pending[i : i + batch]
            try:
                vectors = np.asarray(
                    self._embedder.embed([text for _, _, _, text in part]), dtype=np.float32
                )
            except UnsupportedError:
                raise
            except Exception as e:  # runtime failures inside the embedding model
                log.warning("vector.embed_batch_failed", size=len(part), error=str(e))
                if on_failure is not None:
                    for path in sorted({src.relative_path for src, _, _, _ in part}):
                        on_failure(path, str(e))
                continue
            found = vectors.shape[1] if vectors.ndim == 2 else 0
            if dim is None:
                dim = found
            if vectors.ndim != 2 or found != dim or found == 0:
                raise UnsupportedError.dimension_mismatch(self._embedder.name, dim, found)
            for (source, start, end, _), vector in zip(part, vectors, strict=True):
                out.append(_Embedded(source.doc_id, start, end, vector))
        return out

    def _new_graph(self, dim: int, capacity: int = 0) -> HNSWGraph:
        cfg = self._config
        return HNSWGraph(
            dim,
            m=cfg.hnsw_m,
            ef_construction=cfg.hnsw_ef_construction,
            ef_search=cfg.hnsw_ef_search,
            seed=cfg.seed,
            capacity=max(capacity, 1024),
        )

    def _unsupported(self, error: UnsupportedError) -> None:
        self.status = VectorStatus.UNSUPPORTED
        log.warning("vector.unsupported", model=self._embedder.name, reason=error.message)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def build_or_skip(
        self,
        sources: Iterable[ChunkSource],
        on_failure: Callable[[str, str], None] | None = None,
    ) -> HNSWGraph | None:
        """Build a fresh graph, or return None when embeddings are unavailable."""
        if not self._embedder.available:
            self.status = VectorStatus.UNSUPPORTED
            log.warning("vector.unsupported", model=self._embedder.name)
            return None

        start_time = time.monotonic()
        ordered = sorted(sources, key=lambda s: s.doc_id)
        try:
            embedded = self._embed(ordered, None, on_failure)
        except UnsupportedError as e:
            self._unsupported(e)
            return None

        graph: HNSWGraph | None = None
        chunks: dict[int, Chunk] = {}
        doc_chunks: dict[int, list[int]] = {}
        if embedded:
            graph = self._new_graph(len(embedded[0].vector), capacity=len(embedded))
            graph.add_many(range(len(embedded)), np.stack([e.vector for e in embedded]))
        for chunk_id, item in enumerate(embedded):
            chunks[chunk_id] = Chunk(
                chunk_id=chunk_id, doc_id=item.doc_id, line_start=item.line_start, line_end=item.line_end
            )
            doc_chunks.setdefault(item.doc_id, []).append(chunk_id)

        state = _VectorState(
            graph=graph,
            chunks=chunks,
            doc_chunks={d: tuple(ids) for d, ids in doc_chunks.items()},
            next_chunk_id=len(embedded),
        )
        with self._write_lock:
            self._persist(state)
            self._state = state
            self.status = VectorStatus.ACTIVE
        log.info(
            "vector.build_complete",
            chunks=len(chunks),
            documents=len(doc_chunks),
            elapsed_ms=round((time.monotonic() - start_time) * 1000),
        )
        return graph

    def update(
        self,
        upserts: Iterable[ChunkSource] = (),
        removals: Iterable[int] = (),
        on_failure: Callable[[str, str], None] | None = None,
    ) -> int:
        """Tombstone chunks of removed/changed documents and insert new ones.

        Returns the number of chunks inserted. No-op unless ACTIVE.
        """
        if self.status is not VectorStatus.ACTIVE:
            return 0
        upserts = list(upserts)
        base_graph = self._state.graph
        try:
            embedded = self._embed(upserts, base_graph.dim if base_graph else None, on_failure)
        except UnsupportedError as e:
            self._unsupported(e)
            return 0

        with self._write_lock:
            base = self._state
            if base.graph is not None:
                graph: HNSWGraph | None = base.graph.copy()
            elif embedded:
                graph = self._new_graph(len(embedded[0].vector), capacity=len(embedded))
            else:
                graph = None
            chunks = dict(base.chunks)
            doc_chunks = dict(base.doc_chunks)
            for doc_id in [*removals, *(s.doc_id for s in upserts)]:
                for chunk_id in doc_chunks.pop(doc_id, ()):
                    if graph is not None:
                        graph.remove(chunk_id)
                    chunks.pop(chunk_id, None)

            next_id = base.next_chunk_id
            added: dict[int, list[int]] = {}
            for item in embedded:
                chunks[next_id] = Chunk(
                    chunk_id=next_id, doc_id=item.doc_id, line_start=item.line_start, line_end=item.line_end
                )
                added.setdefault(item.doc_id, []).append(next_id)
                next_id += 1
            if embedded and graph is not None:
                graph.add_many(
                    range(base.next_chunk_id, next_id), np.stack([e.vector for e in embedded])
                )
            for doc_id, ids in added.items():
                doc_chunks[doc_id] = tuple(ids)

            state = _VectorState(graph=graph, chunks=chunks, doc_chunks=doc_chunks, next_chunk_id=next_id)
            self._persist(state)
            self._state = state
        log.debug(
            "vector.update",
            inserted=len(embedded),
            tombstones=graph.tombstone_count if graph is not None else 0,
        )
        return len(embedded)

    def compact(self) -> None:
        """Rebuild the graph without tombstones."""
        with self._write_lock:
            base = self._state
            if base.graph is None or base.graph.tombstone_count == 0:
                return
            state = _VectorState(
                graph=base.graph.compact(),
                chunks=base.chunks,
                doc_chunks=base.doc_chunks,
                next_chunk_id=base.next_chunk_id,
            )
            self._persist(state)
            self._state = state
        log.info("vector.compacted", chunks=len(state.chunks))

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def query_text(self, text: str, k: int) -> list[tuple[Chunk, float]]:
        """Chunks most similar to ``text`` as ``(chunk, similarity)``.

        Ties by ascending chunk_id. Raises ``UnsupportedError`` when the
        model's query vector does not fit the graph.
        """
        if self.status is not VectorStatus.ACTIVE:
            return []
        state = self._state
        if state.graph is None:
            return []
        vector = np.asarray(self._embedder.embed([text]), dtype=np.float32)[0]
        if vector.shape[0] != state.graph.dim:
            raise UnsupportedError.dimension_mismatch(
                self._embedder.name, state.graph.dim, vector.shape[0]
            )
        hits = state.graph.search(vector, k, ef=max(k, self._config.hnsw_ef_search))
        return [(state.chunks[cid], sim) for cid, sim in hits if cid in state.chunks]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(self, state: _VectorState) -> None:
        graph_path = self._directory / VECTOR_GRAPH_FILE
        chunks_path = self._directory / VECTOR_CHUNKS_FILE
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            if state.graph is not None:
                state.graph.save(graph_path)
            else:
                graph_path.unlink(missing_ok=True)
            payload = {
                "schema_version": SCHEMA_VERSION,
                "model": self._embedder.name,
                "dimension": state.graph.dim if state.graph is not None else None,
                "next_chunk_id": state.next_chunk_id,
                "chunks": [
                    [c.chunk_id, c.doc_id, c.line_start, c.line_end]
                    for _, c in sorted(state.chunks.items())
                ],
            }
            tmp = chunks_path.with_name(chunks_path.name + ".tmp")
            tmp.write_text(json.dumps(payload, separators=(",", ":")))
            os.replace(tmp, chunks_path)
        except OSError as e:
            raise IoFailureError.from_os_error(str(self._directory), e) from e

    def load(self) -> bool:
        """Load the persisted graph. Returns False if none exists.

        A graph written by a different model is ignored (the caller
        rebuilds); unreadable files raise ``CorruptIndexError``.
        """
        graph_path = self._directory / VECTOR_GRAPH_FILE
        chunks_path = self._directory / VECTOR_CHUNKS_FILE
        if not chunks_path.exists():
            return False
        try:
            meta = json.loads(chunks_path.read_text())
            if meta.get("model") != self._embedder.name:
                log.warning(
                    "vector.model_mismatch",
                    expected=self._embedder.name,
                    got=meta.get("model"),
                )
                return False
            chunks: dict[int, Chunk] = {}
            doc_chunks: dict[int, list[int]] = {}
            for chunk_id, doc_id, start, end in meta["chunks"]:
                chunks[chunk_id] = Chunk(chunk_id=chunk_id, doc_id=doc_id, line_start=start, line_end=end)
                doc_chunks.setdefault(doc_id, []).append(chunk_id)
            graph: HNSWGraph | None = None
            if meta.get("dimension") is not None:
                graph = HNSWGraph.load(
                    graph_path,
                    int(meta["dimension"]),
                    chunks,
                    ef_search=self._config.hnsw_ef_search,
                    seed=self._config.seed,
                )
            elif chunks:
                raise ValueError("chunks without a graph")
            state = _VectorState(
                graph=graph,
                chunks=chunks,
                doc_chunks={d: tuple(ids) for d, ids in doc_chunks.items()},
                next_chunk_id=meta["next_chunk_id"],
            )
        except (OSError, ValueError, KeyError, TypeError, RuntimeError) as e:
            raise CorruptIndexError.unreadable(str(self._directory), str(e)) from e
        with self._write_lock:
            self._state = state
        log.debug("vector.loaded", chunks=len(chunks), nodes=graph.node_count if graph else 0)
        return True

    def clear(self) -> None:
        with self._write_lock:
            self._state = _VectorState()
            for name in (VECTOR_GRAPH_FILE, VECTOR_CHUNKS_FILE):
                (self._directory / name).unlink(missing_ok=True)
