"""HNSW graph over embedding vectors, backed by hnswlib.

Cosine space: hnswlib normalises rows on insert and query and reports
``1 - cos`` as the distance. Removing a label marks its node deleted (it
keeps routing queries but is never returned); ``compact()`` rebuilds the
graph from live nodes only.

hnswlib does not persist which labels are deleted in a form we can read
back cheaply, so the caller passes the live label set to ``load`` (the
vector index keeps it in its chunk table).

With one insert thread and a fixed ``random_seed``, inserting the same
vectors in the same order always produces the same graph.
"""

from __future__ import annotations

import os
import pickle
from collections.abc import Iterable
from pathlib import Path

import hnswlib
import numpy as np
import structlog

log = structlog.get_logger()

_INITIAL_CAPACITY = 1024


class HNSWGraph:
    """hnswlib index keyed by integer labels, plus its live label set."""

    def __init__(
        self,
        dim: int,
        *,
        m: int = 16,
        ef_construction: int = 200,
        ef_search: int = 64,
        seed: int = 42,
        capacity: int = _INITIAL_CAPACITY,
    ) -> None:
        self.dim = dim
        self.m = m
        self.ef_construction = ef_construction
        self.ef_search = ef_search
        self.seed = seed
        self._index = hnswlib.Index(space="cosine", dim=dim)
        self._index.init_index(
            max_elements=max(capacity, 1),
            ef_construction=ef_construction,
            M=m,
            random_seed=seed,
        )
        self._index.set_ef(ef_search)
        self._live: set[int] = set()
        self._deleted: set[int] = set()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        """Number of live (non-deleted) labels."""
        return len(self._live)

    def __contains__(self, label: int) -> bool:
        return label in self._live

    @property
    def node_count(self) -> int:
        return int(self._index.get_current_count())

    @property
    def tombstone_count(self) -> int:
        return len(self._deleted)

    def labels(self) -> list[int]:
        return sorted(self._live)

    def vector(self, label: int) -> np.ndarray:
        """The stored (unit-length) vector of a live label."""
        if label not in self._live:
            raise KeyError(label)
        return np.asarray(self._index.get_items([label]), dtype=np.float32)[0]

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add(self, label: int, vector: np.ndarray) -> None:
        """Insert ``vector`` under ``label``, replacing any previous vector."""
        self.add_many([label], np.asarray(vector, dtype=np.float32)[None, :])

    def add_many(self, labels: Iterable[int], vectors: np.ndarray) -> None:
        """Insert rows of ``vectors`` under ``labels``, in order."""
        ids = np.asarray(list(labels), dtype=np.int64)
        matrix = np.asarray(vectors, dtype=np.float32)
        if matrix.ndim == 1:
            matrix = matrix[None, :]
        if matrix.shape[1] != self.dim:
            raise ValueError(f"vector dimension {matrix.shape[1]} != index dimension {self.dim}")
        if len(ids) != matrix.shape[0]:
            raise ValueError(f"{len(ids)} labels for {matrix.shape[0]} vectors")
        if not len(ids):
            return
        needed = self.node_count + len(ids)
        capacity = self._index.get_max_elements()
        if needed > capacity:
            self._index.resize_index(max(needed, capacity * 2))
        self._index.add_items(matrix, ids, num_threads=1)
        for label in ids.tolist():
            self._live.add(label)
            self._deleted.discard(label)

    def remove(self, label: int) -> bool:
        """Mark ``label`` deleted. Returns False if it was not live."""
        if label not in self._live:
            return False
        self._index.mark_deleted(label)
        self._live.discard(label)
        self._deleted.add(label)
        return True

    def compact(self) -> HNSWGraph:
        """A fresh graph holding only live labels, inserted in label order."""
        labels = self.labels()
        graph = HNSWGraph(
            self.dim,
            m=self.m,
            ef_construction=self.ef_construction,
            ef_search=self.ef_search,
            seed=self.seed,
            capacity=max(len(labels), _INITIAL_CAPACITY),
        )
        if labels:
            graph.add_many(labels, np.asarray(self._index.get_items(labels), dtype=np.float32))
        return graph

    def copy(self) -> HNSWGraph:
        """Independent copy for copy-on-write updates."""
        graph = HNSWGraph.__new__(HNSWGraph)
        graph.__dict__.update(self.__dict__)
        graph._index = pickle.loads(pickle.dumps(self._index))
        graph._index.set_ef(self.ef_search)
        graph._live = set(self._live)
        graph._deleted = set(self._deleted)
        return graph

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def search(self, vector: np.ndarray, k: int, ef: int | None = None) -> list[tuple[int, float]]:
        """Top-``k`` live labels as ``(label, cosine_similarity)``, best first.

        Ties break by ascending label. The beam width is ``max(k, ef_search)``;
        if deleted nodes crowd live ones out of the beam, the search is
        repeated with the beam covering the whole graph.
        """
        k = min(k, len(self._live))
        if k <= 0:
            return []
        query = np.asarray(vector, dtype=np.float32).reshape(1, -1)
        self._index.set_ef(max(k, ef or self.ef_search))
        try:
            labels, distances = self._index.knn_query(query, k=k, num_threads=1)
        except RuntimeError:
            self._index.set_ef(max(k, self.node_count))
            labels, distances = self._index.knn_query(query, k=k, num_threads=1)
        found = [
            (int(label), 1.0 - float(dist))
            for label, dist in zip(labels[0], distances[0], strict=True)
        ]
        found.sort(key=lambda item: (-item[1], item[0]))
        return found

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: Path) -> None:
        """Write hnswlib's native file, replacing ``path`` atomically."""
        tmp = path.with_name(path.name + ".tmp")
        self._index.save_index(str(tmp))
        os.replace(tmp, path)

    @classmethod
    def load(
        cls,
        path: Path,
        dim: int,
        live_labels: Iterable[int],
        *,
        ef_search: int = 64,
        seed: int = 42,
    ) -> HNSWGraph:
        """Read a graph written by ``save``.

        Raises ValueError when the file does not hold ``live_labels``.
        """
        graph = cls.__new__(cls)
        graph.dim = dim
        graph.ef_search = ef_search
        graph.seed = seed
        index = hnswlib.Index(space="cosine", dim=dim)
        try:
            index.load_index(str(path), max_elements=0)
        except RuntimeError as e:
            raise ValueError(f"unreadable graph file: {e}") from e
        graph._index = index
        graph.m = int(index.M)
        graph.ef_construction = int(index.ef_construction)
        index.set_ef(ef_search)

        stored = {int(label) for label in index.get_ids_list()}
        live = set(live_labels)
        missing = live - stored
        if missing:
            raise ValueError(f"graph is missing {len(missing)} live labels")
        graph._live = live
        graph._deleted = stored - live
        log.debug("hnsw.loaded", nodes=len(stored), live=len(live))
        return graph
