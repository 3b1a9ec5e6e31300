"""Full-text index over workspace documents, backed by Tantivy.

One Tantivy document per file:

- ``doc_id``   i64, indexed + fast; allocated here, stable per path
- ``path``     raw (untokenized), used for deletes
- ``content``  tokenized by the ``code`` analyzer: ``TOKEN_PATTERN`` from
  tokenizer.py, lower-cased; stored for verification, snippets and regex scans
- ``content_hash`` / ``mtime`` / ``size`` / ``language`` stored metadata

BM25 scoring, segment files and their garbage collection belong to Tantivy.
Every commit reloads the reader and publishes a new ``TextSnapshot`` wrapping
the fresh searcher. A Tantivy searcher is a point-in-time view, so a query
keeps the snapshot it started with and sees either the old or the new state
of a document, never a mix.

Storage: <index_dir>/text/ is a Tantivy index directory (meta.json + segments).
"""

from __future__ import annotations

import bisect
import re
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import tantivy

from codesift.config.constants import CANCELLATION_CHECK_INTERVAL
from codesift.core.cancel import CancellationToken
from codesift.core.errors import CorruptIndexError, InvalidQueryError, IoFailureError
from codesift.index.models import Document
from codesift.index.tokenizer import TOKEN_PATTERN, QueryTerm, query_terms, split_lines, tokenize

log = structlog.get_logger()

DocFilter = Callable[[Document], bool]

CODE_TOKENIZER = "code"
MAX_MATCH_LINES = 1000
WRITER_HEAP_BYTES = 50_000_000


def build_schema() -> Any:
    builder = tantivy.SchemaBuilder()
    builder.add_integer_field("doc_id", stored=True, indexed=True, fast=True)
    builder.add_text_field("path", stored=True, tokenizer_name="raw")
    builder.add_text_field(
        "content", stored=True, tokenizer_name=CODE_TOKENIZER, index_option="position"
    )
    builder.add_text_field("content_hash", stored=True, tokenizer_name="raw")
    builder.add_text_field("language", stored=True, tokenizer_name="raw")
    builder.add_float_field("mtime", stored=True)
    builder.add_integer_field("size", stored=True)
    return builder.build()


def code_analyzer() -> Any:
    """Tantivy analyzer equivalent to ``tokenizer.token_texts``."""
    return (
        tantivy.TextAnalyzerBuilder(tantivy.Tokenizer.regex(TOKEN_PATTERN))
        .filter(tantivy.Filter.lowercase())
        .build()
    )


# ===================================================================
# Documents
# ===================================================================


@dataclass(frozen=True, slots=True)
class PreparedDocument:
    """A file read and split into lines, ready to be committed.

    Produced off the writer thread (worker pool).
    """

    relative_path: str
    content_hash: str
    mtime: float
    size: int
    language_hint: str | None
    lines: tuple[str, ...]

    @property
    def content(self) -> str:
        return "\n".join(self.lines)


def prepare_document(
    relative_path: str,
    content: str,
    *,
    content_hash: str,
    mtime: float,
    size: int,
    language_hint: str | None = None,
) -> PreparedDocument:
    return PreparedDocument(
        relative_path=relative_path,
        content_hash=content_hash,
        mtime=mtime,
        size=size,
        language_hint=language_hint,
        lines=tuple(split_lines(content)),
    )


@dataclass(frozen=True, slots=True)
class StoredDocument:
    """A document as read back from a snapshot."""

    document: Document
    lines: tuple[str, ...]

    @property
    def content(self) -> str:
        return "\n".join(self.lines)


def _to_tantivy(prepared: PreparedDocument, doc_id: int) -> Any:
    doc = tantivy.Document()
    doc.add_integer("doc_id", doc_id)
    doc.add_text("path", prepared.relative_path)
    doc.add_text("content", prepared.content)
    doc.add_text("content_hash", prepared.content_hash)
    if prepared.language_hint is not None:
        doc.add_text("language", prepared.language_hint)
    doc.add_float("mtime", prepared.mtime)
    doc.add_integer("size", prepared.size)
    return doc


def _from_tantivy(doc: Any) -> StoredDocument:
    content = doc.get_first("content") or ""
    return StoredDocument(
        document=Document(
            doc_id=int(doc.get_first("doc_id")),
            relative_path=doc.get_first("path"),
            content_hash=doc.get_first("content_hash") or "",
            mtime=float(doc.get_first("mtime") or 0.0),
            size=int(doc.get_first("size") or 0),
            language_hint=doc.get_first("language"),
        ),
        lines=tuple(content.split("\n")) if content else (),
    )


def _document_of(prepared: PreparedDocument, doc_id: int) -> Document:
    return Document(
        doc_id=doc_id,
        relative_path=prepared.relative_path,
        content_hash=prepared.content_hash,
        mtime=prepared.mtime,
        size=prepared.size,
        language_hint=prepared.language_hint,
    )


# ===================================================================
# Snapshot
# ===================================================================


@dataclass
class Catalog:
    """Every indexed Document, by doc_id and by path."""

    documents: dict[int, Document] = field(default_factory=dict)
    paths: dict[str, int] = field(default_factory=dict)
    next_doc_id: int = 0

    @classmethod
    def of(cls, documents: Iterable[Document]) -> Catalog:
        catalog = cls()
        for document in documents:
            catalog.put(document)
        return catalog

    def copy(self) -> Catalog:
        return Catalog(dict(self.documents), dict(self.paths), self.next_doc_id)

    def put(self, document: Document) -> None:
        self.documents[document.doc_id] = document
        self.paths[document.relative_path] = document.doc_id
        self.next_doc_id = max(self.next_doc_id, document.doc_id + 1)

    def pop(self, relative_path: str) -> Document | None:
        doc_id = self.paths.pop(relative_path, None)
        return self.documents.pop(doc_id) if doc_id is not None else None


class TextSnapshot:
    """Point-in-time view: one Tantivy searcher plus its document catalog.

    Never changes after publication. The catalog is handed over by the
    writer; a snapshot opened from disk reads it from the searcher on first
    use. Stored documents fetched by queries are cached per snapshot.
    """

    def __init__(
        self,
        generation: int = 0,
        searcher: Any | None = None,
        schema: Any | None = None,
        catalog: Catalog | None = None,
    ) -> None:
        self.generation = generation
        self._searcher = searcher
        self._schema = schema
        self._catalog = catalog if searcher is not None else Catalog()
        self._stored: dict[int, StoredDocument] = {}
        self._lock = threading.Lock()

    @property
    def doc_count(self) -> int:
        return int(self._searcher.num_docs) if self._searcher is not None else 0

    @property
    def catalog(self) -> Catalog:
        if self._catalog is None:
            with self._lock:
                if self._catalog is None:
                    self._catalog = Catalog.of(s.document for _, s in self.scan())
        return self._catalog

    @property
    def paths(self) -> dict[str, int]:
        """``relative_path -> doc_id`` for every document."""
        return self.catalog.paths

    @property
    def next_doc_id(self) -> int:
        return self.catalog.next_doc_id

    def document_for_path(self, relative_path: str) -> Document | None:
        catalog = self.catalog
        doc_id = catalog.paths.get(relative_path)
        return catalog.documents[doc_id] if doc_id is not None else None

    def documents(self) -> Iterator[Document]:
        catalog = self.catalog
        for doc_id in sorted(catalog.documents):
            yield catalog.documents[doc_id]

    def get(self, doc_id: int) -> StoredDocument | None:
        """Stored fields and lines of ``doc_id``, or None if it is not indexed."""
        cached = self._stored.get(doc_id)
        if cached is not None or self._searcher is None:
            return cached
        query = tantivy.Query.term_query(self._schema, "doc_id", doc_id)
        found = self.search(query, limit=1)
        return found[0][1] if found else None

    def search(
        self, query: Any, limit: int | None = None, *, cache: bool = True
    ) -> list[tuple[float, StoredDocument]]:
        """Run a Tantivy query; ``(score, document)`` in Tantivy's order."""
        if self._searcher is None:
            return []
        searcher = self._searcher
        hits = searcher.search(query, limit=limit or max(int(searcher.num_docs), 1)).hits
        out: list[tuple[float, StoredDocument]] = []
        for score, address in hits:
            stored = _from_tantivy(searcher.doc(address))
            if cache:
                self._stored.setdefault(stored.document.doc_id, stored)
            out.append((float(score), stored))
        return out

    def scan(self) -> list[tuple[float, StoredDocument]]:
        """Every document, ordered by doc_id. Not cached."""
        found = self.search(tantivy.Query.all_query(), cache=False)
        found.sort(key=lambda item: item[1].document.doc_id)
        return found


# ===================================================================
# Query results
# ===================================================================


@dataclass(frozen=True, slots=True)
class TextMatch:
    """One matching document. ``line`` is the first matching line (1-based)."""

    doc_id: int
    score: float
    line: int
    match_lines: tuple[int, ...]


# ===================================================================
# TextIndex
# ===================================================================


class TextIndex:
    """BM25 text index with atomic commits and snapshot reads."""

    def __init__(self, directory: Path, *, heap_size: int = WRITER_HEAP_BYTES) -> None:
        self._directory = Path(directory)
        self._heap_size = heap_size
        self._schema = build_schema()
        self._index: Any | None = None
        self._snapshot = TextSnapshot()
        self._write_lock = threading.Lock()

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def snapshot(self) -> TextSnapshot:
        """The current published snapshot."""
        return self._snapshot

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def build(self, documents: Iterable[PreparedDocument]) -> TextSnapshot:
        """Replace the whole index. doc_ids follow sorted relative-path order."""
        ordered = sorted(documents, key=lambda d: d.relative_path)
        with self._write_lock:
            catalog = Catalog()

            def apply(writer: Any) -> None:
                writer.delete_all_documents()
                for doc_id, prepared in enumerate(ordered):
                    writer.add_document(_to_tantivy(prepared, doc_id))
                    catalog.put(_document_of(prepared, doc_id))

            return self._commit(apply, catalog)

    def update(
        self,
        upserts: Iterable[PreparedDocument] = (),
        removals: Iterable[str] = (),
    ) -> TextSnapshot:
        """Apply removals then upserts as one atomic commit.

        An upserted path keeps its doc_id; a new path gets the next one.
        """
        with self._write_lock:
            catalog = self._snapshot.catalog.copy()

            def apply(writer: Any) -> None:
                for relative_path in removals:
                    if catalog.pop(relative_path) is not None:
                        writer.delete_documents("path", relative_path)
                for prepared in sorted(upserts, key=lambda d: d.relative_path):
                    doc_id = catalog.paths.get(prepared.relative_path)
                    if doc_id is None:
                        doc_id = catalog.next_doc_id
                    else:
                        writer.delete_documents("path", prepared.relative_path)
                    writer.add_document(_to_tantivy(prepared, doc_id))
                    catalog.put(_document_of(prepared, doc_id))

            return self._commit(apply, catalog)

    def _commit(self, apply: Callable[[Any], None], catalog: Catalog) -> TextSnapshot:
        start = time.monotonic()
        index = self._writable_index()
        try:
            # Tantivy's writer lock: fails while another process is writing.
            writer = index.writer(heap_size=self._heap_size, num_threads=1)
        except ValueError as e:
            raise IoFailureError.commit_failed(str(self._directory), str(e)) from e
        try:
            apply(writer)
            writer.commit()
        except (OSError, ValueError) as e:
            # The uncommitted operations are discarded; readers keep the last commit.
            writer.rollback()
            raise IoFailureError.commit_failed(str(self._directory), str(e)) from e
        finally:
            writer.wait_merging_threads()
        index.reload()
        snapshot = TextSnapshot(
            generation=self._snapshot.generation + 1,
            searcher=index.searcher(),
            schema=self._schema,
            catalog=catalog,
        )
        self._snapshot = snapshot
        log.debug(
            "text.commit",
            generation=snapshot.generation,
            docs=snapshot.doc_count,
            elapsed_ms=round((time.monotonic() - start) * 1000),
        )
        return snapshot

    def _open_index(self) -> Any:
        index = tantivy.Index(self._schema, path=str(self._directory), reuse=True)
        index.register_tokenizer(CODE_TOKENIZER, code_analyzer())
        return index

    def _writable_index(self) -> Any:
        if self._index is None or not tantivy.Index.exists(str(self._directory)):
            try:
                self._directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise IoFailureError.from_os_error(str(self._directory), e) from e
            self._index = self._open_index()
        return self._index

    # ------------------------------------------------------------------
    # BM25
    # ------------------------------------------------------------------

    def query(
        self,
        terms: list[str],
        doc_filter: DocFilter | None = None,
        snapshot: TextSnapshot | None = None,
    ) -> list[tuple[int, float, tuple[int, ...]]]:
        """Rank documents containing any of ``terms`` by BM25.

        Returns ``(doc_id, score, positions)`` sorted by descending score,
        ties by ascending doc_id. ``positions`` are the token positions of
        every occurrence of a query term.
        """
        snap = snapshot or self._snapshot
        wanted = list(dict.fromkeys(t.lower() for t in terms if t))
        if not wanted:
            return []
        query = tantivy.Query.boolean_query(
            [(tantivy.Occur.Should, self._term(term)) for term in wanted]
        )
        wanted_set = set(wanted)
        ranked: list[tuple[int, float, tuple[int, ...]]] = []
        for score, stored in snap.search(query):
            if doc_filter is not None and not doc_filter(stored.document):
                continue
            positions = tuple(
                i for i, token in enumerate(tokenize(stored.content)) if token.text in wanted_set
            )
            ranked.append((stored.document.doc_id, score, positions))
        ranked.sort(key=lambda item: (-item[1], item[0]))
        return ranked

    def _term(self, text: str) -> Any:
        return tantivy.Query.term_query(self._schema, "content", text)

    def _literal_query(self, qterms: list[QueryTerm]) -> Any:
        """Every query term must match; edge terms may be partial index terms.

        A partial term is looked up as a regex over the term dictionary and
        also as an exact term, so whole-token matches keep their BM25 weight.
        """
        if not qterms:
            return tantivy.Query.all_query()
        clauses = []
        for qterm in qterms:
            clause = self._term(qterm.text)
            if qterm.partial:
                partial = tantivy.Query.regex_query(self._schema, "content", qterm.pattern)
                clause = tantivy.Query.boolean_query(
                    [(tantivy.Occur.Should, clause), (tantivy.Occur.Should, partial)]
                )
            clauses.append((tantivy.Occur.Must, clause))
        return tantivy.Query.boolean_query(clauses)

    # ------------------------------------------------------------------
    # Literal and regex search
    # ------------------------------------------------------------------

    def search_literal(
        self,
        query: str,
        doc_filter: DocFilter | None = None,
        cancel: CancellationToken | None = None,
        snapshot: TextSnapshot | None = None,
    ) -> list[TextMatch]:
        """Documents containing ``query`` as a case-insensitive substring.

        Candidates come from the index (every query token must be present,
        edge tokens may be partial document tokens), scored by BM25, then
        verified against the stored lines.
        """
        if not query.strip():
            raise InvalidQueryError.empty()
        snap = snapshot or self._snapshot
        needle = query.lower()
        candidates = snap.search(self._literal_query(query_terms(query)))
        candidates.sort(key=lambda item: item[1].document.doc_id)

        matches: list[TextMatch] = []
        for i, (score, stored) in enumerate(candidates):
            if cancel is not None and i % CANCELLATION_CHECK_INTERVAL == 0:
                cancel.raise_if_cancelled()
            if doc_filter is not None and not doc_filter(stored.document):
                continue
            match_lines = _find_literal_lines(stored.lines, needle)
            if not match_lines:
                continue
            matches.append(
                TextMatch(
                    doc_id=stored.document.doc_id,
                    score=score,
                    line=match_lines[0],
                    match_lines=match_lines,
                )
            )
        matches.sort(key=lambda m: (-m.score, m.doc_id))
        return matches

    def search_regex(
        self,
        pattern: str,
        doc_filter: DocFilter | None = None,
        cancel: CancellationToken | None = None,
        snapshot: TextSnapshot | None = None,
    ) -> list[TextMatch]:
        """Scan stored content with a case-insensitive regex.

        Documents rank by the position of their first match: a match on
        line 1 scores 1.0, on line n scores 1/n. Ties by ascending doc_id.
        """
        if not pattern:
            raise InvalidQueryError.empty()
        try:
            regex = re.compile(pattern, re.IGNORECASE | re.MULTILINE)
        except re.error as e:
            raise InvalidQueryError.bad_regex(pattern, str(e)) from e
        snap = snapshot or self._snapshot

        matches: list[TextMatch] = []
        for i, (_, stored) in enumerate(snap.scan()):
            if cancel is not None and i % CANCELLATION_CHECK_INTERVAL == 0:
                cancel.raise_if_cancelled()
            if doc_filter is not None and not doc_filter(stored.document):
                continue
            starts = _line_starts(stored.lines)
            lines: list[int] = []
            for m in regex.finditer(stored.content):
                line = bisect.bisect_right(starts, m.start())
                if not lines or lines[-1] != line:
                    lines.append(line)
                if len(lines) >= MAX_MATCH_LINES:
                    break
            if not lines:
                continue
            matches.append(
                TextMatch(
                    doc_id=stored.document.doc_id,
                    score=1.0 / lines[0],
                    line=lines[0],
                    match_lines=tuple(lines),
                )
            )
        matches.sort(key=lambda m: (-m.score, m.doc_id))
        return matches

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> bool:
        """Open the committed index. Returns False if none was ever committed.

        A commit from another process can garbage-collect segment files
        between reading meta.json and opening them; the open is retried once
        against the newer meta.json before the index is reported corrupt.
        """
        if not tantivy.Index.exists(str(self._directory)):
            return False
        for attempt in (1, 2):
            try:
                index = self._open_index()
                searcher = index.searcher()
                break
            except (OSError, ValueError) as e:
                if attempt == 2:
                    raise CorruptIndexError.unreadable(str(self._directory), str(e)) from e
                log.debug("text.load_retry", path=str(self._directory), error=str(e))
        with self._write_lock:
            self._index = index
            self._snapshot = TextSnapshot(
                generation=self._snapshot.generation,
                searcher=searcher,
                schema=self._schema,
            )
        log.debug("text.loaded", docs=self._snapshot.doc_count)
        return True


# ===================================================================
# Helpers
# ===================================================================


def _line_starts(lines: tuple[str, ...]) -> list[int]:
    """Offsets of each line start in ``"\\n".join(lines)``; index i is line i+1."""
    starts = [0]
    offset = 0
    for line in lines[:-1]:
        offset += len(line) + 1
        starts.append(offset)
    return starts


def _find_literal_lines(lines: tuple[str, ...], needle: str) -> tuple[int, ...]:
    """1-based line numbers of every occurrence of ``needle`` (already lowered)."""
    if "\n" not in needle:
        found = [i for i, line in enumerate(lines, start=1) if needle in line.lower()]
        return tuple(found[:MAX_MATCH_LINES])
    lowered = tuple(line.lower() for line in lines)
    content = "\n".join(lowered)
    starts = _line_starts(lowered)
    found: list[int] = []
    idx = content.find(needle)
    while idx != -1 and len(found) < MAX_MATCH_LINES:
        line = bisect.bisect_right(starts, idx)
        if not found or found[-1] != line:
            found.append(line)
        idx = content.find(needle, idx + 1)
    return tuple(found)
