"""Score normalisation and text/vector result fusion.

Both result sets are max-normalised to [0, 1] independently, unioned by
document and classified:

    Text      w_t * t
    Semantic  w_v * s
    Hybrid    max(w_t * t + w_v * s, t, s)

so a document found by both paths never scores below either path alone.
At equal score Hybrid sorts first; remaining ties by doc_id, then line.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass

from codesift.search.models import MatchType, SearchFilters


@dataclass(frozen=True, slots=True)
class Candidate:
    """A raw hit from one retrieval path.

    ``line_start``/``line_end`` carry the chunk range for vector hits.
    """

    doc_id: int
    line: int
    score: float
    line_start: int | None = None
    line_end: int | None = None


@dataclass(frozen=True, slots=True)
class FusedHit:
    doc_id: int
    line: int
    score: float
    match_type: MatchType
    text_score: float = 0.0
    vector_score: float = 0.0
    chunk_range: tuple[int, int] | None = None


def normalize(scores: list[float]) -> list[float]:
    """Scale by the set maximum. A set whose scores are all <= 0 ties at 1.0."""
    if not scores:
        return []
    top = max(scores)
    if top <= 0.0:
        return [1.0] * len(scores)
    return [max(0.0, s) / top for s in scores]


def best_per_document(candidates: Iterable[Candidate]) -> list[Candidate]:
    """Keep the highest-scoring candidate per document (earliest line on ties)."""
    best: dict[int, Candidate] = {}
    for c in candidates:
        current = best.get(c.doc_id)
        if current is None or (c.score, -c.line) > (current.score, -current.line):
            best[c.doc_id] = c
    return sorted(best.values(), key=lambda c: (-c.score, c.doc_id))


def sort_key(hit: FusedHit) -> tuple[float, int, int, int]:
    return (-hit.score, 0 if hit.match_type is MatchType.HYBRID else 1, hit.doc_id, hit.line)


def fuse(
    text: list[Candidate],
    vector: list[Candidate],
    *,
    text_weight: float = 1.0,
    vector_weight: float = 0.5,
) -> list[FusedHit]:
    """Union text and vector candidates into ranked, classified hits."""
    text = best_per_document(text)
    vector = best_per_document(vector)
    t_norm = dict(zip((c.doc_id for c in text), normalize([c.score for c in text]), strict=True))
    v_norm = dict(zip((c.doc_id for c in vector), normalize([c.score for c in vector]), strict=True))
    text_by_doc = {c.doc_id: c for c in text}
    vector_by_doc = {c.doc_id: c for c in vector}

    hits: list[FusedHit] = []
    for doc_id in text_by_doc.keys() | vector_by_doc.keys():
        t_hit = text_by_doc.get(doc_id)
        v_hit = vector_by_doc.get(doc_id)
        t = t_norm.get(doc_id, 0.0)
        s = v_norm.get(doc_id, 0.0)
        chunk_range = (
            (v_hit.line_start or v_hit.line, v_hit.line_end or v_hit.line) if v_hit is not None else None
        )
        if t_hit is not None and v_hit is not None:
            hits.append(
                FusedHit(
                    doc_id=doc_id,
                    line=t_hit.line,
                    score=max(text_weight * t + vector_weight * s, t, s),
                    match_type=MatchType.HYBRID,
                    text_score=t,
                    vector_score=s,
                    chunk_range=chunk_range,
                )
            )
        elif t_hit is not None:
            hits.append(
                FusedHit(
                    doc_id=doc_id,
                    line=t_hit.line,
                    score=text_weight * t,
                    match_type=MatchType.TEXT,
                    text_score=t,
                )
            )
        elif v_hit is not None:
            hits.append(
                FusedHit(
                    doc_id=doc_id,
                    line=v_hit.line,
                    score=vector_weight * s,
                    match_type=MatchType.SEMANTIC,
                    vector_score=s,
                    chunk_range=chunk_range,
                )
            )
    hits.sort(key=sort_key)
    return hits


def apply_filters(
    hits: list[FusedHit],
    filters: SearchFilters,
    path_of: Callable[[int], str | None],
) -> list[FusedHit]:
    """Drop hits whose document path fails ``filters`` (or is gone)."""
    kept: list[FusedHit] = []
    for hit in hits:
        path = path_of(hit.doc_id)
        if path is None:
            continue
        if filters.empty or filters.matches(path):
            kept.append(hit)
    return kept
