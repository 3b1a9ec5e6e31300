"""Query inputs and ranked results.

``MatchType`` is a closed enum; renderers map it to their own markers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Any

from pydantic import BaseModel, Field, field_validator

from codesift.config.constants import SEARCH_CONTEXT_LINES_MAX, SEARCH_MAX_LIMIT


class MatchType(str, Enum):
    """Which retrieval path(s) produced a hit."""

    TEXT = "text"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"


class QueryMode(str, Enum):
    LITERAL = "literal"
    REGEX = "regex"


def normalize_extension(ext: str) -> str:
    return ext.strip().lstrip(".").lower()


@dataclass(frozen=True, slots=True)
class SearchFilters:
    """Post-fusion filters.

    Extensions match exactly, case-insensitively, with or without a leading
    dot. Path filters are plain substrings/prefixes of the relative path
    (no globs); several filters are OR'd.
    """

    extensions: tuple[str, ...] = ()
    paths: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "extensions",
            tuple(sorted({normalize_extension(e) for e in self.extensions if e.strip(". ")})),
        )
        object.__setattr__(self, "paths", tuple(p for p in self.paths if p))

    @property
    def empty(self) -> bool:
        return not self.extensions and not self.paths

    def matches(self, relative_path: str) -> bool:
        if self.extensions:
            suffix = PurePosixPath(relative_path).suffix.lower().lstrip(".")
            if suffix not in self.extensions:
                return False
        if self.paths:
            return any(p in relative_path for p in self.paths)
        return True


class SearchRequest(BaseModel):
    """Validated query parameters."""

    query: str = Field(..., min_length=1)
    mode: QueryMode = QueryMode.LITERAL
    limit: int = Field(default=20, ge=1, le=SEARCH_MAX_LIMIT)
    context_lines: int = Field(default=2, ge=0, le=SEARCH_CONTEXT_LINES_MAX)
    extensions: list[str] = Field(default_factory=list)
    paths: list[str] = Field(default_factory=list)
    text_only: bool = False

    @field_validator("query")
    @classmethod
    def reject_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("query must not be blank")
        return v

    @property
    def filters(self) -> SearchFilters:
        return SearchFilters(tuple(self.extensions), tuple(self.paths))


@dataclass(frozen=True, slots=True)
class SearchHit:
    """One ranked document.

    ``line`` is the best line (first match for text hits, chunk start for
    semantic hits); ``line_start``/``line_end`` bound ``snippet``. All
    1-based, inclusive. ``score`` is the fused score in [0, 1].
    """

    path: str
    line: int
    line_start: int
    line_end: int
    score: float
    match_type: MatchType
    snippet: str
    doc_id: int
    language: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "line": self.line,
            "line_start": self.line_start,
            "line_end": self.line_end,
            "score": round(self.score, 4),
            "match_type": self.match_type.value,
            "snippet": self.snippet,
            "language": self.language,
        }


@dataclass
class SearchResult:
    """Hits after fusion, filtering and truncation.

    ``total`` counts hits that passed the filters before truncation.
    """

    hits: list[SearchHit] = field(default_factory=list)
    total: int = 0
    query_time_ms: int = 0
    text_hits: int = 0
    semantic_hits: int = 0
    warnings: list[str] = field(default_factory=list)

    @property
    def truncated(self) -> bool:
        return self.total > len(self.hits)

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": [hit.to_dict() for hit in self.hits],
            "total": self.total,
            "query_time_ms": self.query_time_ms,
            "text_hits": self.text_hits,
            "semantic_hits": self.semantic_hits,
            "warnings": list(self.warnings),
        }
