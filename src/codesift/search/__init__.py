"""Search module - literal/regex text retrieval fused with semantic hits."""

from codesift.search.engine import QueryEngine, open_workspace
from codesift.search.fusion import Candidate, FusedHit, fuse, normalize
from codesift.search.models import (
    MatchType,
    QueryMode,
    SearchFilters,
    SearchHit,
    SearchRequest,
    SearchResult,
)

__all__ = [
    "Candidate",
    "FusedHit",
    "MatchType",
    "QueryEngine",
    "QueryMode",
    "SearchFilters",
    "SearchHit",
    "SearchRequest",
    "SearchResult",
    "fuse",
    "normalize",
    "open_workspace",
]
