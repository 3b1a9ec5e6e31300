"""Index module - text (BM25) and semantic (HNSW) indexes over a workspace.

This module provides:
- Walker + tokenizer: which files are indexed and how text becomes terms
- Text index: Tantivy BM25 index with a code-aware tokenizer
- Vector index: line-window chunks embedded into an HNSW graph (optional)

Orchestration (IndexCoordinator) lives in `codesift.index.ops`.
"""

from codesift.index.models import (
    BuildSummary,
    ChangeKind,
    Chunk,
    Document,
    FileFailure,
    IndexMetadata,
    IndexMode,
    SkipReason,
    UpdateSummary,
    VectorStatus,
    WatchEvent,
)
from codesift.index.text import TextIndex, TextMatch, TextSnapshot
from codesift.index.vector import VectorIndex
from codesift.index.walker import FileCandidate, Walker

__all__ = [
    # Components
    "TextIndex",
    "TextMatch",
    "TextSnapshot",
    "VectorIndex",
    "Walker",
    "FileCandidate",
    # Models
    "BuildSummary",
    "ChangeKind",
    "Chunk",
    "Document",
    "FileFailure",
    "IndexMetadata",
    "IndexMode",
    "SkipReason",
    "UpdateSummary",
    "VectorStatus",
    "WatchEvent",
]
