"""Data model shared by the walker, the indexes and the updater.

Documents are created by the build/update path and treated as read-only by
everything else. IndexMetadata is the only model persisted as-is; it is a
pydantic model so that reading it back doubles as validation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

# ============================================================================
# ENUMS
# ============================================================================


class IndexMode(str, Enum):
    """Which indexes a workspace maintains. Sticky once persisted."""

    TEXT = "text"
    SEMANTIC = "semantic"


class VectorStatus(str, Enum):
    """State of the vector index for an open workspace."""

    ACTIVE = "active"  # graph loaded/built and embeddings available
    UNSUPPORTED = "unsupported"  # semantic mode but no embedding capability
    DISABLED = "disabled"  # text mode


class ChangeKind(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    REMOVED = "removed"
    RENAMED = "renamed"


class SkipReason(str, Enum):
    """Why the walker did not yield a file."""

    IGNORED = "ignored"
    BINARY = "binary"
    TOO_LARGE = "too_large"
    SYMLINK_CYCLE = "symlink_cycle"
    BROKEN_SYMLINK = "broken_symlink"
    OUTSIDE_ROOT = "outside_root"
    UNREADABLE = "unreadable"
    NOT_A_FILE = "not_a_file"


# ============================================================================
# DOCUMENTS AND CHUNKS
# ============================================================================


@dataclass(frozen=True, slots=True)
class Document:
    """An indexed file.

    ``doc_id`` is allocated by the text index and stays with the path for the
    lifetime of the index; ``content_hash`` is SHA-256 of the raw bytes.
    """

    doc_id: int
    relative_path: str
    content_hash: str
    mtime: float
    size: int
    language_hint: str | None = None

    @property
    def extension(self) -> str:
        return Path(self.relative_path).suffix.lower().lstrip(".")


@dataclass(frozen=True, slots=True)
class Chunk:
    """A contiguous, 1-based inclusive line range of a document."""

    chunk_id: int
    doc_id: int
    line_start: int
    line_end: int


@dataclass(frozen=True, slots=True)
class WatchEvent:
    """One deduplicated filesystem change, relative to the workspace root."""

    path: str
    kind: ChangeKind
    old_path: str | None = None


# ============================================================================
# SUMMARIES
# ============================================================================


@dataclass(frozen=True, slots=True)
class FileFailure:
    """A per-file problem absorbed during a build or update."""

    path: str
    error: str
    message: str


@dataclass
class BuildSummary:
    """Outcome of a full build."""

    mode: IndexMode
    files_indexed: int = 0
    files_skipped: int = 0
    skipped_by_reason: dict[str, int] = field(default_factory=dict)
    chunks_embedded: int = 0
    vector_status: VectorStatus = VectorStatus.DISABLED
    failures: list[FileFailure] = field(default_factory=list)
    duration_ms: int = 0


@dataclass
class UpdateSummary:
    """Outcome of applying one batch of watch events."""

    added: int = 0
    updated: int = 0
    removed: int = 0
    unchanged: int = 0
    skipped: int = 0
    failures: list[FileFailure] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def changed(self) -> int:
        return self.added + self.updated + self.removed


# ============================================================================
# PERSISTED METADATA
# ============================================================================


def _utcnow() -> datetime:
    return datetime.now(UTC)


class IndexMetadata(BaseModel):
    """Contents of ``metadata.json`` in an index directory."""

    root_path: str
    identity_hash: str
    mode: IndexMode = IndexMode.TEXT
    schema_version: int
    doc_count: int = 0
    chunk_count: int = 0
    files_skipped: int = 0
    embedding_model: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    last_build_time: datetime | None = None
    last_build_ms: int | None = None
