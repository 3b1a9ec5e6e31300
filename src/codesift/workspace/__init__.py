"""Workspace identity, index storage layout and the writer lock."""

from codesift.workspace.lock import is_locked, writer_lock
from codesift.workspace.store import (
    CleanResult,
    IndexEntry,
    Workspace,
    WorkspaceStore,
    identity_hash,
)

__all__ = [
    "CleanResult",
    "IndexEntry",
    "Workspace",
    "WorkspaceStore",
    "identity_hash",
    "is_locked",
    "writer_lock",
]
