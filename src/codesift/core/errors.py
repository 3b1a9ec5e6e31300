"""codesift error types with typed error codes.

Error code ranges:
- 2xxx: Config
- 3xxx: Index / workspace
- 4xxx: Query
- 9xxx: Internal

Per-file problems during a build or update never raise; they are recorded in
the build/update summaries. Everything else propagates as one of the types
below so the CLI can render a remediation hint.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002

    # Index / workspace (3xxx)
    NOT_INDEXED = 3001
    SCHEMA_MISMATCH = 3002
    CORRUPT_INDEX = 3003
    INDEX_LOCKED = 3004
    NOT_FOUND = 3005
    IO_FAILURE = 3006
    UNSUPPORTED = 3007

    # Query (4xxx)
    INVALID_QUERY = 4001
    QUERY_CANCELLED = 4002

    # Internal (9xxx)
    INTERNAL_ERROR = 9001


# Not frozen: contextlib assigns __traceback__ on exceptions thrown into generators.
@dataclass(eq=False, slots=True)
class CodeSiftError(Exception):
    """Base error with structured context for JSON output."""

    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)
    hint: str | None = None

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'NOT_INDEXED')."""
        return self.code.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        result: dict[str, Any] = {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }
        if self.hint:
            result["hint"] = self.hint
        return result

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


class ConfigError(CodeSiftError):
    """Configuration-related errors."""

    @classmethod
    def parse_error(cls, path: str, reason: str) -> ConfigError:
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> ConfigError:
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )


class NotIndexedError(CodeSiftError):
    """The workspace has no index of the requested mode."""

    @classmethod
    def for_workspace(cls, root: str, mode: str) -> NotIndexedError:
        flag = " --semantic" if mode == "semantic" else ""
        return cls(
            code=ErrorCode.NOT_INDEXED,
            message=f"No {mode} index for {root}",
            details={"root": root, "mode": mode},
            hint=f"Run 'sift index{flag} {root}' first.",
        )


class SchemaMismatchError(CodeSiftError):
    """On-disk index was written by an incompatible schema version."""

    @classmethod
    def versions(cls, root: str, found: int, expected: int) -> SchemaMismatchError:
        return cls(
            code=ErrorCode.SCHEMA_MISMATCH,
            message=f"Index schema v{found} is incompatible with v{expected}",
            details={"root": root, "found": found, "expected": expected},
            hint=f"Run 'sift index --rebuild {root}' to rebuild the index.",
        )


class CorruptIndexError(CodeSiftError):
    """Persisted index data could not be read back."""

    @classmethod
    def unreadable(cls, path: str, reason: str) -> CorruptIndexError:
        return cls(
            code=ErrorCode.CORRUPT_INDEX,
            message=f"Index data at {path} is unreadable: {reason}",
            details={"path": path, "reason": reason},
            hint="Run 'sift index --rebuild' to rebuild the index.",
        )


class IndexLockedError(CodeSiftError):
    """Another process holds the writer lock for this index."""

    @classmethod
    def held(cls, lock_path: str) -> IndexLockedError:
        return cls(
            code=ErrorCode.INDEX_LOCKED,
            message=f"Index is locked by another writer ({lock_path})",
            retryable=True,
            details={"lock_path": lock_path},
            hint="Stop the other 'sift index' or 'sift watch' process and retry.",
        )


class NotFoundError(CodeSiftError):
    """No index matches the given identity or root path."""

    @classmethod
    def index(cls, key: str) -> NotFoundError:
        return cls(
            code=ErrorCode.NOT_FOUND,
            message=f"No index found for '{key}'",
            details={"key": key},
            hint="Run 'sift indexes list' to see known indexes.",
        )


class IoFailureError(CodeSiftError):
    """Filesystem read/write failure."""

    @classmethod
    def from_os_error(cls, path: str, exc: OSError) -> IoFailureError:
        return cls(
            code=ErrorCode.IO_FAILURE,
            message=f"I/O failure on {path}: {exc.strerror or exc}",
            details={"path": path, "errno": exc.errno},
        )

    @classmethod
    def commit_failed(cls, path: str, reason: str) -> IoFailureError:
        return cls(
            code=ErrorCode.IO_FAILURE,
            message=f"Commit to {path} failed: {reason}",
            retryable=True,
            details={"path": path, "reason": reason},
        )


class UnsupportedError(CodeSiftError):
    """A capability (embeddings) is unavailable in this environment."""

    @classmethod
    def embeddings(cls, reason: str) -> UnsupportedError:
        return cls(
            code=ErrorCode.UNSUPPORTED,
            message=f"Semantic search unavailable: {reason}",
            details={"reason": reason},
            hint="Install the 'semantic' extra: pip install 'codesift[semantic]'.",
        )

    @classmethod
    def dimension_mismatch(cls, model: str, expected: int, found: int) -> UnsupportedError:
        return cls(
            code=ErrorCode.UNSUPPORTED,
            message=(
                f"Semantic search unavailable: model {model} produced {found}-dimensional "
                f"vectors, expected {expected}"
            ),
            details={"model": model, "expected": expected, "found": found},
            hint="Run 'sift index --rebuild --semantic' after changing the embedding model.",
        )


class InvalidQueryError(CodeSiftError):
    """The query could not be executed as written."""

    @classmethod
    def bad_regex(cls, pattern: str, reason: str) -> InvalidQueryError:
        return cls(
            code=ErrorCode.INVALID_QUERY,
            message=f"Invalid regex '{pattern}': {reason}",
            details={"pattern": pattern, "reason": reason},
        )

    @classmethod
    def bad_option(cls, name: str, reason: str) -> InvalidQueryError:
        return cls(
            code=ErrorCode.INVALID_QUERY,
            message=f"Invalid search option '{name}': {reason}",
            details={"option": name, "reason": reason},
        )

    @classmethod
    def empty(cls) -> InvalidQueryError:
        return cls(
            code=ErrorCode.INVALID_QUERY,
            message="Query is empty",
        )

    @classmethod
    def cancelled(cls) -> InvalidQueryError:
        return cls(
            code=ErrorCode.QUERY_CANCELLED,
            message="Query was cancelled",
        )


class InternalError(CodeSiftError):
    """Internal/unexpected errors."""

    @classmethod
    def unexpected(cls, reason: str, **details: Any) -> InternalError:
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Internal error: {reason}",
            details=details,
        )
