"""Core module exports."""

from codesift.core.errors import (
    CodeSiftError,
    ConfigError,
    CorruptIndexError,
    ErrorCode,
    IndexLockedError,
    InternalError,
    InvalidQueryError,
    IoFailureError,
    NotFoundError,
    NotIndexedError,
    SchemaMismatchError,
    UnsupportedError,
)
from codesift.core.logging import (
    clear_operation_id,
    configure_logging,
    get_logger,
    get_operation_id,
    set_operation_id,
)

__all__ = [
    # Errors
    "CodeSiftError",
    "ConfigError",
    "CorruptIndexError",
    "ErrorCode",
    "IndexLockedError",
    "InternalError",
    "InvalidQueryError",
    "IoFailureError",
    "NotFoundError",
    "NotIndexedError",
    "SchemaMismatchError",
    "UnsupportedError",
    # Logging
    "clear_operation_id",
    "configure_logging",
    "get_logger",
    "get_operation_id",
    "set_operation_id",
]
