"""Config module exports."""

from codesift.config.loader import load_config, merge_overrides
from codesift.config.models import (
    CodeSiftConfig,
    EmbeddingConfig,
    IndexerConfig,
    LoggingConfig,
    LogOutputConfig,
    SearchConfig,
    StorageConfig,
)

__all__ = [
    "load_config",
    "merge_overrides",
    "CodeSiftConfig",
    "EmbeddingConfig",
    "IndexerConfig",
    "LoggingConfig",
    "LogOutputConfig",
    "SearchConfig",
    "StorageConfig",
]
