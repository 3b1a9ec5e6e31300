"""Pydantic configuration models with env var support.

Configuration Hierarchy (highest to lowest precedence):
1. Direct kwargs to load_config()
2. Environment variables (CODESIFT__SECTION__KEY)
3. Global YAML (~/.config/codesift/config.yaml)
4. Built-in defaults (this file)

Environment Variable Format:
    CODESIFT__<SECTION>__<KEY>=<VALUE>

Examples:
    CODESIFT__LOGGING__LEVEL=DEBUG
    CODESIFT__STORAGE__DATA_DIR=/var/tmp/codesift
    CODESIFT__SEARCH__TEXT_WEIGHT=1.0
    CODESIFT__INDEXER__MAX_WORKERS=4
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def default_data_dir() -> Path:
    """$XDG_DATA_HOME/codesift, falling back to ~/.local/share/codesift."""
    xdg = os.environ.get("XDG_DATA_HOME")
    base = Path(xdg) if xdg else Path("~/.local/share").expanduser()
    return base / "codesift"


class LogOutputConfig(BaseModel):
    """Single logging output configuration.

    Env vars: Not directly configurable via env (use YAML for multi-output).
    """

    format: Literal["json", "console"] = "console"
    destination: str = "stderr"  # stderr, stdout, or absolute file path
    level: LogLevel | None = None  # Inherits from parent if None

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        if v in ("stderr", "stdout"):
            return v
        path = Path(v).expanduser()
        if not path.is_absolute():
            raise ValueError(f"File destination must be absolute path: {v}")
        return str(path)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Env vars:
        CODESIFT__LOGGING__LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    level: LogLevel = Field(
        default="WARNING",
        description="Root log level. The CLI keeps the console quiet unless -v is given.",
    )
    outputs: list[LogOutputConfig] = Field(default_factory=lambda: [LogOutputConfig()])


class StorageConfig(BaseModel):
    """Where index directories live.

    Env vars:
        CODESIFT__STORAGE__DATA_DIR: Root of the index store
    """

    data_dir: Path = Field(
        default_factory=default_data_dir,
        description="Index store root. Each workspace gets indexes/<identity-hash>/ below it.",
    )

    @field_validator("data_dir")
    @classmethod
    def expand_data_dir(cls, v: Path) -> Path:
        return Path(v).expanduser()

    @property
    def indexes_dir(self) -> Path:
        return self.data_dir / "indexes"


class IndexerConfig(BaseModel):
    """Walker, builder and updater configuration.

    Env vars:
        CODESIFT__INDEXER__MAX_FILE_SIZE_MB: Skip files larger than this
        CODESIFT__INDEXER__MAX_WORKERS: Parallel tokenize/embed workers
        CODESIFT__INDEXER__DEBOUNCE_SEC: Quiet window before applying changes
        CODESIFT__INDEXER__MAX_WAIT_SEC: Upper bound on batching delay
    """

    max_file_size_mb: float = Field(
        default=1.0,
        description="Skip files larger than this (MB). Large files are rarely source code.",
    )
    max_workers: int = Field(
        default=4,
        description="Worker threads used to read and tokenize files during builds and updates.",
    )
    respect_gitignore: bool = Field(
        default=True,
        description="Apply .gitignore patterns in addition to .siftignore.",
    )
    follow_symlinks: bool = Field(
        default=True,
        description="Follow symlinked files and directories (cycles are always pruned).",
    )
    extra_ignore: list[str] = Field(
        default_factory=list,
        description="Additional gitignore-style patterns applied to every workspace.",
    )
    debounce_sec: float = Field(
        default=0.5,
        description="Quiet window: a batch is flushed once no event arrived for this long.",
    )
    max_wait_sec: float = Field(
        default=2.0,
        description="A batch is flushed after this long even if events keep arriving.",
    )
    queue_max_size: int = Field(
        default=10000,
        description="Max pending paths per batch. Excess paths are dropped (logged).",
    )

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_workers must be >= 1, got {v}")
        return v

    @model_validator(mode="after")
    def validate_windows(self) -> IndexerConfig:
        if self.debounce_sec < 0 or self.max_wait_sec < self.debounce_sec:
            raise ValueError("require 0 <= debounce_sec <= max_wait_sec")
        return self

    @property
    def max_file_size_bytes(self) -> int:
        return int(self.max_file_size_mb * 1024 * 1024)


class EmbeddingConfig(BaseModel):
    """Semantic index configuration.

    Env vars:
        CODESIFT__EMBEDDING__MODEL_NAME: fastembed model identifier
        CODESIFT__EMBEDDING__BATCH_SIZE: Texts per embedding call
    """

    model_name: str = Field(
        default="BAAI/bge-small-en-v1.5",
        description="fastembed TextEmbedding model. Changing it requires a rebuild.",
    )
    cache_dir: Path | None = Field(
        default=None,
        description="Model download cache. Defaults to <data_dir>/models.",
    )
    batch_size: int = Field(default=64, description="Texts per embedding call.")
    chunk_lines: int = Field(default=40, description="Lines per chunk window.")
    chunk_overlap: int = Field(default=10, description="Lines shared by adjacent chunks.")
    min_chunk_chars: int = Field(
        default=50,
        description="Chunks with fewer non-whitespace characters are not embedded.",
    )
    max_chunk_chars: int = Field(
        default=4096,
        description="Chunk text is truncated to this many characters before embedding.",
    )
    hnsw_m: int = Field(default=16, description="HNSW max neighbours per node (layer > 0).")
    hnsw_ef_construction: int = Field(default=200, description="HNSW build beam width.")
    hnsw_ef_search: int = Field(default=64, description="HNSW minimum query beam width.")
    seed: int = Field(default=42, description="Seed for HNSW level assignment.")

    @model_validator(mode="after")
    def validate_chunking(self) -> EmbeddingConfig:
        if self.chunk_lines < 1 or not 0 <= self.chunk_overlap < self.chunk_lines:
            raise ValueError("require chunk_lines >= 1 and 0 <= chunk_overlap < chunk_lines")
        if self.hnsw_m < 2:
            raise ValueError("hnsw_m must be >= 2")
        return self


class SearchConfig(BaseModel):
    """Query defaults and ranking parameters.

    Env vars:
        CODESIFT__SEARCH__DEFAULT_LIMIT: Default result count
        CODESIFT__SEARCH__TEXT_WEIGHT / CODESIFT__SEARCH__VECTOR_WEIGHT: Fusion weights
    """

    default_limit: int = Field(default=20, description="Default number of hits.")
    context_lines: int = Field(default=2, description="Snippet lines before/after a hit.")
    text_weight: float = Field(default=1.0, description="Weight of normalised text scores.")
    vector_weight: float = Field(default=0.5, description="Weight of normalised vector scores.")
    vector_candidates: int = Field(
        default=50,
        description="Chunks retrieved from the vector index before fusion.",
    )
    min_similarity: float = Field(
        default=0.0,
        description="Vector hits with cosine similarity below this are discarded.",
    )

    @field_validator("text_weight", "vector_weight")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"must be >= 0, got {v}")
        return v


class CodeSiftConfig(BaseModel):
    """Root configuration for codesift.

    All settings can be configured via:
    1. Environment variables: CODESIFT__SECTION__KEY
    2. The global YAML config file
    3. Direct kwargs to load_config()
    """

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    indexer: IndexerConfig = Field(default_factory=IndexerConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
