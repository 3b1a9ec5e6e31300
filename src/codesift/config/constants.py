"""Configuration constants.

This module contains truly constant values that should NOT be user-configurable.
These are on-disk format identifiers, hard limits and implementation details.

For configurable values, see models.py (IndexerConfig, SearchConfig, etc.).
"""

# =============================================================================
# On-disk layout
# =============================================================================

SCHEMA_VERSION = 2
"""Bumped on any incompatible change to the persisted layout. A mismatch
forces a rebuild; there is no migration."""

IDENTITY_HASH_LENGTH = 16
"""Hex characters of SHA-256(canonical root) used as the index directory name."""

METADATA_FILE = "metadata.json"
LOCK_FILE = ".lock"
TEXT_DIR = "text"
TEXT_META_FILE = "meta.json"
"""Written by Tantivy on every commit; its presence marks a committed text index."""
VECTOR_DIR = "vectors"
VECTOR_GRAPH_FILE = "graph.bin"
VECTOR_CHUNKS_FILE = "chunks.json"
SIFTIGNORE_FILE = ".siftignore"

# =============================================================================
# Query limits
# =============================================================================

SEARCH_MAX_LIMIT = 1000
"""Maximum hits a single query may return."""

SEARCH_CONTEXT_LINES_MAX = 25
"""Maximum snippet context lines before/after a hit."""

CANCELLATION_CHECK_INTERVAL = 256
"""Documents scanned by a regex query between cancellation checks."""

# =============================================================================
# Internal Implementation Constants
# =============================================================================

PARENT_DISCOVERY_MAX_DEPTH = 10
"""Ancestor directories inspected when looking for an indexed workspace."""

EMBEDDING_DIMENSION_DEFAULT = 384
"""Dimension of the default fastembed model (bge-small-en-v1.5)."""

WATCH_STOP_TIMEOUT_SEC = 5.0
"""Join timeout for watcher/dispatcher threads on shutdown."""
