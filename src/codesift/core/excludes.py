"""Canonical exclude patterns with tiered architecture.

Tier 0 (HARDCODED_DIRS): Never traversed, not user-configurable.
    - VCS internals
    - These are ALWAYS excluded regardless of .siftignore

Tier 1 (DEFAULT_PRUNABLE_DIRS): Excluded by default, user can override with !pattern.
    - Dependencies, caches, build outputs
    - Users can opt-in by adding "!dirname/" to .siftignore

Binary detection lives here too: a fixed extension list plus the NUL-byte
sniff used by the walker.
"""

from __future__ import annotations

from pathlib import PurePath

# =============================================================================
# Tier 0: HARDCODED - Never traverse, not user-configurable
# =============================================================================

HARDCODED_DIRS: frozenset[str] = frozenset(
    (
        ".git",
        ".svn",
        ".hg",
        ".bzr",
        "_darcs",
        ".fossil",
    )
)

# =============================================================================
# Tier 1: DEFAULT_PRUNABLE - Excluded by default, user can override
# =============================================================================
# Organized by ecosystem for maintainability.

DEFAULT_PRUNABLE_DIRS: frozenset[str] = frozenset(
    (
        # JavaScript/Node.js
        "node_modules",
        ".npm",
        ".yarn",
        ".pnpm-store",
        "bower_components",
        ".next",
        ".nuxt",
        ".turbo",
        # Python
        "venv",
        ".venv",
        "__pycache__",
        ".mypy_cache",
        ".pytest_cache",
        ".ruff_cache",
        ".tox",
        ".nox",
        "site-packages",
        # Ruby
        ".bundle",
        # Rust / JVM / generic build output
        "target",
        "build",
        "dist",
        "out",
        ".gradle",
        # Elixir/Erlang
        "_build",
        "deps",
        # Haskell
        ".stack-work",
        "dist-newstyle",
        # .NET
        "bin",
        "obj",
        # iOS/macOS
        "Pods",
        "DerivedData",
        # Infrastructure
        ".terraform",
        ".serverless",
        # IDE/Editor
        ".idea",
        ".vscode",
        # Misc caches
        ".cache",
        "coverage",
        ".nyc_output",
    )
)


def is_hardcoded_dir(dirname: str) -> bool:
    """Check if directory is hardcoded (never traversable, not overridable)."""
    return dirname in HARDCODED_DIRS


def is_default_prunable(dirname: str) -> bool:
    """Check if directory is prunable by default (but user can override)."""
    return dirname in DEFAULT_PRUNABLE_DIRS


def is_hidden_dir(dirname: str) -> bool:
    """Dot-directories are skipped unless re-included by an ignore negation."""
    return dirname.startswith(".") and dirname not in (".", "..")


# =============================================================================
# Binary files
# =============================================================================

BINARY_EXTENSIONS: frozenset[str] = frozenset(
    (
        # Images
        ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".webp", ".tiff", ".psd",
        # Audio/video
        ".mp3", ".mp4", ".wav", ".ogg", ".flac", ".avi", ".mov", ".mkv", ".webm",
        # Archives
        ".zip", ".tar", ".gz", ".tgz", ".bz2", ".xz", ".7z", ".rar", ".zst", ".jar",
        ".war", ".whl", ".egg",
        # Compiled objects and executables
        ".o", ".a", ".so", ".dylib", ".dll", ".exe", ".bin", ".obj", ".lib",
        ".class", ".pyc", ".pyo", ".pyd", ".beam", ".wasm", ".rlib",
        # Documents and fonts
        ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
        ".ttf", ".otf", ".woff", ".woff2", ".eot",
        # Data blobs
        ".db", ".sqlite", ".sqlite3", ".npy", ".npz", ".pkl", ".parquet",
        ".onnx", ".pt", ".safetensors",
    )
)

BINARY_SNIFF_BYTES = 8192
"""Number of leading bytes inspected for a NUL byte."""


def has_binary_extension(path: str | PurePath) -> bool:
    return PurePath(path).suffix.lower() in BINARY_EXTENSIONS


def looks_binary(head: bytes) -> bool:
    """True if the sniffed prefix of a file contains a NUL byte."""
    return b"\x00" in head[:BINARY_SNIFF_BYTES]

