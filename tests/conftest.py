"""Shared fixtures: isolated index store, sample workspaces, fake embedder."""

from __future__ import annotations

import hashlib
from collections.abc import Callable
from pathlib import Path

import numpy as np
import pytest

from codesift.config.models import CodeSiftConfig, StorageConfig
from codesift.index.ops import IndexCoordinator
from codesift.index.tokenizer import token_texts
from codesift.workspace.store import WorkspaceStore


class FakeEmbedder:
    """Deterministic bag-of-tokens embedder.

    Each token maps to a fixed pseudo-random vector seeded by its hash; a
    text embeds to the sum of its token vectors. Texts sharing tokens are
    therefore close, which is enough to exercise ranking without a model.
    """

    def __init__(self, dimension: int = 32, *, available: bool = True) -> None:
        self._dimension = dimension
        self._available = available
        self.calls = 0

    @property
    def name(self) -> str:
        return "fake-embedder"

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def available(self) -> bool:
        return self._available

    def _token_vector(self, token: str) -> np.ndarray:
        seed = int.from_bytes(hashlib.sha256(token.encode("utf-8")).digest()[:8], "little")
        return np.random.default_rng(seed).standard_normal(self._dimension).astype(np.float32)

    def embed(self, texts: list[str]) -> np.ndarray:
        self.calls += 1
        out = np.zeros((len(texts), self._dimension), dtype=np.float32)
        for i, text in enumerate(texts):
            for token in token_texts(text):
                out[i] += self._token_vector(token)
        return out


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def unavailable_embedder() -> FakeEmbedder:
    return FakeEmbedder(available=False)


@pytest.fixture
def embedder_factory() -> Callable[..., FakeEmbedder]:
    """Builds embedders with a chosen dimension or availability."""
    return FakeEmbedder


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "data"


@pytest.fixture
def config(data_dir: Path) -> CodeSiftConfig:
    return CodeSiftConfig(storage=StorageConfig(data_dir=data_dir))


@pytest.fixture
def store(config: CodeSiftConfig) -> WorkspaceStore:
    return WorkspaceStore(config.storage)


WriteFiles = Callable[[dict[str, str]], Path]


@pytest.fixture
def workspace_root(tmp_path: Path) -> Path:
    root = tmp_path / "repo"
    root.mkdir()
    return root


@pytest.fixture
def write_files(workspace_root: Path) -> WriteFiles:
    """Write ``{relative_path: content}`` under the workspace root."""

    def _write(files: dict[str, str]) -> Path:
        for rel, content in files.items():
            path = workspace_root / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        return workspace_root

    return _write


SAMPLE_FILES: dict[str, str] = {
    "src/config.rs": (
        "use std::path::PathBuf;\n"
        "\n"
        "pub struct Config {\n"
        "    pub root: PathBuf,\n"
        "    pub verbose: bool,\n"
        "}\n"
    ),
    "src/main.rs": (
        "mod config;\n"
        "\n"
        "fn main() {\n"
        "    let cfg = config::Config::default();\n"
        '    println!("{:?}", cfg.root);\n'
        "}\n"
    ),
    "app/auth.py": (
        "import hashlib\n"
        "\n"
        "\n"
        "def authenticate_user(username, password):\n"
        '    """Check a password against the stored hash."""\n'
        "    digest = hashlib.sha256(password.encode()).hexdigest()\n"
        "    return lookup_user(username).password_hash == digest\n"
    ),
    "app/util.py": (
        "def parse_port(value):\n"
        "    return int(value)\n"
        "\n"
        "\n"
        "def format_port(port):\n"
        '    return f"port={port}"\n'
    ),
    "README.md": "# Sample\n\nA tiny workspace used in tests.\n",
}


@pytest.fixture
def sample_workspace(write_files: WriteFiles) -> Path:
    return write_files(SAMPLE_FILES)


@pytest.fixture
def coordinator(
    sample_workspace: Path,
    store: WorkspaceStore,
    config: CodeSiftConfig,
    embedder: FakeEmbedder,
) -> IndexCoordinator:
    """Coordinator for the sample workspace; nothing is built yet."""
    workspace = store.resolve(sample_workspace)
    return IndexCoordinator(workspace, store, config, embedder)
