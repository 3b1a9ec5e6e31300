"""Tests for the query engine over a built sample workspace."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from codesift.config.models import CodeSiftConfig
from codesift.core.errors import InvalidQueryError, NotIndexedError
from codesift.index.models import IndexMode
from codesift.index.ops import IndexCoordinator
from codesift.search.engine import QueryEngine
from codesift.search.models import MatchType, QueryMode, SearchRequest
from codesift.workspace.store import WorkspaceStore

if TYPE_CHECKING:
    from tests.conftest import FakeEmbedder


@pytest.fixture
def text_engine(
    coordinator: IndexCoordinator,
    store: WorkspaceStore,
    config: CodeSiftConfig,
    embedder: FakeEmbedder,
) -> QueryEngine:
    coordinator.build()
    return QueryEngine.open(coordinator.workspace.root_path, store=store, config=config, embedder=embedder)


@pytest.fixture
def semantic_engine(
    coordinator: IndexCoordinator,
    store: WorkspaceStore,
    config: CodeSiftConfig,
    embedder: FakeEmbedder,
) -> QueryEngine:
    coordinator.build(IndexMode.SEMANTIC)
    return QueryEngine.open(coordinator.workspace.root_path, store=store, config=config, embedder=embedder)


class TestOpen:
    def test_given_unindexed_root_when_opened_then_not_indexed_and_nothing_created(
        self, workspace_root: Path, store: WorkspaceStore, config: CodeSiftConfig, data_dir: Path
    ) -> None:
        """Searching an unindexed workspace never writes an index."""
        # When / Then
        with pytest.raises(NotIndexedError) as exc_info:
            QueryEngine.open(workspace_root, store=store, config=config)

        assert "sift index" in (exc_info.value.hint or "")
        assert not data_dir.exists()

    def test_subdirectory_uses_indexed_parent(
        self, text_engine: QueryEngine, store: WorkspaceStore, config: CodeSiftConfig, sample_workspace: Path
    ) -> None:
        engine = QueryEngine.open(sample_workspace / "src", store=store, config=config)
        assert engine.workspace.root_path == sample_workspace.resolve()

    def test_semantic_requested_on_text_index(
        self, text_engine: QueryEngine, store: WorkspaceStore, config: CodeSiftConfig, sample_workspace: Path
    ) -> None:
        with pytest.raises(NotIndexedError):
            QueryEngine.open(sample_workspace, store=store, config=config, requested_mode=IndexMode.SEMANTIC)


class TestLiteralSearch:
    def test_given_literal_query_when_searched_then_case_insensitive_document_hits(
        self, text_engine: QueryEngine
    ) -> None:
        """One hit per document, positioned on its first matching line."""
        # When
        result = text_engine.search("Config")

        # Then
        lines = {hit.path: hit.line for hit in result.hits}
        assert lines == {"src/config.rs": 3, "src/main.rs": 1}
        assert result.total == 2
        assert not result.truncated
        assert all(hit.match_type is MatchType.TEXT for hit in result.hits)
        assert all(0.0 < hit.score <= 1.0 for hit in result.hits)

    def test_snippet_carries_context(self, text_engine: QueryEngine) -> None:
        hit = text_engine.search("authenticate_user").hits[0]
        assert hit.path == "app/auth.py"
        assert (hit.line, hit.line_start, hit.line_end) == (4, 2, 6)
        assert hit.snippet.splitlines()[2].startswith("def authenticate_user")
        assert hit.language == "python"

    def test_zero_context_is_single_line(self, text_engine: QueryEngine) -> None:
        hit = text_engine.search("authenticate_user", context_lines=0).hits[0]
        assert hit.snippet == "def authenticate_user(username, password):"

    def test_snippet_clamped_at_file_start(self, text_engine: QueryEngine) -> None:
        hit = text_engine.search("parse_port").hits[0]
        assert (hit.line_start, hit.line) == (1, 1)

    def test_partial_identifier_matches(self, text_engine: QueryEngine) -> None:
        result = text_engine.search("enticate_us")
        assert [hit.path for hit in result.hits] == ["app/auth.py"]

    def test_no_matches(self, text_engine: QueryEngine) -> None:
        result = text_engine.search("definitely_absent_token")
        assert result.hits == []
        assert result.total == 0

    @pytest.mark.parametrize("query", ["", "   "])
    def test_blank_query_is_invalid(self, text_engine: QueryEngine, query: str) -> None:
        with pytest.raises(InvalidQueryError):
            text_engine.search(query)

    def test_bad_option_is_invalid_query(self, text_engine: QueryEngine) -> None:
        with pytest.raises(InvalidQueryError):
            text_engine.search("port", limit=0)


class TestRegexSearch:
    def test_struct_definition_found_by_literal_and_regex(self, text_engine: QueryEngine) -> None:
        literal = text_engine.search("pub struct Config {")
        regex = text_engine.search(r"pub\s+struct\s+Config", mode=QueryMode.REGEX)
        assert [(hit.path, hit.line) for hit in literal.hits] == [("src/config.rs", 3)]
        assert [(hit.path, hit.line) for hit in regex.hits] == [("src/config.rs", 3)]

    def test_regex_ranks_by_first_match_line(self, text_engine: QueryEngine) -> None:
        result = text_engine.search(r"def \w+_port", mode=QueryMode.REGEX)
        assert [hit.path for hit in result.hits] == ["app/util.py"]
        assert result.hits[0].score == pytest.approx(1.0)

    def test_invalid_regex(self, text_engine: QueryEngine) -> None:
        with pytest.raises(InvalidQueryError):
            text_engine.search("(unclosed", mode=QueryMode.REGEX)

    def test_prebuilt_request(self, text_engine: QueryEngine) -> None:
        result = text_engine.search(SearchRequest(query="^fn main", mode=QueryMode.REGEX))
        assert [(hit.path, hit.line) for hit in result.hits] == [("src/main.rs", 3)]


class TestFiltersAndLimits:
    def test_given_path_filter_when_searched_then_total_counts_filtered_hits(
        self, text_engine: QueryEngine
    ) -> None:
        """Filters apply before truncation and before counting."""
        # Given
        unfiltered = text_engine.search("port")

        # When
        filtered = text_engine.search("port", paths=["util"])

        # Then
        assert {hit.path for hit in unfiltered.hits} >= {"app/auth.py", "app/util.py"}
        assert [hit.path for hit in filtered.hits] == ["app/util.py"]
        assert filtered.total == 1

    def test_extension_filter(self, text_engine: QueryEngine) -> None:
        result = text_engine.search("config", extensions=[".RS"])
        assert {hit.path for hit in result.hits} == {"src/config.rs", "src/main.rs"}
        assert text_engine.search("config", extensions=["py"]).hits == []

    def test_limit_truncates(self, text_engine: QueryEngine) -> None:
        result = text_engine.search(".", mode=QueryMode.REGEX, limit=2)
        assert len(result.hits) == 2
        assert result.total == 5
        assert result.truncated


class TestSemanticSearch:
    def test_given_semantic_index_when_query_matches_text_then_hybrid_hit(
        self, semantic_engine: QueryEngine
    ) -> None:
        """A document found by both paths is reported once, as hybrid."""
        # When
        result = semantic_engine.search("password")

        # Then
        by_path = {hit.path: hit for hit in result.hits}
        assert by_path["app/auth.py"].match_type is MatchType.HYBRID
        assert result.hits[0].path == "app/auth.py"
        assert len(by_path) == len(result.hits)
        assert result.semantic_hits >= 1
        assert result.warnings == []

    def test_semantic_only_hits_start_at_chunk(self, semantic_engine: QueryEngine) -> None:
        result = semantic_engine.search("authenticate user password", context_lines=1)
        assert result.hits
        for hit in result.hits:
            assert hit.match_type is MatchType.SEMANTIC
            assert hit.line == hit.line_start
            assert hit.line_end - hit.line_start <= 2

    def test_text_only_skips_vectors(self, semantic_engine: QueryEngine, embedder: FakeEmbedder) -> None:
        calls = embedder.calls
        result = semantic_engine.search("password", text_only=True)
        assert all(hit.match_type is MatchType.TEXT for hit in result.hits)
        assert embedder.calls == calls

    def test_regex_never_uses_vectors(self, semantic_engine: QueryEngine) -> None:
        result = semantic_engine.search("pass.ord", mode=QueryMode.REGEX)
        assert all(hit.match_type is MatchType.TEXT for hit in result.hits)

    def test_given_unavailable_embeddings_when_searched_then_text_with_warning(
        self,
        sample_workspace: Path,
        store: WorkspaceStore,
        config: CodeSiftConfig,
        unavailable_embedder: FakeEmbedder,
    ) -> None:
        """A semantic workspace without embeddings degrades to text results."""
        # Given
        workspace = store.resolve(sample_workspace)
        IndexCoordinator(workspace, store, config, unavailable_embedder).build(IndexMode.SEMANTIC)
        engine = QueryEngine.open(sample_workspace, store=store, config=config, embedder=unavailable_embedder)

        # When
        result = engine.search("password")

        # Then
        assert [hit.path for hit in result.hits] == ["app/auth.py"]
        assert result.hits[0].match_type is MatchType.TEXT
        assert result.warnings
