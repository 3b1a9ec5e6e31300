"""Tests for IndexCoordinator: builds, refreshes and incremental updates."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from codesift.config.constants import SCHEMA_VERSION
from codesift.config.models import CodeSiftConfig
from codesift.core.errors import IndexLockedError, NotIndexedError
from codesift.index.models import ChangeKind, IndexMode, VectorStatus, WatchEvent
from codesift.index.ops import IndexCoordinator
from codesift.workspace.lock import writer_lock
from codesift.workspace.store import WorkspaceStore

if TYPE_CHECKING:
    from tests.conftest import FakeEmbedder


def _paths(coordinator: IndexCoordinator) -> set[str]:
    return set(coordinator.text.snapshot.paths)


class TestBuild:
    def test_given_fresh_workspace_when_build_then_text_mode_committed(
        self, coordinator: IndexCoordinator, store: WorkspaceStore
    ) -> None:
        """A first build without a mode indexes every file in text mode."""
        # When
        summary = coordinator.build()

        # Then
        assert summary.mode is IndexMode.TEXT
        assert summary.files_indexed == 5
        assert summary.vector_status is VectorStatus.DISABLED
        assert summary.failures == []
        assert store.is_indexed(coordinator.workspace)
        metadata = coordinator.metadata()
        assert metadata is not None
        assert metadata.doc_count == 5
        assert metadata.last_build_time is not None
        assert metadata.embedding_model is None

    def test_given_semantic_mode_when_build_then_chunks_embedded(
        self, coordinator: IndexCoordinator, embedder: FakeEmbedder
    ) -> None:
        """Semantic builds embed every document's chunks."""
        # When
        summary = coordinator.build(IndexMode.SEMANTIC)

        # Then
        assert summary.vector_status is VectorStatus.ACTIVE
        assert summary.chunks_embedded >= 5
        assert embedder.calls > 0
        metadata = coordinator.metadata()
        assert metadata is not None
        assert metadata.mode is IndexMode.SEMANTIC
        assert metadata.embedding_model == "fake-embedder"
        assert metadata.chunk_count == summary.chunks_embedded

    def test_mode_is_sticky(
        self, coordinator: IndexCoordinator, store: WorkspaceStore, config: CodeSiftConfig, embedder: FakeEmbedder
    ) -> None:
        coordinator.build(IndexMode.SEMANTIC)
        again = IndexCoordinator(coordinator.workspace, store, config, embedder).build()
        assert again.mode is IndexMode.SEMANTIC

    def test_explicit_mode_switch_rebuilds(self, coordinator: IndexCoordinator) -> None:
        coordinator.build(IndexMode.SEMANTIC)
        summary = coordinator.build(IndexMode.TEXT)
        assert summary.mode is IndexMode.TEXT
        assert summary.vector_status is VectorStatus.DISABLED
        assert coordinator.vector.chunk_count == 0

    def test_given_unavailable_embedder_when_semantic_build_then_text_still_usable(
        self,
        sample_workspace: Path,
        store: WorkspaceStore,
        config: CodeSiftConfig,
        unavailable_embedder: FakeEmbedder,
    ) -> None:
        """Missing embeddings leave a working text index behind."""
        # Given
        workspace = store.resolve(sample_workspace)
        coordinator = IndexCoordinator(workspace, store, config, unavailable_embedder)

        # When
        summary = coordinator.build(IndexMode.SEMANTIC)

        # Then
        assert summary.vector_status is VectorStatus.UNSUPPORTED
        assert summary.files_indexed == 5
        assert summary.chunks_embedded == 0
        assert unavailable_embedder.calls == 0
        assert coordinator.text.search_literal("authenticate_user")

    def test_skipped_files_are_counted(self, coordinator: IndexCoordinator, sample_workspace: Path) -> None:
        (sample_workspace / "blob.bin").write_bytes(b"\x00\x01\x02binary")
        summary = coordinator.build()
        assert summary.files_indexed == 5
        assert summary.files_skipped >= 1
        assert summary.skipped_by_reason.get("binary") == 1


class TestRefresh:
    def test_given_modified_file_when_build_again_then_only_changes_applied(
        self, coordinator: IndexCoordinator, sample_workspace: Path
    ) -> None:
        """A second build refreshes in place and keeps unchanged doc ids."""
        # Given
        coordinator.build()
        before = dict(coordinator.text.snapshot.paths)
        (sample_workspace / "app" / "util.py").write_text("def parse_port(value):\n    return quux(value)\n")
        (sample_workspace / "README.md").unlink()

        # When
        summary = coordinator.build()

        # Then
        assert summary.files_indexed == 4
        after = coordinator.text.snapshot.paths
        assert "README.md" not in after
        assert after["src/config.rs"] == before["src/config.rs"]
        assert coordinator.text.search_literal("quux")

    def test_rebuild_reallocates_from_scratch(self, coordinator: IndexCoordinator) -> None:
        coordinator.build()
        (coordinator.workspace.root_path / "README.md").unlink()
        coordinator.build()
        summary = coordinator.build(rebuild=True)
        assert summary.files_indexed == 4
        paths = coordinator.text.snapshot.paths
        assert sorted(paths.values()) == [0, 1, 2, 3]
        assert paths["app/auth.py"] == 0

    def test_rebuild_is_deterministic(self, coordinator: IndexCoordinator) -> None:
        coordinator.build()
        first = coordinator.text.snapshot
        first_ranking = coordinator.text.query(["config", "port"])
        coordinator.build(rebuild=True)
        second = coordinator.text.snapshot
        assert second.paths == first.paths
        assert coordinator.text.query(["config", "port"]) == first_ranking

    def test_given_touched_file_when_refreshed_then_mtime_updated_and_content_kept(
        self, coordinator: IndexCoordinator, sample_workspace: Path
    ) -> None:
        """A refresh records the new mtime of a file whose content did not change."""
        # Given
        coordinator.build()
        before = coordinator.text.snapshot.paths["README.md"]
        os.utime(sample_workspace / "README.md", (1_600_000_000, 1_600_000_000))

        # When
        coordinator.build()

        # Then
        document = coordinator.text.snapshot.document_for_path("README.md")
        assert document is not None
        assert document.mtime == 1_600_000_000
        assert document.doc_id == before
        assert coordinator.text.search_literal("tiny workspace")

    def test_schema_mismatch_forces_full_build(
        self, coordinator: IndexCoordinator, store: WorkspaceStore
    ) -> None:
        coordinator.build()
        metadata = coordinator.metadata()
        assert metadata is not None
        store.write_metadata(
            coordinator.workspace, metadata.model_copy(update={"schema_version": SCHEMA_VERSION + 1})
        )
        coordinator.build()
        refreshed = coordinator.metadata()
        assert refreshed is not None
        assert refreshed.schema_version == SCHEMA_VERSION


class TestOpen:
    def test_unbuilt_workspace_is_not_indexed(self, coordinator: IndexCoordinator) -> None:
        with pytest.raises(NotIndexedError):
            coordinator.open()

    def test_open_loads_committed_index(
        self, coordinator: IndexCoordinator, store: WorkspaceStore, config: CodeSiftConfig, embedder: FakeEmbedder
    ) -> None:
        coordinator.build(IndexMode.SEMANTIC)
        reader = IndexCoordinator(coordinator.workspace, store, config, embedder)
        metadata = reader.open()
        assert metadata.mode is IndexMode.SEMANTIC
        assert reader.vector.status is VectorStatus.ACTIVE
        assert reader.text.snapshot.doc_count == 5


class TestWriterLock:
    def test_given_other_writer_when_build_then_locked_error(
        self, coordinator: IndexCoordinator, store: WorkspaceStore
    ) -> None:
        """A second writer fails fast instead of waiting."""
        # Given
        store.ensure_index_dir(coordinator.workspace)

        # When / Then
        with writer_lock(coordinator.workspace.lock_path), pytest.raises(IndexLockedError):
            coordinator.build()

    def test_build_inside_writer_session_does_not_relock(self, coordinator: IndexCoordinator) -> None:
        with coordinator.writer():
            summary = coordinator.build()
        assert summary.files_indexed == 5


class TestApplyEvents:
    @pytest.fixture
    def built(self, coordinator: IndexCoordinator) -> IndexCoordinator:
        coordinator.build()
        return coordinator

    def test_given_new_file_when_created_event_then_added(
        self, built: IndexCoordinator, sample_workspace: Path
    ) -> None:
        """Created files become searchable after the batch."""
        # Given
        (sample_workspace / "app" / "billing.py").write_text("def charge_invoice():\n    pass\n")

        # When
        summary = built.apply_events([WatchEvent("app/billing.py", ChangeKind.CREATED)])

        # Then
        assert (summary.added, summary.updated, summary.removed) == (1, 0, 0)
        assert "app/billing.py" in _paths(built)
        assert built.text.search_literal("charge_invoice")

    def test_modified_file_is_updated(self, built: IndexCoordinator, sample_workspace: Path) -> None:
        (sample_workspace / "app" / "util.py").write_text("def parse_port(value):\n    return zorp(value)\n")
        summary = built.apply_events([WatchEvent("app/util.py", ChangeKind.MODIFIED)])
        assert summary.updated == 1
        assert built.text.search_literal("zorp")
        assert not built.text.search_literal("format_port")

    def test_unchanged_content_is_left_alone(self, built: IndexCoordinator, sample_workspace: Path) -> None:
        path = sample_workspace / "app" / "util.py"
        st = path.stat()
        path.write_text(path.read_text())
        os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns))
        generation = built.text.snapshot.generation
        summary = built.apply_events([WatchEvent("app/util.py", ChangeKind.MODIFIED)])
        assert summary.unchanged == 1
        assert summary.changed == 0
        assert built.text.snapshot.generation == generation

    def test_given_touched_file_when_applied_then_stored_mtime_follows(
        self, built: IndexCoordinator, sample_workspace: Path
    ) -> None:
        """Same content with a new mtime updates metadata without counting a change."""
        # Given
        path = sample_workspace / "app" / "util.py"
        os.utime(path, (1_700_000_000, 1_700_000_000))
        doc_id = built.text.snapshot.paths["app/util.py"]

        # When
        summary = built.apply_events([WatchEvent("app/util.py", ChangeKind.MODIFIED)])

        # Then
        assert (summary.unchanged, summary.changed) == (1, 0)
        document = built.text.snapshot.document_for_path("app/util.py")
        assert document is not None
        assert document.mtime == 1_700_000_000
        assert document.doc_id == doc_id

    def test_removed_file_is_dropped(self, built: IndexCoordinator, sample_workspace: Path) -> None:
        (sample_workspace / "README.md").unlink()
        summary = built.apply_events([WatchEvent("README.md", ChangeKind.REMOVED)])
        assert summary.removed == 1
        assert "README.md" not in _paths(built)

    def test_removed_event_for_existing_path_is_a_modification(
        self, built: IndexCoordinator, sample_workspace: Path
    ) -> None:
        (sample_workspace / "README.md").write_text("# Sample\n\nRewritten.\n")
        summary = built.apply_events([WatchEvent("README.md", ChangeKind.REMOVED)])
        assert summary.removed == 0
        assert summary.updated == 1

    def test_given_rename_when_applied_then_old_removed_and_new_added(
        self, built: IndexCoordinator, sample_workspace: Path
    ) -> None:
        """A rename is a removal of the old path plus a creation."""
        # Given
        os.rename(sample_workspace / "app" / "util.py", sample_workspace / "app" / "ports.py")

        # When
        summary = built.apply_events([WatchEvent("app/ports.py", ChangeKind.RENAMED, old_path="app/util.py")])

        # Then
        assert summary.removed == 1
        assert summary.added == 1
        paths = _paths(built)
        assert "app/util.py" not in paths
        assert "app/ports.py" in paths

    def test_removed_directory_drops_its_files(self, built: IndexCoordinator, sample_workspace: Path) -> None:
        for name in ("auth.py", "util.py"):
            (sample_workspace / "app" / name).unlink()
        (sample_workspace / "app").rmdir()
        summary = built.apply_events([WatchEvent("app", ChangeKind.REMOVED)])
        assert summary.removed == 2
        assert not any(p.startswith("app/") for p in _paths(built))

    def test_created_directory_adds_its_files(self, built: IndexCoordinator, sample_workspace: Path) -> None:
        (sample_workspace / "lib" / "inner").mkdir(parents=True)
        (sample_workspace / "lib" / "a.py").write_text("alpha = 1\n")
        (sample_workspace / "lib" / "inner" / "b.py").write_text("beta = 2\n")
        summary = built.apply_events([WatchEvent("lib", ChangeKind.CREATED)])
        assert summary.added == 2

    def test_given_ignore_file_change_when_applied_then_workspace_rescanned(
        self, built: IndexCoordinator, sample_workspace: Path
    ) -> None:
        """Changing ignore rules re-evaluates every indexed path."""
        # Given
        (sample_workspace / ".gitignore").write_text("app/\n")

        # When
        summary = built.apply_events([WatchEvent(".gitignore", ChangeKind.CREATED)])

        # Then
        assert summary.removed == 2
        assert not any(p.startswith("app/") for p in _paths(built))
        assert "src/main.rs" in _paths(built)

    def test_metadata_updated_after_batch(self, built: IndexCoordinator, sample_workspace: Path) -> None:
        (sample_workspace / "new.txt").write_text("hello\n")
        built.apply_events([WatchEvent("new.txt", ChangeKind.CREATED)])
        metadata = built.metadata()
        assert metadata is not None
        assert metadata.doc_count == 6

    def test_semantic_updates_reembed_changed_documents(
        self, coordinator: IndexCoordinator, sample_workspace: Path
    ) -> None:
        coordinator.build(IndexMode.SEMANTIC)
        doc_id = coordinator.text.snapshot.paths["app/util.py"]
        before = {c.chunk_id for c in coordinator.vector.chunks_for(doc_id)}
        (sample_workspace / "app" / "util.py").write_text("def parse_port(value):\n    return int(value, 10)\n")
        coordinator.apply_events([WatchEvent("app/util.py", ChangeKind.MODIFIED)])
        after = {c.chunk_id for c in coordinator.vector.chunks_for(doc_id)}
        assert after
        assert before.isdisjoint(after)

    def test_given_symlink_alias_when_created_event_then_not_indexed_twice(
        self, built: IndexCoordinator, sample_workspace: Path
    ) -> None:
        """A second path to an already indexed file adds no document."""
        # Given
        (sample_workspace / "app" / "auth_alias.py").symlink_to(sample_workspace / "app" / "auth.py")

        # When
        summary = built.apply_events([WatchEvent("app/auth_alias.py", ChangeKind.CREATED)])

        # Then
        assert summary.added == 0
        assert summary.skipped == 1
        assert "app/auth_alias.py" not in _paths(built)
        assert len(built.text.search_literal("authenticate_user")) == 1

    def test_symlink_alias_skipped_after_reopen(
        self,
        built: IndexCoordinator,
        sample_workspace: Path,
        store: WorkspaceStore,
        config: CodeSiftConfig,
        embedder: FakeEmbedder,
    ) -> None:
        reopened = IndexCoordinator(built.workspace, store, config, embedder)
        reopened.open()
        (sample_workspace / "readme_alias.md").symlink_to(sample_workspace / "README.md")
        summary = reopened.apply_events([WatchEvent("readme_alias.md", ChangeKind.CREATED)])
        assert summary.skipped == 1
        assert "readme_alias.md" not in _paths(reopened)

    def test_alias_is_indexed_once_original_is_removed(
        self, built: IndexCoordinator, sample_workspace: Path
    ) -> None:
        target = sample_workspace / "app" / "util.py"
        moved = sample_workspace / "util_moved.py"
        os.rename(target, moved)
        (sample_workspace / "app" / "util_link.py").symlink_to(moved)
        summary = built.apply_events(
            [
                WatchEvent("app/util.py", ChangeKind.REMOVED),
                WatchEvent("util_moved.py", ChangeKind.CREATED),
                WatchEvent("app/util_link.py", ChangeKind.CREATED),
            ]
        )
        paths = _paths(built)
        assert "app/util.py" not in paths
        assert ("util_moved.py" in paths) != ("app/util_link.py" in paths)
        assert summary.skipped == 1
        assert len(built.text.search_literal("parse_port")) == 1
