"""Tests for event coalescing and the debounced updater."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from codesift.daemon.updater import Updater, UpdaterState, coalesce_events
from codesift.index.models import ChangeKind, UpdateSummary, WatchEvent
from codesift.index.ops import IndexCoordinator


def _ev(path: str, kind: ChangeKind, old_path: str | None = None) -> WatchEvent:
    return WatchEvent(path, kind, old_path)


class TestCoalesceEvents:
    def test_created_then_modified_stays_created(self) -> None:
        merged = coalesce_events([_ev("a.py", ChangeKind.CREATED), _ev("a.py", ChangeKind.MODIFIED)])
        assert merged == [_ev("a.py", ChangeKind.CREATED)]

    def test_removed_then_created_is_modified(self) -> None:
        merged = coalesce_events([_ev("a.py", ChangeKind.REMOVED), _ev("a.py", ChangeKind.CREATED)])
        assert merged == [_ev("a.py", ChangeKind.MODIFIED)]

    def test_latest_kind_wins_otherwise(self) -> None:
        merged = coalesce_events([_ev("a.py", ChangeKind.MODIFIED), _ev("a.py", ChangeKind.REMOVED)])
        assert merged == [_ev("a.py", ChangeKind.REMOVED)]

    def test_given_rename_then_removal_when_coalesced_then_both_paths_removed(self) -> None:
        """Removing a just-renamed file removes its old path as well."""
        # Given
        events = [
            _ev("new.py", ChangeKind.RENAMED, old_path="old.py"),
            _ev("new.py", ChangeKind.REMOVED),
        ]

        # When
        merged = coalesce_events(events)

        # Then
        assert merged == [_ev("new.py", ChangeKind.REMOVED), _ev("old.py", ChangeKind.REMOVED)]

    def test_one_event_per_path_sorted(self) -> None:
        merged = coalesce_events(
            [_ev("b.py", ChangeKind.MODIFIED), _ev("a.py", ChangeKind.CREATED), _ev("b.py", ChangeKind.MODIFIED)]
        )
        assert [e.path for e in merged] == ["a.py", "b.py"]

    def test_empty(self) -> None:
        assert coalesce_events([]) == []


class TestUpdater:
    @pytest.fixture
    def built(self, coordinator: IndexCoordinator) -> IndexCoordinator:
        coordinator.build()
        return coordinator

    def test_given_queued_events_when_flush_then_applied_once(
        self, built: IndexCoordinator, sample_workspace: Path
    ) -> None:
        """Repeated events for one path collapse into a single update."""
        # Given
        updater = Updater(coordinator=built)
        (sample_workspace / "notes.txt").write_text("first draft\n")
        updater.submit([_ev("notes.txt", ChangeKind.CREATED)])
        (sample_workspace / "notes.txt").write_text("second draft\n")
        updater.submit([_ev("notes.txt", ChangeKind.MODIFIED)])
        assert updater.status().pending == 1

        # When
        summary = updater.flush()

        # Then
        assert summary is not None
        assert summary.added == 1
        assert updater.status().pending == 0
        assert updater.status().batches == 1
        assert built.text.search_literal("second draft")

    def test_flush_with_nothing_pending(self, built: IndexCoordinator) -> None:
        assert Updater(coordinator=built).flush() is None

    def test_given_overflow_when_flushed_then_full_rescan(
        self, built: IndexCoordinator, sample_workspace: Path
    ) -> None:
        """Too many pending paths are dropped in favour of one rescan."""
        # Given
        updater = Updater(coordinator=built, queue_max_size=2)
        for name in ("one.txt", "two.txt", "three.txt"):
            (sample_workspace / name).write_text(f"{name}\n")
        updater.submit([_ev(n, ChangeKind.CREATED) for n in ("one.txt", "two.txt", "three.txt")])

        # When
        summary = updater.flush()

        # Then
        assert summary is not None
        assert updater.status().pending == 0
        assert {"one.txt", "two.txt", "three.txt"} <= set(built.text.snapshot.paths)

    @pytest.mark.slow
    def test_given_running_dispatcher_when_events_submitted_then_batch_delivered(
        self, built: IndexCoordinator, sample_workspace: Path
    ) -> None:
        """The dispatcher thread applies a batch after the debounce window."""
        # Given
        delivered: list[UpdateSummary] = []
        done = threading.Event()

        def on_batch(summary: UpdateSummary) -> None:
            delivered.append(summary)
            done.set()

        updater = Updater(coordinator=built, debounce_sec=0.05, max_wait_sec=0.5, on_batch=on_batch)
        updater.start()
        try:
            (sample_workspace / "late.txt").write_text("late arrival\n")

            # When
            updater.submit([_ev("late.txt", ChangeKind.CREATED)])

            # Then
            assert done.wait(timeout=5.0)
        finally:
            updater.stop()
        assert delivered[0].added == 1
        assert updater.status().state is UpdaterState.STOPPED

    def test_stop_drains_pending_events(self, built: IndexCoordinator, sample_workspace: Path) -> None:
        updater = Updater(coordinator=built, debounce_sec=60.0, max_wait_sec=60.0)
        updater.start()
        (sample_workspace / "pending.txt").write_text("drained on stop\n")
        updater.submit([_ev("pending.txt", ChangeKind.CREATED)])
        updater.stop()
        assert "pending.txt" in built.text.snapshot.paths
