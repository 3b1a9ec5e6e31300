"""Tests for structured logging setup."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from codesift.config.models import LoggingConfig, LogOutputConfig
from codesift.core.logging import (
    clear_operation_id,
    configure_logging,
    get_log_file_path,
    get_operation_id,
    is_console_suppressed,
    set_operation_id,
    suppress_console,
)


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    yield
    clear_operation_id()
    root = logging.getLogger()
    for handler in root.handlers:
        handler.close()
    root.handlers.clear()


class TestOperationId:
    def test_generated_id_is_short_hex(self) -> None:
        oid = set_operation_id()
        assert get_operation_id() == oid
        assert len(oid) == 12
        int(oid, 16)

    def test_explicit_id_and_clear(self) -> None:
        set_operation_id("build-1")
        assert get_operation_id() == "build-1"
        clear_operation_id()
        assert get_operation_id() is None


class TestConfigureLogging:
    def test_given_file_output_when_logging_then_json_lines_written(self, tmp_path: Path) -> None:
        """A JSON file output receives structured events with the operation id."""
        # Given
        log_file = tmp_path / "logs" / "sift.log"
        configure_logging(
            config=LoggingConfig(
                level="DEBUG",
                outputs=[LogOutputConfig(destination=str(log_file), format="json")],
            )
        )
        set_operation_id("op-42")

        # When
        structlog.get_logger().info("index.build_complete", files=3)
        for handler in logging.getLogger().handlers:
            handler.flush()

        # Then
        assert get_log_file_path() == log_file
        record = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert record["event"] == "index.build_complete"
        assert record["files"] == 3
        assert record["operation_id"] == "op-42"
        assert record["level"] == "info"

    def test_debug_env_var_forces_debug(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CODESIFT_DEBUG", "1")
        configure_logging(level="WARNING")
        assert logging.getLogger().level == logging.DEBUG

    def test_console_only_has_no_log_file(self) -> None:
        configure_logging(level="INFO")
        assert get_log_file_path() is None
        assert logging.getLogger("watchfiles").level == logging.WARNING


class TestSuppressConsole:
    def test_suppression_is_scoped(self) -> None:
        assert not is_console_suppressed()
        with suppress_console():
            assert is_console_suppressed()
        assert not is_console_suppressed()
