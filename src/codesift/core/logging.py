"""Structured logging with multi-output support.

Supports:
- Separate console vs file log levels
- Console suppression while a Rich live display owns the terminal
- Log file path tracking for error pointers
- Operation correlation IDs (one per build / update batch)
"""

from __future__ import annotations

import logging
import os
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import structlog

if TYPE_CHECKING:
    from codesift.config.models import LoggingConfig

DEBUG_ENV_VAR = "CODESIFT_DEBUG"

_operation_id: ContextVar[str | None] = ContextVar("operation_id", default=None)

# Track the current log file path for error pointers
_log_file_path: Path | None = None

_console_suppressed = threading.Event()


def get_operation_id() -> str | None:
    return _operation_id.get()


def set_operation_id(operation_id: str | None = None) -> str:
    """Set or generate an operation correlation ID."""
    oid = operation_id or uuid4().hex[:12]
    _operation_id.set(oid)
    return oid


def clear_operation_id() -> None:
    _operation_id.set(None)


def get_log_file_path() -> Path | None:
    """Get the current log file path, if any."""
    return _log_file_path


def _set_log_file_path(path: Path | None) -> None:
    global _log_file_path
    _log_file_path = path


def is_console_suppressed() -> bool:
    return _console_suppressed.is_set()


@contextmanager
def suppress_console() -> Iterator[None]:
    """Hide console log lines while a progress display is live."""
    _console_suppressed.set()
    try:
        yield
    finally:
        _console_suppressed.clear()


def _add_operation_id(
    _logger: structlog.types.WrappedLogger,
    _method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    if oid := get_operation_id():
        event_dict["operation_id"] = oid
    return event_dict


_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class ConsoleSuppressingFilter(logging.Filter):
    """Drops console records while a Rich live display is active."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: ARG002
        return not is_console_suppressed()


def debug_requested() -> bool:
    return os.environ.get(DEBUG_ENV_VAR, "").lower() in ("1", "true", "yes")


def configure_logging(
    *,
    config: LoggingConfig | None = None,
    json_format: bool = False,
    level: str = "WARNING",
) -> None:
    """Configure structlog. Pass config for multi-output, or use simple params.

    Args:
        config: Logging configuration with outputs
        json_format: Use JSON format for simple setup
        level: Default log level
    """
    from codesift.config.models import LoggingConfig, LogOutputConfig

    if config is None:
        config = LoggingConfig(
            level=level,  # type: ignore[arg-type]
            outputs=[LogOutputConfig(format="json" if json_format else "console")],
        )
    if debug_requested():
        config = config.model_copy(update={"level": "DEBUG"})

    default_level = _LEVEL_MAP.get(config.level.upper(), logging.WARNING)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", key="timestamp"),
        _add_operation_id,  # type: ignore[list-item]
    ]

    _configure_stdlib_logging(config, shared_processors, default_level)


def _create_handler(destination: str, is_console: bool = False) -> logging.Handler:
    """Create handler for stderr, stdout, or file path."""
    handler: logging.Handler
    if destination == "stderr":
        handler = logging.StreamHandler(sys.stderr)
    elif destination == "stdout":
        handler = logging.StreamHandler(sys.stdout)
    else:
        path = Path(destination)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, mode="a")

    if is_console:
        handler.addFilter(ConsoleSuppressingFilter())

    return handler


def _configure_stdlib_logging(
    config: LoggingConfig,
    shared_processors: list[structlog.types.Processor],
    default_level: int,
) -> None:
    """Configure logging via stdlib (proper file handle management)."""
    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(default_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Don't cache - allows reconfiguration and respects level changes
        cache_logger_on_first_use=False,
    )

    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        handler.close()
    root_logger.handlers.clear()
    root_logger.setLevel(default_level)

    # watchfiles logs every filtered change at debug level
    logging.getLogger("watchfiles").setLevel(logging.WARNING)
    logging.getLogger("watchfiles.main").setLevel(logging.WARNING)

    _set_log_file_path(None)

    for output in config.outputs:
        output_level = _LEVEL_MAP.get((output.level or config.level).upper(), default_level)
        is_console = output.destination in ("stderr", "stdout")

        if not is_console and _log_file_path is None:
            _set_log_file_path(Path(output.destination))

        if output.format == "json":
            formatter = structlog.stdlib.ProcessorFormatter(
                processor=structlog.processors.JSONRenderer(),
                foreign_pre_chain=shared_processors,
            )
        else:
            formatter = structlog.stdlib.ProcessorFormatter(
                processor=structlog.dev.ConsoleRenderer(
                    colors=is_console and sys.stderr.isatty(),
                    pad_event_to=0,
                    pad_level=False,
                ),
                foreign_pre_chain=shared_processors,
            )

        handler = _create_handler(output.destination, is_console=is_console)
        handler.setLevel(output_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(logger=name)
    return logger  # type: ignore[no-any-return]
