"""CLI utilities."""

import functools
from collections.abc import Callable
from pathlib import Path
from typing import IO, Any, TypeVar, cast

import click
from rich.console import Console

from codesift.cli.output import render_error
from codesift.config import CodeSiftConfig, load_config
from codesift.core.errors import CodeSiftError
from codesift.core.logging import get_log_file_path
from codesift.index.embedding import EmbeddingFunction
from codesift.workspace import WorkspaceStore

F = TypeVar("F", bound=Callable[..., Any])


class SiftError(click.ClickException):
    """ClickException that renders a CodeSiftError with its remediation hint."""

    exit_code = 1

    def __init__(self, error: CodeSiftError) -> None:
        super().__init__(error.message)
        self.error = error

    def show(self, file: IO[Any] | None = None) -> None:  # noqa: ARG002
        console = Console(stderr=True, highlight=False)
        render_error(self.error, console)
        if (log_path := get_log_file_path()) is not None:
            console.print(f"[dim]Details: {log_path}[/dim]", highlight=False)


def handle_errors(func: F) -> F:
    """Turn CodeSiftError into a non-zero exit with the error's hint."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except CodeSiftError as e:
            raise SiftError(e) from e

    return cast(F, wrapper)


def get_config(ctx: click.Context) -> CodeSiftConfig:
    """Config for this invocation, loaded once per process."""
    obj = ctx.ensure_object(dict)
    if obj.get("config") is None:
        try:
            obj["config"] = load_config()
        except CodeSiftError as e:
            raise SiftError(e) from e
    return cast(CodeSiftConfig, obj["config"])


def get_store(ctx: click.Context) -> WorkspaceStore:
    obj = ctx.ensure_object(dict)
    if obj.get("store") is None:
        obj["store"] = WorkspaceStore(get_config(ctx).storage)
    return cast(WorkspaceStore, obj["store"])


def get_embedder(ctx: click.Context) -> EmbeddingFunction | None:
    """Embedder override (tests inject one); None means the configured default."""
    return cast(EmbeddingFunction | None, ctx.ensure_object(dict).get("embedder"))


def resolve_root(ctx: click.Context, path: Path | None) -> Path:
    """Workspace root: explicit PATH, else the global -C option, else cwd."""
    if path is not None:
        return path
    workspace = ctx.ensure_object(dict).get("workspace")
    if workspace is not None:
        return Path(workspace)
    return Path.cwd()
