"""sift index command - build or refresh a workspace index."""

import json
from contextlib import nullcontext
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape

from codesift.cli.output import build_summary_dict, render_build_summary
from codesift.cli.utils import get_config, get_embedder, get_store, handle_errors, resolve_root
from codesift.core.logging import suppress_console
from codesift.index.models import IndexMode, VectorStatus
from codesift.index.ops import IndexCoordinator


@click.command()
@click.argument("path", required=False, type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--rebuild", is_flag=True, help="Discard the existing index and build from scratch")
@click.option(
    "--semantic/--text",
    "semantic",
    default=None,
    help="Index mode. Sticks for later builds until changed.",
)
@click.option("--json", "as_json", is_flag=True, help="Output the build summary as JSON")
@click.pass_context
@handle_errors
def index_command(
    ctx: click.Context,
    path: Path | None,
    rebuild: bool,
    semantic: bool | None,
    as_json: bool,
) -> None:
    """Index a workspace for searching.

    PATH is the workspace root (default: -C or the current directory). An
    existing index is refreshed in place; only changed files are re-read.
    """
    store = get_store(ctx)
    workspace = store.resolve(resolve_root(ctx, path))
    coordinator = IndexCoordinator(workspace, store, get_config(ctx), get_embedder(ctx))

    mode = None if semantic is None else (IndexMode.SEMANTIC if semantic else IndexMode.TEXT)
    console = Console(stderr=True)
    if not as_json:
        console.print(f"Indexing [cyan]{escape(str(workspace.root_path))}[/cyan]")
    progress = nullcontext() if as_json else console.status("Indexing...", spinner="dots")
    with progress, suppress_console():
        summary = coordinator.build(mode, rebuild=rebuild)

    if as_json:
        click.echo(json.dumps(build_summary_dict(summary), indent=2))
        return
    render_build_summary(summary, console)
    if summary.mode is IndexMode.SEMANTIC and summary.vector_status is not VectorStatus.ACTIVE:
        console.print(
            "[yellow]Semantic index unavailable[/yellow]; text search still works. "
            "Install the 'semantic' extra to enable it."
        )
