"""sift watch command - keep an index current while files change."""

from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape

from codesift.cli.output import render_build_summary, render_update
from codesift.cli.utils import get_config, get_embedder, get_store, handle_errors, resolve_root
from codesift.daemon.lifecycle import WatchSession
from codesift.index.models import BuildSummary, UpdateSummary
from codesift.index.ops import IndexCoordinator


@click.command()
@click.argument("path", required=False, type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--poll", is_flag=True, help="Poll for changes instead of using OS notifications")
@click.pass_context
@handle_errors
def watch_command(ctx: click.Context, path: Path | None, poll: bool) -> None:
    """Index a workspace, then apply file changes as they happen.

    Runs in the foreground until interrupted. Holds the index writer lock,
    so 'sift index' on the same workspace fails while this runs; searches
    keep working.
    """
    store = get_store(ctx)
    workspace = store.resolve(resolve_root(ctx, path))
    coordinator = IndexCoordinator(workspace, store, get_config(ctx), get_embedder(ctx))
    console = Console(stderr=True)

    def on_ready(summary: BuildSummary) -> None:
        render_build_summary(summary, console)
        console.print(f"Watching [cyan]{escape(str(workspace.root_path))}[/cyan] (Ctrl+C to stop)")

    def on_batch(summary: UpdateSummary) -> None:
        render_update(summary, console)

    session = WatchSession(coordinator, on_batch=on_batch, force_polling=True if poll else None)
    session.install_signal_handlers()
    session.run(on_ready=on_ready)
    console.print("Stopped")
