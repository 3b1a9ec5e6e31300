"""sift status command - show the index state of a workspace."""

import json
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape

from codesift.cli.output import format_size
from codesift.cli.utils import get_store, handle_errors, resolve_root
from codesift.workspace.lock import is_locked
from codesift.workspace.store import dir_size


@click.command()
@click.argument("path", required=False, type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_errors
def status_command(ctx: click.Context, path: Path | None, as_json: bool) -> None:
    """Show index status for a workspace.

    PATH is the workspace root (default: -C or the current directory).
    """
    store = get_store(ctx)
    workspace = store.resolve(resolve_root(ctx, path))
    if not store.is_indexed(workspace):
        parent = store.find_indexed_parent(workspace.root_path)
        if parent is not None:
            workspace = parent
    metadata = store.read_metadata(workspace)

    if metadata is None:
        if as_json:
            click.echo(json.dumps({"root": str(workspace.root_path), "indexed": False}))
        else:
            click.echo(f"Workspace: {workspace.root_path}")
            click.echo("Not indexed. Run 'sift index' first.")
        return

    locked = is_locked(workspace.lock_path)
    size = dir_size(workspace.index_dir)
    if as_json:
        click.echo(
            json.dumps(
                {
                    "root": str(workspace.root_path),
                    "indexed": store.is_indexed(workspace),
                    "identity": workspace.identity_hash,
                    "index_dir": str(workspace.index_dir),
                    "size_bytes": size,
                    "writer_active": locked,
                    **metadata.model_dump(mode="json"),
                }
            )
        )
        return

    console = Console(highlight=False)
    console.print(f"Workspace: [cyan]{escape(str(workspace.root_path))}[/cyan]")
    console.print(f"Index:     {workspace.index_dir} ({format_size(size)})")
    console.print(f"Mode:      {metadata.mode.value}")
    console.print(f"Files:     {metadata.doc_count}")
    if metadata.chunk_count:
        console.print(f"Chunks:    {metadata.chunk_count}")
    if metadata.last_build_time is not None:
        console.print(f"Built:     {metadata.last_build_time:%Y-%m-%d %H:%M:%S} UTC")
    console.print(f"Updated:   {metadata.updated_at:%Y-%m-%d %H:%M:%S} UTC")
    if locked:
        console.print("Writer:    [yellow]active[/yellow] (index or watch running)")
