"""sift indexes commands - manage the index store."""

import json

import click
from rich.console import Console

from codesift.cli.output import format_size, render_indexes
from codesift.cli.utils import get_store, handle_errors


@click.group()
def indexes_command() -> None:
    """List and remove stored indexes."""


@indexes_command.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_errors
def list_command(ctx: click.Context, as_json: bool) -> None:
    """List every index in the store."""
    entries = get_store(ctx).list()
    if as_json:
        click.echo(
            json.dumps(
                [
                    {
                        "identity": e.workspace.identity_hash,
                        "root": str(e.workspace.root_path) if e.metadata else None,
                        "mode": e.mode.value if e.mode else None,
                        "size_bytes": e.size_bytes,
                        "root_exists": e.root_exists,
                    }
                    for e in entries
                ],
                indent=2,
            )
        )
        return
    render_indexes(entries, Console(highlight=False))


@indexes_command.command("clean")
@click.pass_context
@handle_errors
def clean_command(ctx: click.Context) -> None:
    """Remove indexes whose workspace directory no longer exists."""
    result = get_store(ctx).clean()
    if not result.removed:
        click.echo("Nothing to clean.")
        return
    for workspace in result.removed:
        click.echo(f"Removed {workspace.identity_hash}  {workspace.root_path}")
    click.echo(f"Freed {format_size(result.freed_bytes)}")


@indexes_command.command("remove")
@click.argument("key")
@click.pass_context
@handle_errors
def remove_command(ctx: click.Context, key: str) -> None:
    """Remove one index by identity hash or workspace path."""
    workspace = get_store(ctx).remove(key)
    click.echo(f"Removed {workspace.identity_hash}  {workspace.root_path}")
