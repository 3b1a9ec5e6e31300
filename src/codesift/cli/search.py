"""sift search command - query an indexed workspace."""

import click
from rich.console import Console

from codesift.cli.output import OutputFormat, render_search
from codesift.cli.utils import get_config, get_embedder, get_store, handle_errors, resolve_root
from codesift.config.constants import SEARCH_MAX_LIMIT
from codesift.search.engine import QueryEngine
from codesift.search.models import QueryMode


@click.command()
@click.argument("query")
@click.option(
    "-n",
    "--limit",
    type=click.IntRange(1, SEARCH_MAX_LIMIT),
    default=None,
    help="Maximum results (default from config, 20)",
)
@click.option("-e", "--ext", "extensions", multiple=True, help="Only files with this extension (repeatable)")
@click.option("-p", "--path", "paths", multiple=True, help="Only paths containing this string (repeatable)")
@click.option("-r", "--regex", is_flag=True, help="Treat QUERY as a regular expression")
@click.option("--text-only", is_flag=True, help="Skip semantic retrieval")
@click.option("-c", "--context", "context_lines", type=click.IntRange(0, 25), default=None, help="Snippet context lines")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.option("--pretty", is_flag=True, help="Human-friendly output with context")
@click.pass_context
@handle_errors
def search_command(
    ctx: click.Context,
    query: str,
    limit: int | None,
    extensions: tuple[str, ...],
    paths: tuple[str, ...],
    regex: bool,
    text_only: bool,
    context_lines: int | None,
    as_json: bool,
    pretty: bool,
) -> None:
    """Search the index of the current workspace.

    Searching from a subdirectory uses the nearest indexed parent.
    """
    engine = QueryEngine.open(
        resolve_root(ctx, None),
        store=get_store(ctx),
        config=get_config(ctx),
        embedder=get_embedder(ctx),
    )
    options: dict[str, object] = {
        "mode": QueryMode.REGEX if regex else QueryMode.LITERAL,
        "extensions": list(extensions),
        "paths": list(paths),
        "text_only": text_only,
    }
    if limit is not None:
        options["limit"] = limit
    if context_lines is not None:
        options["context_lines"] = context_lines
    result = engine.search(query, **options)
    render_search(result, OutputFormat.from_flags(as_json, pretty), Console(highlight=False))
