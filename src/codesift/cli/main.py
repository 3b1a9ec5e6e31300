"""codesift CLI - sift command."""

from pathlib import Path

import click

from codesift import __version__
from codesift.cli.index import index_command
from codesift.cli.indexes import indexes_command
from codesift.cli.search import search_command
from codesift.cli.status import status_command
from codesift.cli.utils import get_config
from codesift.cli.watch import watch_command
from codesift.core.logging import configure_logging


class DefaultSearchGroup(click.Group):
    """Command group that treats an unknown first word as a search query.

    ``sift "parse config"`` runs ``sift search "parse config"``.
    """

    def resolve_command(
        self, ctx: click.Context, args: list[str]
    ) -> tuple[str | None, click.Command | None, list[str]]:
        if args and args[0] not in self.commands and not args[0].startswith("-"):
            return "search", search_command, args
        return super().resolve_command(ctx, args)


@click.group(cls=DefaultSearchGroup)
@click.version_option(version=__version__, prog_name="sift")
@click.option(
    "-C",
    "--workspace",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Run as if started in this directory",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, workspace: Path | None, verbose: bool) -> None:
    """codesift - fast local code search with optional semantic ranking."""
    ctx.ensure_object(dict)
    ctx.obj["workspace"] = workspace
    ctx.obj["verbose"] = verbose
    config = get_config(ctx)
    if verbose:
        configure_logging(config=config.logging.model_copy(update={"level": "DEBUG"}))
    else:
        configure_logging(config=config.logging)


cli.add_command(index_command, name="index")
cli.add_command(search_command, name="search")
cli.add_command(status_command, name="status")
cli.add_command(watch_command, name="watch")
cli.add_command(indexes_command, name="indexes")


if __name__ == "__main__":
    cli()
