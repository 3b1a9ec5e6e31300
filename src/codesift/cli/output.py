"""Rendering of search results and index summaries.

Three formats:
  ai      (default) one ``path:line (score%) marker`` line per hit plus the
          hit line, dense enough for an assistant's context window
  json    full result with metadata
  pretty  rich rendering with line numbers and context
"""

from __future__ import annotations

import json
from dataclasses import asdict
from enum import Enum
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from codesift.core.errors import CodeSiftError
from codesift.index.models import BuildSummary, UpdateSummary
from codesift.search.models import MatchType, SearchHit, SearchResult
from codesift.workspace.store import IndexEntry

AI_PREVIEW_CHARS = 100
PRETTY_PREVIEW_CHARS = 120

_MARKERS: dict[MatchType, str] = {
    MatchType.HYBRID: " +",
    MatchType.SEMANTIC: " ~",
    MatchType.TEXT: "",
}


class OutputFormat(str, Enum):
    AI = "ai"
    JSON = "json"
    PRETTY = "pretty"

    @classmethod
    def from_flags(cls, as_json: bool, pretty: bool) -> OutputFormat:
        if as_json:
            return cls.JSON
        if pretty:
            return cls.PRETTY
        return cls.AI


def display_score(score: float) -> int:
    return round(min(max(score, 0.0), 1.0) * 100)


def format_size(num_bytes: int) -> str:
    size = float(num_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def _preview(text: str, limit: int) -> str:
    trimmed = text.strip()
    return trimmed if len(trimmed) <= limit else trimmed[:limit] + "..."


def _hit_line(hit: SearchHit) -> str:
    lines = hit.snippet.splitlines()
    offset = hit.line - hit.line_start
    if 0 <= offset < len(lines):
        return lines[offset]
    return lines[0] if lines else ""


def _summary(result: SearchResult) -> str:
    if result.text_hits and result.semantic_hits:
        return f"{result.text_hits} text + {result.semantic_hits} semantic"
    return "semantic" if result.semantic_hits else "text"


# =============================================================================
# Search results
# =============================================================================


def format_ai(result: SearchResult) -> str:
    out: list[str] = [f"# {len(result.hits)} results ({_summary(result)})", ""]
    for hit in result.hits:
        out.append(f"{hit.path}:{hit.line} ({display_score(hit.score)}%){_MARKERS[hit.match_type]}")
        out.append(f"  {_preview(_hit_line(hit), AI_PREVIEW_CHARS)}")
        out.append("")
    if result.truncated:
        out.append(f"# {result.total - len(result.hits)} more (use -n to raise the limit)")
    return "\n".join(out).rstrip("\n") + "\n"


def format_json(result: SearchResult) -> str:
    return json.dumps(result.to_dict(), indent=2)


def render_pretty(result: SearchResult, console: Console) -> None:
    console.print(f"[bold]{len(result.hits)} results[/bold] [dim]({_summary(result)}, {result.query_time_ms} ms)[/dim]")
    console.print()
    for hit in result.hits:
        header = Text()
        header.append(hit.path, style="cyan")
        span = str(hit.line_start) if hit.line_start == hit.line_end else f"{hit.line_start}-{hit.line_end}"
        header.append(f":{span}", style="dim")
        header.append(f"  {display_score(hit.score)}%", style="green")
        if hit.match_type is not MatchType.TEXT:
            header.append(f"  {hit.match_type.value}", style="magenta")
        console.print(header)
        width = len(str(hit.line_end))
        for number, line in enumerate(hit.snippet.splitlines(), start=hit.line_start):
            style = "bold" if number == hit.line else "dim"
            console.print(
                Text(f"  {number:>{width}} │ ", style="dim") + Text(_preview(line, PRETTY_PREVIEW_CHARS), style=style)
            )
        console.print()
    if result.truncated:
        console.print(f"[dim]{result.total - len(result.hits)} more results not shown[/dim]")


def render_search(result: SearchResult, fmt: OutputFormat, console: Console) -> None:
    for warning in result.warnings:
        Console(stderr=True).print(f"[yellow]warning:[/yellow] {escape(warning)}")
    if fmt is OutputFormat.JSON:
        console.out(format_json(result), highlight=False)
    elif fmt is OutputFormat.PRETTY:
        render_pretty(result, console)
    else:
        console.out(format_ai(result), end="", highlight=False)


# =============================================================================
# Index summaries
# =============================================================================


def build_summary_dict(summary: BuildSummary) -> dict[str, Any]:
    return {
        "mode": summary.mode.value,
        "files_indexed": summary.files_indexed,
        "files_skipped": summary.files_skipped,
        "skipped_by_reason": summary.skipped_by_reason,
        "chunks_embedded": summary.chunks_embedded,
        "vector_status": summary.vector_status.value,
        "failures": [asdict(f) for f in summary.failures],
        "duration_ms": summary.duration_ms,
    }


def render_build_summary(summary: BuildSummary, console: Console) -> None:
    console.print(
        f"[green]✓[/green] Indexed [bold]{summary.files_indexed}[/bold] files "
        f"([dim]{summary.mode.value} mode, {summary.duration_ms / 1000:.1f}s[/dim])"
    )
    if summary.files_skipped:
        console.print(f"  [dim]{summary.files_skipped} files skipped[/dim]")
    if summary.chunks_embedded:
        console.print(f"  [dim]{summary.chunks_embedded} chunks embedded[/dim]")
    for failure in summary.failures[:10]:
        console.print(f"  [yellow]![/yellow] {escape(failure.path)}: {escape(failure.message)}")
    if len(summary.failures) > 10:
        console.print(f"  [dim]... and {len(summary.failures) - 10} more failures[/dim]")


def render_update(summary: UpdateSummary, console: Console) -> None:
    parts: list[str] = []
    if summary.added:
        parts.append(f"{summary.added} new")
    if summary.updated:
        parts.append(f"{summary.updated} updated")
    if summary.removed:
        parts.append(f"{summary.removed} removed")
    if not parts and not summary.failures:
        return
    text = ", ".join(parts) or "no changes"
    console.print(f"[cyan]↻[/cyan] {text} [dim]({summary.duration_ms} ms)[/dim]")
    for failure in summary.failures:
        console.print(f"  [yellow]![/yellow] {escape(failure.path)}: {escape(failure.message)}")


def render_indexes(entries: list[IndexEntry], console: Console) -> None:
    if not entries:
        console.print("No indexes found.")
        return
    table = Table(show_header=True, header_style="bold")
    table.add_column("Hash")
    table.add_column("Mode")
    table.add_column("Size", justify="right")
    table.add_column("Workspace")
    for entry in entries:
        root = escape(str(entry.workspace.root_path)) if entry.metadata else "(unknown)"
        if entry.metadata and not entry.root_exists:
            root += " [red](missing)[/red]"
        table.add_row(
            entry.workspace.identity_hash,
            entry.mode.value if entry.mode else "-",
            format_size(entry.size_bytes),
            root,
        )
    console.print(table)


def render_error(error: CodeSiftError, console: Console) -> None:
    console.print(f"[red]Error:[/red] {escape(error.message)}")
    if error.hint:
        console.print(f"[dim]{escape(error.hint)}[/dim]")
