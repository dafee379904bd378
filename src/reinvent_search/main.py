import json
from pathlib import Path
from typing import Annotated, Optional

import duckdb
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from typer import Argument, Exit, Option, Typer, echo

from .embeddings import build_embedder
from .index_config import SearchSettings, resolve_db_path
from .logging_config import configure_logging
from .models import SearchOptions
from .search import FilterParseError, SearchResult, VideoSearchEngine, parse_filter_expression
from .search.filters import supported_filter_syntax
from .storage import DuckDBStorage, RetrievalError

app = Typer(help="Hybrid search over indexed conference session videos.")
console = Console()
err_console = Console(stderr=True)


@app.callback()
def cli(
    log_level: Annotated[
        Optional[str],
        Option(
            "--log-level",
            help="Log level for diagnostics (default: $REINVENT_SEARCH_LOG_LEVEL or WARNING).",
        ),
    ] = None,
) -> None:
    try:
        configure_logging(log_level)
    except ValueError as exc:
        err_console.print(f"[bold red]{exc}[/]")
        raise Exit(code=2) from None


def _open_storage(db_path: str | None) -> DuckDBStorage:
    resolved = resolve_db_path(db_path)
    if not Path(resolved).exists():
        err_console.print(f"[bold red]No video index found at {resolved}[/]")
        raise Exit(code=1)
    try:
        return DuckDBStorage(resolved, read_only=True, initialize=False)
    except duckdb.Error as exc:
        err_console.print(f"[bold red]Could not open {resolved}: {exc}[/]")
        raise Exit(code=1) from None


def _open_engine(storage: DuckDBStorage) -> VideoSearchEngine:
    settings = SearchSettings.from_env()
    try:
        embedder = build_embedder(settings)
    except ValueError as exc:
        err_console.print(f"[bold red]{exc}[/]")
        raise Exit(code=1) from None
    return VideoSearchEngine(storage, embedder=embedder, settings=settings)


def _format_duration(seconds: int) -> str:
    minutes, secs = divmod(max(seconds, 0), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def _render_results(query: str, results: list[SearchResult]) -> None:
    title = f"Results for {query!r}" if query else "Browse results"
    if not results:
        console.print(
            Panel("No videos matched.", title=title, title_align="left", border_style="yellow")
        )
        return

    table = Table(title=title, title_justify="left")
    table.add_column("#", justify="right")
    table.add_column("Title", overflow="fold")
    table.add_column("Channel")
    table.add_column("Published")
    table.add_column("Duration", justify="right")
    table.add_column("Level")
    table.add_column("Score", justify="right")
    table.add_column("Top segment", overflow="fold")

    for position, result in enumerate(results, start=1):
        video = result.video
        top = result.segments[0] if result.segments else None
        snippet = ""
        if top is not None:
            snippet = f"[{_format_duration(int(top.start_time))}] {top.text[:120]}"
        table.add_row(
            str(position),
            video.title,
            video.channel_title,
            video.published_at.date().isoformat(),
            _format_duration(video.duration),
            video.level,
            f"{result.relevance_score:.3f}",
            snippet,
        )
    console.print(table)


@app.command()
def search(
    query: Annotated[
        str,
        Argument(help="Search text. Leave empty to browse by filters only."),
    ] = "",
    filters: Annotated[
        Optional[str],
        Option(
            "--filters",
            "-f",
            help="Facet filters, e.g. \"level=Advanced, services in (Lambda, S3)\".",
        ),
    ] = None,
    limit: Annotated[
        Optional[int],
        Option("--limit", "-n", help="Maximum number of videos (0 or omitted: unlimited)."),
    ] = None,
    db_path: Annotated[
        Optional[str],
        Option("--db-path", help="DuckDB path (default: $REINVENT_SEARCH_DB_PATH)."),
    ] = None,
    as_json: Annotated[bool, Option("--json", help="Print results as JSON.")] = False,
) -> None:
    """Search videos by text and facets, or browse when no text is given."""
    try:
        options = parse_filter_expression(filters, base=SearchOptions(limit=limit))
    except FilterParseError as exc:
        err_console.print(f"[bold red]{exc}[/]\n{supported_filter_syntax()}")
        raise Exit(code=1) from None

    storage = _open_storage(db_path)
    try:
        engine = _open_engine(storage)
        results = engine.search(query, options)
    except RetrievalError as exc:
        err_console.print(f"[bold red]{exc}[/]")
        raise Exit(code=1) from None
    finally:
        storage.close()

    if as_json:
        echo(
            json.dumps(
                {"query": query, "results": [result.to_dict() for result in results]},
                indent=2,
            )
        )
        return
    _render_results(query, results)


@app.command("filters")
def list_filters(
    db_path: Annotated[
        Optional[str],
        Option("--db-path", help="DuckDB path (default: $REINVENT_SEARCH_DB_PATH)."),
    ] = None,
    as_json: Annotated[bool, Option("--json", help="Print values as JSON.")] = False,
) -> None:
    """List the facet values available for filtering."""
    storage = _open_storage(db_path)
    try:
        values = storage.get_available_filter_values()
    except RetrievalError as exc:
        err_console.print(f"[bold red]{exc}[/]")
        raise Exit(code=1) from None
    finally:
        storage.close()

    facets = {
        "levels": values.levels,
        "session_types": values.session_types,
        "services": values.services,
        "topics": values.topics,
        "industries": values.industries,
        "channels": values.channels,
        "metadata_sources": values.metadata_sources,
    }
    if as_json:
        echo(json.dumps(facets, indent=2))
        return

    table = Table(title="Available filters", title_justify="left")
    table.add_column("Facet")
    table.add_column("Values", overflow="fold")
    for facet, facet_values in facets.items():
        table.add_row(facet, ", ".join(facet_values) or "-")
    console.print(table)


@app.command()
def stats(
    db_path: Annotated[
        Optional[str],
        Option("--db-path", help="DuckDB path (default: $REINVENT_SEARCH_DB_PATH)."),
    ] = None,
    as_json: Annotated[bool, Option("--json", help="Print counts as JSON.")] = False,
) -> None:
    """Show video counts per facet value."""
    storage = _open_storage(db_path)
    try:
        statistics = storage.get_taxonomy_statistics()
    except RetrievalError as exc:
        err_console.print(f"[bold red]{exc}[/]")
        raise Exit(code=1) from None
    finally:
        storage.close()

    counts = {
        "levels": statistics.level_counts,
        "session_types": statistics.session_type_counts,
        "services": statistics.service_counts,
        "topics": statistics.topic_counts,
        "industries": statistics.industry_counts,
        "channels": statistics.channel_counts,
    }
    if as_json:
        echo(json.dumps({"total_videos": statistics.total_videos, **counts}, indent=2))
        return

    console.print(f"[bold]Total videos:[/] {statistics.total_videos}")
    for facet, facet_counts in counts.items():
        if not facet_counts:
            continue
        table = Table(title=facet, title_justify="left")
        table.add_column("Value", overflow="fold")
        table.add_column("Videos", justify="right")
        for value, count in sorted(facet_counts.items(), key=lambda item: (-item[1], item[0])):
            table.add_row(value, str(count))
        console.print(table)
