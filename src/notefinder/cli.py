"""Command line interface for NoteFinder."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from notefinder.config import AppConfig
from notefinder.index.factory import Components, build_components
from notefinder.index.indexer import SyncStats
from notefinder.index.search import SearchMode

console = Console()
app = typer.Typer(help="NoteFinder - local hybrid search for voice notes")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _build(db: Path | None, recordings: Path | None, model: str | None = None) -> Components:
    defaults = AppConfig()
    config = AppConfig(
        db_path=db if db is not None else defaults.db_path,
        recordings_dir=recordings if recordings is not None else defaults.recordings_dir,
        model_name=model or defaults.model_name,
    )
    return build_components(config, base_dir=Path.cwd())


def _print_sync_stats(stats: SyncStats) -> None:
    console.print(
        f"Indexed: {stats.indexed}, unchanged: {stats.unchanged}, "
        f"removed: {stats.removed}, failed: {stats.failed}"
    )
    for recording_id in stats.failed_ids:
        console.print(f"[yellow]Failed: {recording_id}[/yellow]")


DbOption = typer.Option(None, "--db", help="SQLite database path")
RecordingsOption = typer.Option(None, "--recordings", "-r", help="Directory with markdown recordings")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Verbose logging")


@app.command()
def sync(
    db: Path = DbOption,
    recordings: Path = RecordingsOption,
    model: str = typer.Option(None, help="Sentence-transformer model name"),
    verbose: bool = VerboseOption,
) -> None:
    """Bring the indexes up to date with the recordings folder."""
    _setup_logging(verbose)
    components = _build(db, recordings, model)
    try:
        stats = asyncio.run(components.service.sync_indexes())
    except Exception as exc:
        console.print(f"[red]Sync failed: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        components.close()
    _print_sync_stats(stats)


@app.command()
def reindex(
    db: Path = DbOption,
    recordings: Path = RecordingsOption,
    model: str = typer.Option(None, help="Sentence-transformer model name"),
    verbose: bool = VerboseOption,
) -> None:
    """Drop the index and re-embed every recording."""
    _setup_logging(verbose)
    components = _build(db, recordings, model)
    try:
        stats = asyncio.run(components.service.force_full_reindex())
    except Exception as exc:
        console.print(f"[red]Reindex failed: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        components.close()
    _print_sync_stats(stats)


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    mode: SearchMode = typer.Option(SearchMode.semantic, "--mode", "-m", help="Search mode"),
    db: Path = DbOption,
    recordings: Path = RecordingsOption,
    limit: int = typer.Option(10, help="Number of results to display"),
    min_score: float = typer.Option(0.0, help="Minimum cosine similarity (semantic mode)"),
    verbose: bool = VerboseOption,
) -> None:
    """Search recordings by meaning or by keywords."""
    _setup_logging(verbose)
    components = _build(db, recordings)
    try:
        if mode is SearchMode.semantic:
            results = components.searcher.semantic(query, limit=limit, min_score=min_score)
            rows = [
                (f"{r.score:.4f}", r.recording_id, r.field, r.chunk_text)
                for r in results
            ]
        else:
            matches = asyncio.run(components.searcher.keyword(query, limit=limit))
            rows = [
                (
                    f"{r.score:.4f}",
                    r.recording.id,
                    ", ".join(sorted(r.matched_fields)),
                    r.recording.title,
                )
                for r in matches
            ]
    finally:
        components.close()

    if not rows:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Recording")
    table.add_column("Field")
    table.add_column("Snippet")
    for score, recording_id, field, text in rows:
        table.add_row(score, recording_id, field, text.replace("\n", " ")[:180])
    console.print(table)


@app.command()
def remove(
    recording_id: str = typer.Argument(..., help="Recording id to drop from the index"),
    db: Path = DbOption,
    recordings: Path = RecordingsOption,
) -> None:
    """Remove one recording from the index."""
    components = _build(db, recordings)
    try:
        removed = components.service.remove_recording(recording_id)
    finally:
        components.close()
    if removed:
        console.print(f"Removed {recording_id}.")
    else:
        console.print(f"[yellow]{recording_id} was not indexed.[/yellow]")


@app.command()
def stats(
    db: Path = DbOption,
    recordings: Path = RecordingsOption,
) -> None:
    """Show index statistics."""
    components = _build(db, recordings)
    try:
        snapshot = components.service.get_stats()
    finally:
        components.close()

    table = Table(show_header=False)
    vector = snapshot["vector_store"]
    table.add_row("Chunks", str(vector["total_chunks"]))
    table.add_row("Recordings", str(vector["total_recordings"]))
    table.add_row("Database size", f"{vector['total_size']} bytes")
    table.add_row("Keyword index built", str(snapshot["lexical"]["is_built"]))
    table.add_row("Status", snapshot["status"])
    console.print(table)


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
) -> None:
    """Start the HTTP API."""
    try:
        import uvicorn
    except ImportError as exc:  # pragma: no cover - optional extra
        raise typer.BadParameter(
            "uvicorn is not installed. Install the web extras with \"python -m pip install '.[web]'\""
        ) from exc

    from notefinder.web.app import app as web_app

    console.print(f"Starting web interface on http://{host}:{port}")
    uvicorn.run(web_app, host=host, port=port, reload=False, log_level="info")
