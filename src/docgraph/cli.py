"""Command line interface for DocGraph."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from docgraph.config import AppConfig
from docgraph.context import KnowledgeContext
from docgraph.index.indexer import DocIndexer
from docgraph.index.search import DocSearcher
from docgraph.ingestion.external import SPEC_DEFINITIONS, ExternalDocIngester, get_spec_definition
from docgraph.models import DocGraphError
from docgraph.utils.files import DEFAULT_PATTERN

console = Console()
app = typer.Typer(help="DocGraph - documentation knowledge graph with semantic search")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _config(db: Optional[Path], model: Optional[str] = None) -> AppConfig:
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    if model:
        config.model_name = model
    return config


def _open_context(config: AppConfig) -> KnowledgeContext:
    return KnowledgeContext.open(config, base_dir=Path.cwd())


@app.command()
def index(
    inputs: List[Path] = typer.Argument(
        ..., help="Markdown files or directories to index.", resolve_path=True
    ),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    model: str = typer.Option(AppConfig().model_name, help="Sentence-transformer model name"),
    pattern: str = typer.Option(DEFAULT_PATTERN, help="Glob pattern used inside directories"),
    force: bool = typer.Option(False, "--force", help="Re-index files even if unchanged"),
    prune: bool = typer.Option(False, "--prune", help="Delete sections removed from a file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Index markdown documentation into the knowledge graph."""
    _setup_logging(verbose)
    missing = [path for path in inputs if not path.exists()]
    if missing:
        raise typer.BadParameter(f"Path not found: {missing[0]}")

    config = _config(db, model)
    console.print(f"Indexing into [bold]{config.resolve_db_path(Path.cwd())}[/bold]...")
    console.print("(force re-index enabled)" if force else "(skipping unchanged files)")

    with _open_context(config) as context:
        indexer = DocIndexer(context)
        stats = indexer.index_paths(inputs, pattern=pattern, force=force, prune=prune)

    console.print(
        f"Indexed: {stats.files_indexed}, skipped: {stats.files_skipped}, "
        f"failed: {stats.files_failed}, sections: {stats.total_sections}"
    )
    for failure in stats.failures:
        console.print(f"[red]{failure.path}[/red]: {failure.error}")


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    model: str = typer.Option(AppConfig().model_name, help="Sentence-transformer model name"),
    limit: int = typer.Option(10, help="Number of results to display"),
    threshold: float = typer.Option(0.3, help="Minimum cosine similarity"),
    docs_only: bool = typer.Option(False, "--docs-only", help="Only documentation sections"),
    code_docs_only: bool = typer.Option(False, "--code-docs-only", help="Only code docs"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Execute a semantic search."""
    _setup_logging(verbose)
    config = _config(db, model)
    resolved_db = config.resolve_db_path(Path.cwd())

    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")

    with _open_context(config) as context:
        results = DocSearcher(context).search(
            query,
            limit=limit,
            threshold=threshold,
            docs_only=docs_only,
            code_docs_only=code_docs_only,
        )

    if not results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Type")
    table.add_column("Location")
    table.add_column("Snippet")

    for result in results:
        snippet = result.section.content.replace("\n", " ")
        table.add_row(
            f"{result.similarity:.4f}", result.entity_type, result.location, snippet[:180]
        )

    console.print(table)


@app.command()
def status(
    file: Path = typer.Argument(..., help="Indexed markdown file", resolve_path=True),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Show the cached hash, timestamp and section count of a file."""
    config = _config(db)
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        console.print("[yellow]Database not found.[/yellow]")
        return

    with _open_context(config) as context:
        record = DocIndexer(context).index_status(file)

    if record is None:
        console.print(f"File not indexed: {file}")
        return

    console.print(f"Indexing status for: {record.file_path}")
    console.print(f"  Content hash: {record.content_hash}")
    console.print(f"  Last indexed: {record.indexed_at}")
    console.print(f"  Sections indexed: {record.section_count}")


@app.command()
def clean(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Remove sections of documents that no longer exist on disk."""
    config = _config(db)
    resolved_db = config.resolve_db_path(Path.cwd())

    if not resolved_db.exists():
        console.print("[yellow]Database not found, nothing to clean.[/yellow]")
        return

    with _open_context(config) as context:
        sections_removed, entries_removed = DocIndexer(context).clean_orphans()
    console.print("Cleaned orphaned documentation:")
    console.print(f"  DocSection entities removed: {sections_removed}")
    console.print(f"  Index entries removed: {entries_removed}")


@app.command()
def ingest(
    spec_name: str = typer.Argument(..., help=f"One of: {', '.join(SPEC_DEFINITIONS)}"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    model: str = typer.Option(AppConfig().model_name, help="Sentence-transformer model name"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Fetch an external specification and index it with source attribution."""
    _setup_logging(verbose)
    spec = get_spec_definition(spec_name)
    if spec is None:
        raise typer.BadParameter(
            f"Unknown spec: {spec_name}. Available: {', '.join(SPEC_DEFINITIONS)}"
        )

    config = _config(db, model)
    with _open_context(config) as context, ExternalDocIngester(context) as ingester:
        try:
            result = ingester.ingest(spec)
        except DocGraphError as exc:
            console.print(f"[red]{exc}[/red]")
            raise typer.Exit(code=1) from exc

    console.print(f"Status: {result.status}")
    console.print(f"Sections indexed: {result.sections_indexed}")


@app.command("docs-for-code")
def docs_for_code(
    entity_id: str = typer.Argument(..., help="Code entity id (package:filePath:type:name)"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """List documentation sections linked to a code entity."""
    config = _config(db)
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")

    with _open_context(config) as context:
        results = DocSearcher(context).docs_for_code(entity_id)

    if not results:
        console.print("[yellow]No linked documentation.[/yellow]")
        return
    for result in results:
        console.print(f"{result.entity_type}: {result.location}")
