"""Command line interface for DocChat."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from docchat.completion.chat import create_completion_provider
from docchat.config import AppConfig
from docchat.embedding.encoder import create_embedding_provider
from docchat.errors import DocChatError, ProviderError
from docchat.index.indexer import Indexer
from docchat.index.search import Searcher
from docchat.index.storage import SQLiteVectorStore
from docchat.utils.files import iter_document_paths
from docchat.web.app import app as web_app


console = Console()
app = typer.Typer(help="DocChat - ask questions about your text documents")

_DB_OPTION = typer.Option(None, "--db", help="SQLite database path")
_PROVIDER_OPTION = typer.Option("openai", help="Embedding provider: openai or local")
_API_KEY_OPTION = typer.Option(None, "--api-key", envvar="OPENAI_API_KEY", help="OpenAI API key")
_VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Verbose logging")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _config(db: Optional[Path], **overrides) -> AppConfig:
    return AppConfig(db_path=db if db is not None else AppConfig().db_path, **overrides)


def _existing_db(config: AppConfig) -> Path:
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")
    return resolved_db


def _embedder(config: AppConfig):
    """Build the embedding provider and check its credential before first use."""
    embedder = create_embedding_provider(config)
    if not embedder.validate_credential():
        raise ProviderError("The OpenAI API key was rejected")
    return embedder


def _fail(exc: DocChatError) -> typer.Exit:
    console.print(f"[red]Error:[/red] {exc}")
    return typer.Exit(code=1)


@app.command()
def index(
    inputs: List[Path] = typer.Argument(
        ..., help="Files or folders with .txt, .md or .pdf documents.", resolve_path=True
    ),
    db: Path = _DB_OPTION,
    provider: str = _PROVIDER_OPTION,
    api_key: Optional[str] = _API_KEY_OPTION,
    chunk_size: int = typer.Option(AppConfig().chunk_size, help="Chunk size in characters"),
    overlap: int = typer.Option(AppConfig().overlap, help="Chunk overlap (currently unused)"),
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Index one or more documents or folders."""
    _setup_logging(verbose)
    config = _config(
        db, provider=provider, api_key=api_key, chunk_size=chunk_size, overlap=overlap
    )

    paths = list(iter_document_paths(inputs))
    if not paths:
        console.print("[yellow]No supported documents found.[/yellow]")
        return

    resolved_db = config.resolve_db_path(Path.cwd())
    _ensure_db_parent(resolved_db)

    try:
        embedder = _embedder(config)
        with SQLiteVectorStore(resolved_db) as store:
            indexer = Indexer(
                embedder,
                store,
                chunk_size=config.chunk_size,
                overlap=config.overlap,
                batch_size=config.embed_batch_size,
            )
            console.print(f"Indexing into [bold]{resolved_db}[/bold]...")
            stats = indexer.index(paths)
    except DocChatError as exc:
        raise _fail(exc) from exc

    console.print(
        f"Inserted: {stats.inserted}, skipped: {stats.skipped}, failed: {stats.failed}"
    )


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    db: Path = _DB_OPTION,
    provider: str = _PROVIDER_OPTION,
    api_key: Optional[str] = _API_KEY_OPTION,
    top_k: int = typer.Option(AppConfig().top_k, help="Number of results to display"),
    threshold: float = typer.Option(AppConfig().threshold, help="Minimum similarity"),
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Show the passages most similar to a query."""
    _setup_logging(verbose)
    config = _config(db, provider=provider, api_key=api_key)
    resolved_db = _existing_db(config)

    try:
        embedder = _embedder(config)
        with SQLiteVectorStore(resolved_db) as store:
            results = Searcher(embedder, store).search(query, top_k=top_k, threshold=threshold)
    except DocChatError as exc:
        raise _fail(exc) from exc

    if not results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Document")
    table.add_column("Chunk")
    table.add_column("Snippet")

    for result in results:
        snippet = result.chunk.content.replace("\n", " ")
        table.add_row(
            f"{result.similarity:.4f}",
            result.document_name,
            result.chunk.id.rsplit("-", 1)[-1],
            snippet[:180],
        )

    console.print(table)


@app.command()
def ask(
    question: str = typer.Argument(..., help="Question about the indexed documents"),
    db: Path = _DB_OPTION,
    provider: str = _PROVIDER_OPTION,
    api_key: Optional[str] = _API_KEY_OPTION,
    model: str = typer.Option(AppConfig().completion_model, help="Chat completion model"),
    language: Optional[str] = typer.Option(None, help="Language for the answer"),
    top_k: int = typer.Option(AppConfig().top_k, help="Passages used as context"),
    threshold: float = typer.Option(AppConfig().threshold, help="Minimum similarity"),
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Answer a question from the indexed documents, streaming the reply."""
    _setup_logging(verbose)
    config = _config(
        db, provider=provider, api_key=api_key, completion_model=model, language=language
    )
    resolved_db = _existing_db(config)

    try:
        embedder = _embedder(config)
        completion = create_completion_provider(config)
        with SQLiteVectorStore(resolved_db) as store:
            answer = Searcher(embedder, store, completion).ask(
                question, top_k=top_k, threshold=threshold
            )
        for fragment in answer.fragments:
            console.print(fragment, end="", markup=False, highlight=False)
        console.print()
    except DocChatError as exc:
        raise _fail(exc) from exc

    if answer.sources:
        console.print("[bold]Sources:[/bold]")
        for number, source in enumerate(answer.sources, start=1):
            console.print(f"  [{number}] {source.document_name} ({source.similarity:.3f})")


@app.command("list")
def list_documents(db: Path = _DB_OPTION) -> None:
    """List indexed documents."""
    resolved_db = _existing_db(_config(db))
    try:
        with SQLiteVectorStore(resolved_db) as store:
            documents = store.get_all_documents()
    except DocChatError as exc:
        raise _fail(exc) from exc

    if not documents:
        console.print("[yellow]No documents indexed.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Chunks")
    table.add_column("Uploaded")
    for document in documents:
        table.add_row(
            document.id,
            document.name,
            str(len(document.chunks)),
            document.uploaded_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@app.command()
def delete(
    doc_id: str = typer.Argument(..., help="Document id"),
    db: Path = _DB_OPTION,
) -> None:
    """Delete a document and its chunks."""
    resolved_db = _existing_db(_config(db))
    try:
        with SQLiteVectorStore(resolved_db) as store:
            deleted = store.delete_document(doc_id)
    except DocChatError as exc:
        raise _fail(exc) from exc

    if deleted:
        console.print(f"Deleted {doc_id}.")
    else:
        console.print(f"[yellow]No document with id {doc_id}.[/yellow]")


@app.command()
def clear(
    db: Path = _DB_OPTION,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Remove every document and chunk."""
    resolved_db = _existing_db(_config(db))
    if not yes:
        typer.confirm(f"Remove all documents from {resolved_db}?", abort=True)
    try:
        with SQLiteVectorStore(resolved_db) as store:
            store.clear_all_data()
    except DocChatError as exc:
        raise _fail(exc) from exc
    console.print("All documents removed.")


@app.command()
def stats(db: Path = _DB_OPTION) -> None:
    """Show document and chunk counts."""
    resolved_db = _existing_db(_config(db))
    try:
        with SQLiteVectorStore(resolved_db) as store:
            counts = store.get_stats()
    except DocChatError as exc:
        raise _fail(exc) from exc
    console.print(f"Documents: {counts.document_count}, chunks: {counts.chunk_count}")


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
) -> None:
    """Start the HTTP API."""
    try:
        import uvicorn
    except ImportError as exc:  # pragma: no cover
        raise typer.BadParameter(
            "uvicorn is not installed. Install the web extras with \"python -m pip install '.[web]'\""
        ) from exc

    console.print(f"Starting DocChat API on http://{host}:{port}")
    uvicorn.run(web_app, host=host, port=port, reload=False, log_level="info")
