import asyncio
import logging
import subprocess
import sys
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from pyxis_library.config import settings
from pyxis_library.database import RecordStore
from pyxis_library.library import Library
from pyxis_library.services.catalog_fetcher import CatalogFetcher
from pyxis_library.services.http_client import CatalogHTTPClient
from pyxis_library.services.ingestion import IngestionReport, IngestionScheduler
from pyxis_library.utils.ui_helpers import (
    print_book_detail,
    print_book_list,
    print_crawl_summary,
    print_reservations,
    set_output_mode,
)

console = Console()
logger = logging.getLogger(__name__)

app = typer.Typer(help="Pyxis library catalog CLI")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
        force=True,
    )


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None, "--output", "-o", help="Output format: plain | json | rich (default: plain)"
    ),
    log_level: str = typer.Option(settings.log_level, "--log-level", help="Logging level"),
):
    """Global CLI options (output mode, logging)."""
    if output:
        set_output_mode(output)
    configure_logging(log_level)


def _open_library(db: Optional[str]) -> Library:
    store = RecordStore(db or settings.data_file).open()
    return Library(store)


def _parse_keywords(raw: Optional[str]) -> List[str]:
    if not raw:
        return list(settings.ingest_keywords)
    return [k.strip() for k in raw.split(",") if k.strip()]


async def _crawl(store: RecordStore, keywords: List[str], page_size: int, concurrency: int,
                 interactive: bool) -> IngestionReport:
    async with CatalogHTTPClient() as http_client:
        fetcher = CatalogFetcher(http_client, page_size=page_size)

        if not interactive:
            def report_progress(keyword: str, done: int, total: int) -> None:
                print(f"[{keyword}] {done}/{total} pages")

            scheduler = IngestionScheduler(
                fetcher, store, keywords=keywords, page_size=page_size,
                concurrency_limit=concurrency, on_progress=report_progress,
            )
            return await scheduler.run()

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TextColumn("{task.completed}/{task.total}"),
            console=console,
        ) as progress:
            tasks = {}

            def advance(keyword: str, done: int, total: int) -> None:
                if keyword not in tasks:
                    tasks[keyword] = progress.add_task(f"Keyword [bold]{keyword}[/]", total=total)
                progress.update(tasks[keyword], completed=done)

            scheduler = IngestionScheduler(
                fetcher, store, keywords=keywords, page_size=page_size,
                concurrency_limit=concurrency, on_progress=advance,
            )
            return await scheduler.run()


@app.command("crawl")
def cli_crawl(
    keywords: Optional[str] = typer.Option(None, "--keywords", "-k", help="Comma separated keyword partitions"),
    concurrency: int = typer.Option(settings.ingest_concurrency, "--concurrency", "-c", min=1),
    page_size: int = typer.Option(settings.ingest_page_size, "--page-size", "-p", min=1),
    db: Optional[str] = typer.Option(None, "--db", help="SQLite database file"),
    interactive: bool = typer.Option(False, "--interactive", "-i", help="Show rich progress bars"),
):
    """Crawl the remote catalog into the local database."""
    with RecordStore(db or settings.data_file) as store:
        report = asyncio.run(_crawl(store, _parse_keywords(keywords), page_size, concurrency, interactive))
    print_crawl_summary(report)


@app.command("search")
def cli_search(query: str, db: Optional[str] = typer.Option(None, "--db")):
    """Search books by title or author."""
    lib = _open_library(db)
    try:
        result = lib.search(query)
        if not result.success:
            print(result.message)
            return
        print_book_list(result.data["books"])
    finally:
        lib.store.close()


@app.command("find")
def cli_find(book_id: str, db: Optional[str] = typer.Option(None, "--db")):
    """Show a single book by id."""
    lib = _open_library(db)
    try:
        result = lib.get_book(book_id)
        if not result.success:
            print(f"Book with ID {book_id} not found.")
            return
        print_book_detail(result.data["book"])
    finally:
        lib.store.close()


@app.command("available")
def cli_available(db: Optional[str] = typer.Option(None, "--db")):
    """List books that can be reserved."""
    lib = _open_library(db)
    try:
        print_book_list(lib.list_available().data["books"], empty_message="No available books.")
    finally:
        lib.store.close()


@app.command("reservations")
def cli_reservations(user_id: int, db: Optional[str] = typer.Option(None, "--db")):
    """List a user's active reservations."""
    lib = _open_library(db)
    try:
        result = lib.list_reservations(user_id)
        if not result.success:
            print(result.message)
            return
        print_reservations(result.data["reservations"])
    finally:
        lib.store.close()


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host"),
    port: Optional[int] = typer.Option(None, "--port"),
    reload: bool = typer.Option(False, "--reload"),
):
    """Start the HTTP API with uvicorn."""
    host = host or settings.api_host
    port = port or int(settings.api_port)
    print(f"Starting API on http://{host}:{port}/")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "pyxis_library.api:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload:
        args.append("--reload")
    try:
        subprocess.run(args)
    except FileNotFoundError:
        console.print("[bold red]Error:[/] `uvicorn` could not be started. Make sure it is installed.")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
