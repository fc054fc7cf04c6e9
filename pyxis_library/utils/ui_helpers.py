import os
import json
from typing import Any, Dict, List

from rich.console import Console
from rich.table import Table

# Environment variable controlling CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "PYXIS_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_book_list(books: List[Dict[str, Any]], empty_message: str = "No books found.") -> None:
    """Print catalog records in the current output mode.

    - plain: 'ID - Title by Author [Status]' lines
    - json: JSON array of the record dicts
    - rich: Rich table
    """
    mode = get_output_mode()

    if not books:
        print(empty_message)
        return

    if mode == "json":
        print(json.dumps(books, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Call No.", style="dim")
        table.add_column("Location", style="dim")
        table.add_column("Status", style="green")
        for b in books:
            table.add_row(
                str(b.get("id", "")), b.get("title") or "", b.get("author") or "",
                b.get("callNum") or "", b.get("location") or "", b.get("status") or ""
            )
        _console.print(table)
    else:
        for b in books:
            print(f"{b.get('id', '')} - {b.get('title', '')} by {b.get('author', '')} [{b.get('status', '')}]")


def print_book_detail(book: Dict[str, Any]) -> None:
    if get_output_mode() == "json":
        print(json.dumps(book, ensure_ascii=False))
        return
    print("Book Found")
    print(f"Title: {book.get('title', '')}")
    print(f"Author: {book.get('author', '')}")
    print(f"Publisher: {book.get('publisher', '')}")
    print(f"Call Number: {book.get('callNum', '')}")
    print(f"Location: {book.get('location', '')}")
    print(f"Status: {book.get('status', '')}")


def print_reservations(reservations: List[Dict[str, Any]]) -> None:
    mode = get_output_mode()

    if not reservations:
        print("No reservations.")
        return

    if mode == "json":
        print(json.dumps(reservations, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="🔖 Reservations", header_style="bold cyan")
        table.add_column("#", style="magenta")
        table.add_column("Title")
        table.add_column("Since")
        table.add_column("Due")
        table.add_column("Extended")
        for r in reservations:
            table.add_row(
                str(r["reservation_id"]), r.get("title") or "", r["date"], r["due_date"],
                "yes" if r["extension_count"] else "no"
            )
        _console.print(table)
    else:
        for r in reservations:
            extended = " (extended)" if r["extension_count"] else ""
            print(f"#{r['reservation_id']} {r.get('title', '')} - due {r['due_date']}{extended}")


def print_crawl_summary(report: Any) -> None:
    """Summarize an IngestionReport; one row per keyword."""
    mode = get_output_mode()

    rows = [
        {
            "keyword": k.keyword,
            "total": k.total_count,
            "pages": f"{k.processed_pages}/{k.total_pages}",
            "saved": k.saved_records,
            "failed_pages": k.failed_pages,
            "skipped": k.skip_reason if k.skipped else None,
        }
        for k in report.keywords
    ]

    if mode == "json":
        print(json.dumps(rows, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📥 Crawl Summary", header_style="bold cyan")
        for column in ("Keyword", "Total", "Pages", "Saved", "Failed", "Skipped"):
            table.add_column(column)
        for r in rows:
            table.add_row(
                r["keyword"], str(r["total"]), r["pages"], str(r["saved"]),
                str(r["failed_pages"]), r["skipped"] or ""
            )
        _console.print(table)
    else:
        for r in rows:
            if r["skipped"]:
                print(f"[{r['keyword']}] skipped: {r['skipped']}")
            else:
                print(f"[{r['keyword']}] {r['saved']} saved, {r['failed_pages']} failed pages ({r['pages']} pages)")
        print(f"Total saved: {report.saved_records}, failed pages: {report.failed_pages}")
