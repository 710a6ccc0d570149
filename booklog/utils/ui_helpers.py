import json
import os
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Environment variable controlling CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "BOOKLOG_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_list_result(books: List[Any], pagination: Optional[Dict[str, Any]] = None) -> None:
    """Print a page of books in the current output mode.

    - plain: 'id - Title by Author' lines, or 'No books in library.'
    - json: the books and pagination as one JSON object
    - rich: a Rich table
    """
    mode = get_output_mode()

    if mode == "json":
        payload = {"books": [b.to_dict() for b in books], "pagination": pagination}
        print(json.dumps(payload, ensure_ascii=False))
        return

    if not books:
        print("No books in library.")
        return

    if mode == "rich":
        table = Table(title="Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Genre")
        table.add_column("Read")
        table.add_column("Borrowed by")
        for b in books:
            table.add_row(b.id, b.title, b.author, b.genre.value,
                          "yes" if b.is_read else "no", b.borrowed_by or "")
        _console.print(table)
    else:
        for b in books:
            lent = f" [lent to {b.borrowed_by}]" if b.borrowed_by else ""
            print(f"{b.id} - {b.title} by {b.author}{lent}")

    if pagination:
        print(f"Page {pagination['current']} of {pagination['pages']} ({pagination['total']} books)")


def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print statistics in the current output mode."""
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
        return

    lines = [
        f"Total Books: {stats['totalBooks']}",
        f"Read: {stats['readBooks']} ({stats['readPercentage']}%)",
        f"Unread: {stats['unreadBooks']}",
        f"Borrowed: {stats['borrowedBooks']}",
    ]
    genres = ", ".join(f"{g['genre']}: {g['count']}" for g in stats["genreDistribution"])

    if mode == "rich":
        content = "\n".join(f"[bold]{line.split(':', 1)[0]}:[/]{line.split(':', 1)[1]}" for line in lines)
        if genres:
            content += f"\n[bold]Genres:[/] {genres}"
        _console.print(Panel.fit(content, title="Stats", border_style="blue"))
    else:
        for line in lines:
            print(line)
        if genres:
            print(f"Genres: {genres}")
