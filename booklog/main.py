import logging
from typing import Optional

import typer
import uvicorn
from rich.console import Console

from booklog.config import settings
from booklog.errors import LibraryError, ValidationError
from booklog.library import Library
from booklog.utils.ui_helpers import print_list_result, print_stats_result, set_output_mode

console = Console()


class LibraryManager:
    """Library instance shared by the commands of one invocation."""

    _instance: Optional[Library] = None
    _db_file: Optional[str] = None

    @classmethod
    def configure(cls, db_file: Optional[str]) -> None:
        if db_file != cls._db_file:
            cls._instance = None
        cls._db_file = db_file

    @classmethod
    def get_instance(cls) -> Library:
        if cls._instance is None:
            cls._instance = Library(cls._db_file or settings.db_file)
        return cls._instance


def _fail(message: str) -> None:
    print(f"Error: {message}")
    raise typer.Exit(code=1)


def _report(error: LibraryError) -> None:
    if isinstance(error, ValidationError):
        for e in error.errors:
            print(f"  {e.field}: {e.message}")
    _fail(error.message)


# --- Typer CLI application ---
app = typer.Typer(help="Booklog CLI")


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None, "--output", "-o", help="Output format: plain | json | rich (default: plain)"
    ),
    db_file: Optional[str] = typer.Option(
        None, "--db-file", envvar="LIBRARY_DB_FILE", help="SQLite database file"
    ),
):
    """Global options (output mode, database file)."""
    if output:
        set_output_mode(output)
    LibraryManager.configure(db_file)


@app.command("init-db")
def cli_init_db():
    """Create the database schema if it does not exist."""
    lib = LibraryManager.get_instance()
    print(f"Database ready: {lib.principals.db_file}")


@app.command("create-owner")
def cli_create_owner(
    name: str,
    label: str = typer.Option("default", "--label", help="Label stored with the first token"),
):
    """Register an owner and print its first API token (shown only once)."""
    lib = LibraryManager.get_instance()
    try:
        principal, token = lib.principals.create_principal(name, label)
    except ValueError as e:
        _fail(str(e))
    except LibraryError as e:
        _report(e)
    print(f"Owner: {principal.id} ({principal.name})")
    print(f"Token: {token}")


@app.command("issue-token")
def cli_issue_token(
    owner_id: str,
    label: str = typer.Option("default", "--label", help="Label stored with the token"),
):
    """Issue an additional API token for an existing owner."""
    lib = LibraryManager.get_instance()
    try:
        token = lib.principals.issue_token(owner_id, label)
    except LookupError as e:
        _fail(str(e))
    except LibraryError as e:
        _report(e)
    print(f"Token: {token}")


@app.command("books")
def cli_books(
    token: str = typer.Option(..., "--token", "-t", envvar="BOOKLOG_TOKEN", help="Owner API token"),
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Match title, author or description"),
    genre: Optional[str] = typer.Option(None, "--genre", "-g", help="Exact genre"),
    is_read: Optional[bool] = typer.Option(None, "--read/--unread", help="Filter by read state"),
    is_borrowed: Optional[bool] = typer.Option(None, "--borrowed/--available", help="Filter by lending state"),
    page: int = typer.Option(1, "--page", "-p", help="Page number"),
    page_size: int = typer.Option(settings.default_page_size, "--page-size", "-l", help="Books per page"),
):
    """List the owner's books."""
    lib = LibraryManager.get_instance()
    try:
        principal = lib.auth.resolve(token)
        result = lib.list_books(principal, {
            "search": search,
            "genre": genre,
            "isRead": is_read,
            "isBorrowed": is_borrowed,
            "page": page,
            "pageSize": page_size,
        })
    except LibraryError as e:
        _report(e)
    print_list_result(result.items, result.pagination.to_dict())


@app.command("stats")
def cli_stats(
    token: str = typer.Option(..., "--token", "-t", envvar="BOOKLOG_TOKEN", help="Owner API token"),
):
    """Show the owner's catalog statistics."""
    lib = LibraryManager.get_instance()
    try:
        principal = lib.auth.resolve(token)
        stats = lib.get_statistics(principal)
    except LibraryError as e:
        _report(e)
    print_stats_result(stats.to_dict())


@app.command("serve")
def cli_serve(
    host: str = typer.Option(settings.api_host, "--host", help="Bind address"),
    port: int = typer.Option(settings.api_port, "--port", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
):
    """Run the HTTP API with uvicorn."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if LibraryManager._db_file:
        settings.db_file = LibraryManager._db_file
    console.print(f"[bold]Starting {settings.app_name}[/] on http://{host}:{port}/")
    uvicorn.run("booklog.api:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
