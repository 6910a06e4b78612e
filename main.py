import os
import subprocess
import sys
import webbrowser
from typing import NoReturn, Optional

import typer
from rich.console import Console

from config import configure_logging, settings
from errors import LendingError
from lending import LendingLedger
from utils.ui_helpers import print_book_list, print_issue_list, print_stats_result, set_output_mode

APP_NAME = "LibTrack CLI"

console = Console(stderr=True)

app = typer.Typer(help=APP_NAME)


def _ledger(ctx: typer.Context) -> LendingLedger:
    """Open the ledger on first use and keep it on the context."""
    state = ctx.ensure_object(dict)
    if state.get("ledger") is None:
        state["ledger"] = LendingLedger(state.get("db_file"))
    return state["ledger"]


def _fail(exc: Exception) -> NoReturn:
    print(f"Error: {exc}")
    raise typer.Exit(code=1)


@app.callback()
def _global_options(
    ctx: typer.Context,
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    db: Optional[str] = typer.Option(None, "--db", help="Ledger database file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log ledger activity to stderr"),
):
    """Global options for the CLI (output mode, database file)."""
    if output:
        set_output_mode(output)
    if verbose:
        configure_logging("INFO")
    ctx.ensure_object(dict)["db_file"] = db


@app.command("list")
def cli_list(ctx: typer.Context):
    """List every book with its stock."""
    print_book_list(_ledger(ctx).list_books())


@app.command("add")
def cli_add(
    ctx: typer.Context,
    title: str,
    author: str,
    quantity: int = typer.Option(1, "--quantity", "-q", help="Copies owned"),
):
    """Add a book to the catalog."""
    try:
        book = _ledger(ctx).add_book(title, author, quantity)
    except LendingError as e:
        _fail(e)
    print(f"Added #{book.id}: {book.title} by {book.author} ({book.quantity} copies)")


@app.command("update")
def cli_update(
    ctx: typer.Context,
    book_id: int,
    title: Optional[str] = typer.Option(None, "--title"),
    author: Optional[str] = typer.Option(None, "--author"),
    quantity: Optional[int] = typer.Option(None, "--quantity", "-q"),
):
    """Change a book's title, author or number of copies."""
    if title is None and author is None and quantity is None:
        print("Nothing to update. Provide --title, --author and/or --quantity.")
        raise typer.Exit(code=2)
    try:
        book = _ledger(ctx).update_book(book_id, title=title, author=author, quantity=quantity)
    except LendingError as e:
        _fail(e)
    print(f"Updated #{book.id}: {book.title} by {book.author} [{book.available}/{book.quantity}]")


@app.command("remove")
def cli_remove(ctx: typer.Context, book_id: int):
    """Delete a book with no copies on loan."""
    try:
        _ledger(ctx).delete_book(book_id)
    except LendingError as e:
        _fail(e)
    print(f"Book {book_id} has been removed.")


@app.command("issue")
def cli_issue(ctx: typer.Context, user_id: int, book_id: int):
    """Lend a copy of a book to a user."""
    try:
        record = _ledger(ctx).issue_book(user_id, book_id)
    except LendingError as e:
        _fail(e)
    print(f"Issued book {book_id} to user {user_id} (issue #{record.id}).")


@app.command("return")
def cli_return(ctx: typer.Context, issue_id: int):
    """Mark an issue as returned."""
    try:
        _ledger(ctx).return_book(issue_id)
    except LendingError as e:
        _fail(e)
    print(f"Issue #{issue_id} returned.")


@app.command("my-books")
def cli_my_books(ctx: typer.Context, user_id: int):
    """Show a user's loans, newest first."""
    print_issue_list(_ledger(ctx).list_issues_for_user(user_id))


@app.command("issues")
def cli_issues(
    ctx: typer.Context,
    recent: bool = typer.Option(False, "--recent", help=f"Only the latest {settings.recent_issues_limit}"),
):
    """Show the issue history of the whole library."""
    ledger = _ledger(ctx)
    records = ledger.recent_issues() if recent else ledger.list_all_issues()
    print_issue_list(records, show_user=True)


@app.command("stats")
def cli_stats(ctx: typer.Context):
    """Show stock and borrower counters."""
    print_stats_result(_ledger(ctx).get_statistics())


@app.command("serve")
def cli_serve(
    ctx: typer.Context,
    host: str = typer.Option(settings.api_host, "--host"),
    port: int = typer.Option(settings.api_port, "--port"),
    open_browser: bool = typer.Option(True, "--open/--no-open", help="Open the API docs in a browser"),
):
    """Run the HTTP API with uvicorn."""
    env = dict(os.environ)
    db_file = ctx.ensure_object(dict).get("db_file")
    if db_file:
        env["LIBRARY_DB_FILE"] = db_file
    url = f"http://{host}:{port}/docs"
    print(f"Starting web UI on {url}")
    if open_browser:
        webbrowser.open(url)
    try:
        subprocess.run(
            [sys.executable, "-m", "uvicorn", "api:app", "--host", host, "--port", str(port)],
            env=env,
            check=False,
        )
    except KeyboardInterrupt:
        console.print("[dim]Server stopped[/]")


if __name__ == "__main__":
    app()
