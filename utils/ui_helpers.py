import json
import os
from typing import Any, Dict, List

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIBTRACK_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_book_list(books: List[Any]) -> None:
    """Print books in the current output mode.
    - plain: '<id> - Title by Author [available/quantity]' lines, or 'No books in library.'
    - json: JSON array of book dicts
    - rich: Rich table
    """
    mode = get_output_mode()

    if not books:
        print("No books in library.")
        return

    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Available", justify="right")
        for b in books:
            style = "red" if b.available == 0 else "green"
            table.add_row(str(b.id), b.title, b.author, f"[{style}]{b.available}/{b.quantity}[/]")
        _console.print(table)
    else:
        for b in books:
            print(f"{b.id} - {b.title} by {b.author} [{b.available}/{b.quantity}]")


def print_issue_list(issues: List[Any], show_user: bool = False) -> None:
    mode = get_output_mode()

    if not issues:
        print("No issue records.")
        return

    if mode == "json":
        print(json.dumps([i.to_dict() for i in issues], ensure_ascii=False))
        return

    if mode == "rich":
        table = Table(title="📖 Issues", header_style="bold cyan")
        table.add_column("Issue", style="magenta", no_wrap=True)
        table.add_column("Book")
        if show_user:
            table.add_column("User")
        table.add_column("Issued")
        table.add_column("Status")
        for i in issues:
            status = f"[green]Returned {i.return_date[:10]}[/]" if i.return_date else "[yellow]Issued[/]"
            row = [str(i.id), f"{i.book_title} ({i.book_author})"]
            if show_user:
                row.append(i.username or "")
            row += [i.issue_date[:10], status]
            table.add_row(*row)
        _console.print(table)
        return

    for i in issues:
        status = f"Returned {i.return_date[:10]}" if i.return_date else "Issued"
        who = f" to {i.username}" if show_user else ""
        print(f"#{i.id} {i.book_title} by {i.book_author}{who} on {i.issue_date[:10]} - {status}")


def print_stats_result(stats: Dict[str, Any]) -> None:
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = (
            f"[bold]Total Books:[/] {stats['total_copies']}\n"
            f"[bold]Currently Issued:[/] {stats['issued_copies']}\n"
            f"[bold]Active Borrowers:[/] {stats['active_borrowers']}"
        )
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        print(f"Total Books: {stats['total_copies']}")
        print(f"Currently Issued: {stats['issued_copies']}")
        print(f"Active Borrowers: {stats['active_borrowers']}")
