import os
import json
from typing import Any, Dict, List

from rich.console import Console
from rich.table import Table
from rich.panel import Panel

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_book_list(books: List[Any]) -> None:
    """Print books in the current output mode.
    - plain: 'id - Title by Author [available/total]' lines, or 'No books in library.'
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
            table.add_row(b.id, b.title, b.author, f"{b.available_copies}/{b.total_copies}")
        _console.print(table)
    else:
        for b in books:
            print(f"{b.id} - {b.title} by {b.author} [{b.available_copies}/{b.total_copies}]")


def print_record(title: str, data: Dict[str, Any]) -> None:
    """Print a single record (borrow, fine, cascade report...) in the current output mode."""
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(data, ensure_ascii=False, default=str))
    elif mode == "rich":
        content = "\n".join(f"[bold]{k}:[/] {v}" for k, v in data.items())
        _console.print(Panel.fit(content, title=title, border_style="blue"))
    else:
        print(title)
        for k, v in data.items():
            print(f"{k}: {v}")


def print_stats_result(stats: Dict[str, Any]) -> None:
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    labels = {
        "total_books": "Total Books",
        "total_copies": "Total Copies",
        "available_copies": "Available Copies",
        "active_borrows": "Active Borrows",
        "total_users": "Users",
        "unpaid_fines": "Unpaid Fines",
    }
    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{labels.get(k, k)}:[/] {v}" for k, v in stats.items())
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for k, v in stats.items():
            print(f"{labels.get(k, k)}: {v}")
