import logging
import subprocess
import sys
from functools import wraps
from typing import Optional

import typer

import database
from accounts import hash_password
from config import settings
from errors import LibraryError
from library import Library
from seed import seed_demo_data
from ui_helpers import print_book_list, print_record, print_stats_result, set_output_mode

logging.basicConfig(level=settings.log_level)

APP_NAME = "Library CLI"


class LibraryManager:
    """Library instance shared by commands, rebuilt when the database file changes."""
    _instance: Optional[Library] = None
    _db_file_snapshot: Optional[str] = None

    @classmethod
    def get_instance(cls) -> Library:
        current_db = database.resolve_db_file()
        if cls._instance is None or current_db != cls._db_file_snapshot:
            cls._instance = Library(current_db)
            cls._db_file_snapshot = current_db
        return cls._instance


def report_errors(func):
    """Turn business-rule failures into an 'Error: ...' line and exit code 1."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (LibraryError, ValueError) as e:
            print(f"Error: {e}")
            raise typer.Exit(code=1)
    return wrapper


# --- Typer CLI Application ---
app = typer.Typer(help=APP_NAME)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global options for the CLI (e.g. output mode)."""
    if output:
        set_output_mode(output)


@app.command("init-db")
def cli_init_db():
    """Create the database tables."""
    lib = LibraryManager.get_instance()
    print(f"Database ready: {lib.db_file}")


@app.command("seed")
def cli_seed():
    """Insert demo users and books."""
    created = seed_demo_data(LibraryManager.get_instance())
    print(f"Seeded {created['users']} users and {created['books']} books.")


@app.command("add-user")
@report_errors
def cli_add_user(
    name: str,
    email: str,
    password: str = typer.Option(..., "--password", "-p", help="Plain password, stored hashed"),
    role: str = typer.Option("MEMBER", "--role", "-r", help="MEMBER | LIBRARIAN | ADMIN"),
):
    """Register a user."""
    user = LibraryManager.get_instance().add_user(name, email, hash_password(password), role)
    print(f"User created: {user.id} ({user.role.value})")


@app.command("add-book")
@report_errors
def cli_add_book(
    title: str,
    author: str,
    isbn: Optional[str] = typer.Option(None, "--isbn"),
    copies: int = typer.Option(1, "--copies", "-c"),
    created_by: Optional[str] = typer.Option(None, "--by", help="Id of the staff member adding the book"),
):
    """Add a book to the catalog."""
    book = LibraryManager.get_instance().add_book(title, author, created_by, isbn=isbn, copies=copies)
    print(f"Successfully added: {book.title} by {book.author} ({book.id})")


@app.command("list")
def cli_list():
    """List all books with their availability."""
    print_book_list(LibraryManager.get_instance().list_books())


@app.command("borrow")
@report_errors
def cli_borrow(user_id: str, book_id: str):
    """Borrow a copy of a book for a user."""
    record = LibraryManager.get_instance().borrow(user_id, book_id)
    print_record("Borrowed", record.to_dict())


@app.command("return")
@report_errors
def cli_return(record_id: str, user_id: str):
    """Return a borrowed book on behalf of its borrower."""
    record = LibraryManager.get_instance().return_book(record_id, user_id)
    print_record("Returned", record.to_dict())


@app.command("fine")
@report_errors
def cli_fine(record_id: str, amount: str, reason: Optional[str] = typer.Option(None, "--reason")):
    """Assess a fine against a borrow record."""
    fine = LibraryManager.get_instance().assess_fine(record_id, amount, reason)
    print_record("Fine", fine.to_dict())


@app.command("pay-fine")
@report_errors
def cli_pay_fine(fine_id: str):
    """Mark a fine as paid."""
    fine = LibraryManager.get_instance().fines.update_fine(fine_id, paid=True)
    print(f"Fine {fine.id} marked as paid.")


@app.command("delete-book")
@report_errors
def cli_delete_book(book_id: str):
    """Delete a book and its loan history. Refused while copies are out."""
    report = LibraryManager.get_instance().delete_book(book_id)
    print_record("Book deleted", report.to_dict())


@app.command("delete-user")
@report_errors
def cli_delete_user(
    user_id: str,
    requester_id: str = typer.Option(..., "--as", help="Id of the staff member performing the deletion"),
):
    """Delete a user and their loan history. Refused while they hold books."""
    lib = LibraryManager.get_instance()
    requester = lib.get_user(requester_id)
    report = lib.delete_user(user_id, requested_by=requester)
    print_record("User deleted", report.to_dict())


@app.command("audit")
@report_errors
def cli_audit(book_id: str):
    """Check a book's available copies against its open loans."""
    report = LibraryManager.get_instance().audit_book(book_id)
    print_record("Inventory audit", report)
    if not report["consistent"]:
        raise typer.Exit(code=2)


@app.command("stats")
def cli_stats():
    """Show library statistics."""
    print_stats_result(LibraryManager.get_instance().get_statistics())


@app.command("serve")
def cli_serve(
    host: str = typer.Option(settings.api_host, "--host"),
    port: int = typer.Option(settings.api_port, "--port"),
):
    """Run the HTTP API with uvicorn."""
    print(f"Starting API on http://{host}:{port}")
    subprocess.run([sys.executable, "-m", "uvicorn", "api:app", "--host", host, "--port", str(port)])


if __name__ == "__main__":
    app()
