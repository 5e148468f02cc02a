import logging
import sqlite3
from typing import List, Optional

from database import read_connection, transaction
from errors import ConflictError, NotFoundError
from inventory import InventoryLedger
from models import Book, new_id, utcnow

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = ("title", "author", "isbn", "publisher", "published_year")


class BookCatalog:
    """Creates and edits books, recording which staff member touched them last."""

    def __init__(self, ledger: InventoryLedger, db_file: Optional[str] = None) -> None:
        self.ledger = ledger
        self.db_file = db_file

    # ------------------------- Core operations ------------------------- #
    def create_book(self, title: str, author: str, created_by: Optional[str] = None, *,
                    isbn: Optional[str] = None, publisher: Optional[str] = None,
                    published_year: Optional[int] = None, copies: int = 1) -> Book:
        if not title or not title.strip() or not author or not author.strip():
            raise ValueError("Missing required fields: title, author")
        if copies < 0:
            raise ValueError("Copies cannot be negative.")
        isbn = self._normalize_isbn(isbn)

        now = utcnow()
        book = Book(
            id=new_id(), title=title, author=author, isbn=isbn, publisher=publisher,
            published_year=published_year, total_copies=copies, available_copies=copies,
            created_by_id=created_by, updated_by_id=created_by, created_at=now, updated_at=now,
        )
        with transaction(self.db_file) as conn:
            if created_by is not None:
                self._require_user(conn, created_by)
            if isbn and self._isbn_taken(conn, isbn):
                raise ConflictError(f"A book with ISBN {isbn} already exists")
            try:
                conn.execute(
                    """
                    INSERT INTO books (
                        id, title, author, isbn, publisher, published_year,
                        total_copies, available_copies, created_by_id, updated_by_id,
                        created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        book.id, book.title, book.author, book.isbn, book.publisher,
                        book.published_year, book.total_copies, book.available_copies,
                        book.created_by_id, book.updated_by_id, book.created_at, book.updated_at,
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise ConflictError(f"A book with ISBN {isbn} already exists") from e

        logger.info(f"Book {book.id} '{book.title}' added with {copies} copies")
        return book

    def update_book(self, book_id: str, updated_by: Optional[str] = None, *,
                    total_copies: Optional[int] = None, **fields) -> Book:
        """Edit catalog fields of a book. Copy counts go through the inventory ledger."""
        unknown = set(fields) - set(_EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        update_fields = {k: v for k, v in fields.items() if v is not None}
        for key in ("title", "author"):
            if key in update_fields:
                update_fields[key] = str(update_fields[key]).strip()
                if not update_fields[key]:
                    raise ValueError(f"{key.capitalize()} cannot be empty.")
        if "isbn" in update_fields:
            update_fields["isbn"] = self._normalize_isbn(update_fields["isbn"])

        if not update_fields and total_copies is None:
            raise ValueError("Nothing to update.")

        with transaction(self.db_file) as conn:
            if conn.execute("SELECT 1 FROM books WHERE id = ?", (book_id,)).fetchone() is None:
                raise NotFoundError("book", book_id)
            if updated_by is not None:
                self._require_user(conn, updated_by)
            isbn = update_fields.get("isbn")
            if isbn and self._isbn_taken(conn, isbn, exclude_id=book_id):
                raise ConflictError(f"A book with ISBN {isbn} already exists")

            if total_copies is not None:
                self.ledger.set_total_copies(conn, book_id, total_copies)

            if updated_by is not None:
                update_fields["updated_by_id"] = updated_by
            update_fields["updated_at"] = utcnow()
            set_clause = ", ".join([f"{field} = ?" for field in update_fields.keys()])
            params = list(update_fields.values()) + [book_id]
            conn.execute(f"UPDATE books SET {set_clause} WHERE id = ?", params)
            row = conn.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()

        logger.info(f"Book {book_id} updated by {updated_by}")
        return Book.from_dict(dict(row))

    # ------------------------- Queries ------------------------- #
    def get_book(self, book_id: str) -> Book:
        with read_connection(self.db_file) as conn:
            row = conn.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
        if row is None:
            raise NotFoundError("book", book_id)
        return Book.from_dict(dict(row))

    def list_books(self) -> List[Book]:
        with read_connection(self.db_file) as conn:
            rows = conn.execute("SELECT * FROM books ORDER BY title").fetchall()
        return [Book.from_dict(dict(row)) for row in rows]

    def find_by_isbn(self, isbn: str) -> Optional[Book]:
        norm = self._normalize_isbn(isbn)
        if not norm:
            return None
        with read_connection(self.db_file) as conn:
            row = conn.execute("SELECT * FROM books WHERE isbn = ?", (norm,)).fetchone()
        return Book.from_dict(dict(row)) if row else None

    # ------------------------- Utilities ------------------------- #
    @staticmethod
    def _normalize_isbn(raw: Optional[str]) -> Optional[str]:
        if raw is None:
            return None
        cleaned = "".join(ch for ch in str(raw) if ch.isalnum()).upper()
        return cleaned or None

    @staticmethod
    def _isbn_taken(conn: sqlite3.Connection, isbn: str, exclude_id: Optional[str] = None) -> bool:
        row = conn.execute("SELECT id FROM books WHERE isbn = ?", (isbn,)).fetchone()
        return row is not None and row["id"] != exclude_id

    @staticmethod
    def _require_user(conn: sqlite3.Connection, user_id: str) -> None:
        if conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone() is None:
            raise NotFoundError("user", user_id)
