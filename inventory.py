"""Inventory ledger: the only writer of ``books.available_copies``.

Every method that mutates the counter takes the caller's open transaction
connection, so the counter moves in the same commit as the borrow record
change that justifies it.
"""
import logging
import sqlite3
from typing import Any, Dict, Optional

from database import read_connection
from errors import ConflictError, NotFoundError, UnavailableError
from models import utcnow

logger = logging.getLogger(__name__)


class InventoryLedger:
    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    # ------------------------- Counter mutations ------------------------- #
    def reserve_copy(self, conn: sqlite3.Connection, book_id: str) -> int:
        """Take one copy out of circulation. Returns the new available count."""
        row = conn.execute(
            "SELECT available_copies FROM books WHERE id = ?", (book_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError("book", book_id)

        cursor = conn.execute(
            "UPDATE books SET available_copies = available_copies - 1 "
            "WHERE id = ? AND available_copies > 0",
            (book_id,),
        )
        if cursor.rowcount == 0:
            raise UnavailableError(book_id)
        return row["available_copies"] - 1

    def release_copy(self, conn: sqlite3.Connection, book_id: str) -> int:
        """Put one copy back. Trusts that a matching reservation exists."""
        cursor = conn.execute(
            "UPDATE books SET available_copies = available_copies + 1 WHERE id = ?",
            (book_id,),
        )
        if cursor.rowcount == 0:
            raise NotFoundError("book", book_id)
        row = conn.execute(
            "SELECT available_copies FROM books WHERE id = ?", (book_id,)
        ).fetchone()
        return row["available_copies"]

    def set_total_copies(self, conn: sqlite3.Connection, book_id: str, total: int) -> int:
        """Change a book's copy count, recomputing availability from open loans."""
        if total < 0:
            raise ValueError("Total copies cannot be negative.")
        if conn.execute("SELECT 1 FROM books WHERE id = ?", (book_id,)).fetchone() is None:
            raise NotFoundError("book", book_id)

        active = self.active_borrow_count(conn, book_id)
        if total < active:
            raise ConflictError(
                f"Cannot set total copies to {total}: {active} copies are currently borrowed",
                active_borrows=active,
            )
        available = total - active
        conn.execute(
            "UPDATE books SET total_copies = ?, available_copies = ?, updated_at = ? WHERE id = ?",
            (total, available, utcnow(), book_id),
        )
        logger.info(f"Copies of book {book_id} set to {total} ({available} available)")
        return available

    # ------------------------- Queries ------------------------- #
    @staticmethod
    def active_borrow_count(conn: sqlite3.Connection, book_id: str) -> int:
        row = conn.execute(
            "SELECT COUNT(*) FROM borrow_records WHERE book_id = ? AND returned_at IS NULL",
            (book_id,),
        ).fetchone()
        return row[0]

    def audit(self, book_id: str) -> Dict[str, Any]:
        """Compare the stored counter with what the open loans say it should be."""
        with read_connection(self.db_file) as conn:
            row = conn.execute(
                "SELECT total_copies, available_copies FROM books WHERE id = ?", (book_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError("book", book_id)
            active = self.active_borrow_count(conn, book_id)

        expected = row["total_copies"] - active
        report = {
            "book_id": book_id,
            "total_copies": row["total_copies"],
            "available_copies": row["available_copies"],
            "active_borrows": active,
            "expected_available": expected,
            "consistent": (
                row["available_copies"] == expected
                and 0 <= row["available_copies"] <= row["total_copies"]
            ),
        }
        if not report["consistent"]:
            logger.warning(f"Inventory drift on book {book_id}: {report}")
        return report
