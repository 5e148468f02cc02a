import logging
import sqlite3
from typing import List, Optional

from database import read_connection, transaction
from errors import ConflictError, ForbiddenError, NotFoundError, UnavailableError
from inventory import InventoryLedger
from models import BorrowRecord, new_id, utcnow

logger = logging.getLogger(__name__)


class BorrowLifecycleManager:
    """Drives a borrow record from ACTIVE to RETURNED together with the inventory counter."""

    def __init__(self, ledger: InventoryLedger, db_file: Optional[str] = None) -> None:
        self.ledger = ledger
        self.db_file = db_file

    # ------------------------- State transitions ------------------------- #
    def create_borrow(self, user_id: str, book_id: str) -> BorrowRecord:
        with transaction(self.db_file) as conn:
            if conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone() is None:
                raise NotFoundError("user", user_id)

            book = conn.execute(
                "SELECT available_copies FROM books WHERE id = ?", (book_id,)
            ).fetchone()
            if book is None:
                raise NotFoundError("book", book_id)
            if book["available_copies"] <= 0:
                logger.warning(f"Borrow rejected: book {book_id} has no copies left")
                raise UnavailableError(book_id)

            if self._find_active(conn, user_id, book_id) is not None:
                logger.warning(f"Borrow rejected: user {user_id} already has book {book_id}")
                raise ConflictError("You already have this book borrowed")

            record = BorrowRecord(id=new_id(), user_id=user_id, book_id=book_id, borrowed_at=utcnow())
            try:
                conn.execute(
                    "INSERT INTO borrow_records (id, user_id, book_id, borrowed_at, returned_at) "
                    "VALUES (?, ?, ?, ?, NULL)",
                    (record.id, record.user_id, record.book_id, record.borrowed_at),
                )
            except sqlite3.IntegrityError as e:
                raise ConflictError("You already have this book borrowed") from e
            self.ledger.reserve_copy(conn, book_id)

        logger.info(f"Borrow {record.id} created: user {user_id} took book {book_id}")
        return record

    def return_borrow(self, borrow_record_id: str, requesting_user_id: str) -> BorrowRecord:
        with transaction(self.db_file) as conn:
            record = self._load(conn, borrow_record_id)
            if record.user_id != requesting_user_id:
                logger.warning(
                    f"Return rejected: user {requesting_user_id} does not own borrow {borrow_record_id}"
                )
                raise ForbiddenError("You can only return your own borrowed books")
            if not record.is_active:
                raise ConflictError("This book has already been returned")

            returned_at = utcnow()
            cursor = conn.execute(
                "UPDATE borrow_records SET returned_at = ? WHERE id = ? AND returned_at IS NULL",
                (returned_at, borrow_record_id),
            )
            if cursor.rowcount == 0:
                raise ConflictError("This book has already been returned")
            self.ledger.release_copy(conn, record.book_id)
            record.returned_at = returned_at

        logger.info(f"Borrow {borrow_record_id} returned: book {record.book_id} is back")
        return record

    def delete_borrow_record(self, borrow_record_id: str) -> int:
        """Administrative removal of a record and its fines.

        An active record still holds a copy, so that copy is released in the
        same transaction. Returns the number of fines removed.
        """
        with transaction(self.db_file) as conn:
            record = self._load(conn, borrow_record_id)
            fines = conn.execute(
                "DELETE FROM fines WHERE borrow_record_id = ?", (borrow_record_id,)
            ).rowcount
            cursor = conn.execute("DELETE FROM borrow_records WHERE id = ?", (borrow_record_id,))
            if cursor.rowcount == 0:
                raise NotFoundError("borrow record", borrow_record_id)
            if record.is_active:
                self.ledger.release_copy(conn, record.book_id)

        logger.info(
            f"Borrow {borrow_record_id} deleted ({fines} fines removed, "
            f"{'copy released' if record.is_active else 'already returned'})"
        )
        return fines

    # ------------------------- Queries ------------------------- #
    def get_borrow_record(self, borrow_record_id: str) -> BorrowRecord:
        with read_connection(self.db_file) as conn:
            return self._load(conn, borrow_record_id)

    def list_for_user(self, user_id: str) -> List[BorrowRecord]:
        with read_connection(self.db_file) as conn:
            rows = conn.execute(
                "SELECT * FROM borrow_records WHERE user_id = ? ORDER BY borrowed_at DESC",
                (user_id,),
            ).fetchall()
        return [BorrowRecord.from_dict(dict(row)) for row in rows]

    def list_active_for_book(self, book_id: str) -> List[BorrowRecord]:
        with read_connection(self.db_file) as conn:
            rows = conn.execute(
                "SELECT * FROM borrow_records WHERE book_id = ? AND returned_at IS NULL "
                "ORDER BY borrowed_at",
                (book_id,),
            ).fetchall()
        return [BorrowRecord.from_dict(dict(row)) for row in rows]

    def list_all(self) -> List[BorrowRecord]:
        with read_connection(self.db_file) as conn:
            rows = conn.execute("SELECT * FROM borrow_records ORDER BY borrowed_at DESC").fetchall()
        return [BorrowRecord.from_dict(dict(row)) for row in rows]

    @staticmethod
    def count_active(conn: sqlite3.Connection, *, user_id: Optional[str] = None,
                     book_id: Optional[str] = None) -> int:
        """Active-borrow count for a user or a book, inside the caller's connection."""
        if (user_id is None) == (book_id is None):
            raise ValueError("Provide exactly one of user_id or book_id.")
        column, value = ("user_id", user_id) if user_id is not None else ("book_id", book_id)
        row = conn.execute(
            f"SELECT COUNT(*) FROM borrow_records WHERE {column} = ? AND returned_at IS NULL",
            (value,),
        ).fetchone()
        return row[0]

    # ------------------------- Helpers ------------------------- #
    @staticmethod
    def _load(conn: sqlite3.Connection, borrow_record_id: str) -> BorrowRecord:
        row = conn.execute(
            "SELECT * FROM borrow_records WHERE id = ?", (borrow_record_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError("borrow record", borrow_record_id)
        return BorrowRecord.from_dict(dict(row))

    @staticmethod
    def _find_active(conn: sqlite3.Connection, user_id: str, book_id: str) -> Optional[sqlite3.Row]:
        return conn.execute(
            "SELECT id FROM borrow_records WHERE user_id = ? AND book_id = ? AND returned_at IS NULL",
            (user_id, book_id),
        ).fetchone()
