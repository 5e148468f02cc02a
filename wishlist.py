import logging
import sqlite3
from typing import List, Optional

from database import read_connection, transaction
from errors import ConflictError, NotFoundError
from models import WishlistEntry, new_id, utcnow

logger = logging.getLogger(__name__)


class Wishlist:
    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    def add(self, user_id: str, book_id: str, notes: Optional[str] = None) -> WishlistEntry:
        entry = WishlistEntry(id=new_id(), user_id=user_id, book_id=book_id, notes=notes, added_at=utcnow())
        with transaction(self.db_file) as conn:
            if conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone() is None:
                raise NotFoundError("user", user_id)
            if conn.execute("SELECT 1 FROM books WHERE id = ?", (book_id,)).fetchone() is None:
                raise NotFoundError("book", book_id)
            try:
                conn.execute(
                    "INSERT INTO wishlist (id, user_id, book_id, notes, added_at) VALUES (?, ?, ?, ?, ?)",
                    (entry.id, entry.user_id, entry.book_id, entry.notes, entry.added_at),
                )
            except sqlite3.IntegrityError as e:
                raise ConflictError("Book is already in your wishlist") from e
        logger.info(f"User {user_id} wishlisted book {book_id}")
        return entry

    def remove(self, user_id: str, book_id: str) -> None:
        with transaction(self.db_file) as conn:
            cursor = conn.execute(
                "DELETE FROM wishlist WHERE user_id = ? AND book_id = ?", (user_id, book_id)
            )
            if cursor.rowcount == 0:
                raise NotFoundError("wishlist entry", book_id)

    def list_for_user(self, user_id: str) -> List[WishlistEntry]:
        with read_connection(self.db_file) as conn:
            rows = conn.execute(
                "SELECT * FROM wishlist WHERE user_id = ? ORDER BY added_at DESC", (user_id,)
            ).fetchall()
        return [WishlistEntry.from_dict(dict(row)) for row in rows]

    def contains(self, user_id: str, book_id: str) -> bool:
        with read_connection(self.db_file) as conn:
            row = conn.execute(
                "SELECT 1 FROM wishlist WHERE user_id = ? AND book_id = ?", (user_id, book_id)
            ).fetchone()
        return row is not None
