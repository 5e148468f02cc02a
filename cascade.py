"""Cascading deletion of books and users.

A deletion is refused while the target still has unreturned loans. Otherwise
the dependent rows are removed in one transaction, always in this order::

    fines -> borrow records -> wishlist entries -> (users only) provenance -> entity

The schema's foreign keys have no ON DELETE actions, so any other order fails
inside the transaction instead of leaving orphans behind.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from typing import Optional

from borrowing import BorrowLifecycleManager
from database import read_connection, transaction
from errors import ConflictError, NotFoundError
from models import Role

logger = logging.getLogger(__name__)


@dataclass
class CascadeReport:
    entity: str
    entity_id: str
    fines: int = 0
    borrow_records: int = 0
    wishlist_entries: int = 0
    provenance_cleared: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class CascadingDeletionCoordinator:
    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    def target_role(self, user_id: str) -> Role:
        """Role of the user about to be deleted, for the caller's policy check."""
        with read_connection(self.db_file) as conn:
            row = conn.execute("SELECT role FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            raise NotFoundError("user", user_id)
        return Role.parse(row["role"])

    def delete_book(self, book_id: str) -> CascadeReport:
        report = CascadeReport(entity="book", entity_id=book_id)
        with transaction(self.db_file) as conn:
            if conn.execute("SELECT 1 FROM books WHERE id = ?", (book_id,)).fetchone() is None:
                raise NotFoundError("book", book_id)

            active = BorrowLifecycleManager.count_active(conn, book_id=book_id)
            if active:
                logger.warning(f"Delete of book {book_id} refused: {active} active borrows")
                raise ConflictError(
                    f"Cannot delete book: it has {active} active borrow records. "
                    "All copies must be returned first.",
                    active_borrows=active,
                )

            report.fines = conn.execute(
                "DELETE FROM fines WHERE borrow_record_id IN "
                "(SELECT id FROM borrow_records WHERE book_id = ?)",
                (book_id,),
            ).rowcount
            report.borrow_records = conn.execute(
                "DELETE FROM borrow_records WHERE book_id = ?", (book_id,)
            ).rowcount
            report.wishlist_entries = conn.execute(
                "DELETE FROM wishlist WHERE book_id = ?", (book_id,)
            ).rowcount

            if conn.execute("DELETE FROM books WHERE id = ?", (book_id,)).rowcount == 0:
                raise NotFoundError("book", book_id)

        logger.info(f"Book {book_id} deleted with cascade {report.to_dict()}")
        return report

    def delete_user(self, user_id: str) -> CascadeReport:
        """Delete a user and everything hanging off it.

        Authorization is the caller's job (see policy.authorize_user_deletion);
        this method assumes the request was already allowed.
        """
        report = CascadeReport(entity="user", entity_id=user_id)
        with transaction(self.db_file) as conn:
            if conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone() is None:
                raise NotFoundError("user", user_id)

            active = BorrowLifecycleManager.count_active(conn, user_id=user_id)
            if active:
                logger.warning(f"Delete of user {user_id} refused: {active} active borrows")
                raise ConflictError(
                    f"Cannot delete user: User has {active} active borrow records. "
                    "Please return all books first.",
                    active_borrows=active,
                )

            report.fines = conn.execute(
                "DELETE FROM fines WHERE borrow_record_id IN "
                "(SELECT id FROM borrow_records WHERE user_id = ?)",
                (user_id,),
            ).rowcount
            report.borrow_records = conn.execute(
                "DELETE FROM borrow_records WHERE user_id = ?", (user_id,)
            ).rowcount
            report.wishlist_entries = conn.execute(
                "DELETE FROM wishlist WHERE user_id = ?", (user_id,)
            ).rowcount

            created = conn.execute(
                "UPDATE books SET created_by_id = NULL WHERE created_by_id = ?", (user_id,)
            ).rowcount
            updated = conn.execute(
                "UPDATE books SET updated_by_id = NULL WHERE updated_by_id = ?", (user_id,)
            ).rowcount
            report.provenance_cleared = created + updated

            if conn.execute("DELETE FROM users WHERE id = ?", (user_id,)).rowcount == 0:
                raise NotFoundError("user", user_id)

        logger.info(f"User {user_id} deleted with cascade {report.to_dict()}")
        return report
