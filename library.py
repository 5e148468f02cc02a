import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import database
from accounts import AccountDirectory
from borrowing import BorrowLifecycleManager
from cascade import CascadeReport, CascadingDeletionCoordinator
from catalog import BookCatalog
from database import initialize_database, read_connection
from fines import FineLifecycleManager
from inventory import InventoryLedger
from models import Book, BorrowRecord, Fine, User
from policy import authorize_user_deletion
from wishlist import Wishlist

logger = logging.getLogger(__name__)


class Library:
    """Entry point to the lending core: catalog, loans, fines, wishlists and deletions."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        # Resolved once so every manager talks to the same file even if the
        # environment changes later (tests swap LIBRARY_DB_FILE per test).
        self.db_file = database.resolve_db_file(db_file)
        initialize_database(self.db_file)

        self.ledger = InventoryLedger(self.db_file)
        self.borrows = BorrowLifecycleManager(self.ledger, self.db_file)
        self.fines = FineLifecycleManager(self.db_file)
        self.deletions = CascadingDeletionCoordinator(self.db_file)
        self.catalog = BookCatalog(self.ledger, self.db_file)
        self.accounts = AccountDirectory(self.db_file)
        self.wishlist = Wishlist(self.db_file)

    # ------------------------- Catalog ------------------------- #
    def add_book(self, title: str, author: str, created_by: Optional[str] = None, **kwargs) -> Book:
        return self.catalog.create_book(title, author, created_by, **kwargs)

    def update_book(self, book_id: str, updated_by: Optional[str] = None, **fields) -> Book:
        return self.catalog.update_book(book_id, updated_by, **fields)

    def get_book(self, book_id: str) -> Book:
        return self.catalog.get_book(book_id)

    def list_books(self) -> List[Book]:
        return self.catalog.list_books()

    def delete_book(self, book_id: str) -> CascadeReport:
        return self.deletions.delete_book(book_id)

    # ------------------------- Accounts ------------------------- #
    def add_user(self, name: str, email: str, password_hash: str, role="MEMBER") -> User:
        return self.accounts.create_user(name, email, password_hash, role)

    def get_user(self, user_id: str) -> User:
        return self.accounts.get_user(user_id)

    def delete_user(self, user_id: str, requested_by: User) -> CascadeReport:
        """Check the deletion policy against the target's role, then cascade."""
        # Role is read outside the deletion transaction; a concurrent role change is not seen.
        target_role = self.deletions.target_role(user_id)
        authorize_user_deletion(requested_by.id, requested_by.role, user_id, target_role)
        return self.deletions.delete_user(user_id)

    # ------------------------- Lending ------------------------- #
    def borrow(self, user_id: str, book_id: str) -> BorrowRecord:
        return self.borrows.create_borrow(user_id, book_id)

    def return_book(self, borrow_record_id: str, requesting_user_id: str) -> BorrowRecord:
        return self.borrows.return_borrow(borrow_record_id, requesting_user_id)

    def assess_fine(self, borrow_record_id: str, amount, reason: Optional[str] = None) -> Fine:
        return self.fines.create_fine(borrow_record_id, amount, reason)

    def audit_book(self, book_id: str) -> Dict[str, Any]:
        return self.ledger.audit(book_id)

    # ------------------------- Reporting ------------------------- #
    def get_statistics(self) -> Dict[str, Any]:
        """Get library statistics."""
        with read_connection(self.db_file) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT COUNT(*), COALESCE(SUM(total_copies), 0), COALESCE(SUM(available_copies), 0) FROM books"
            )
            total_books, total_copies, available_copies = cursor.fetchone()

            cursor.execute("SELECT COUNT(*) FROM borrow_records WHERE returned_at IS NULL")
            active_borrows = cursor.fetchone()[0]

            cursor.execute("SELECT COUNT(*) FROM users")
            total_users = cursor.fetchone()[0]

            cursor.execute("SELECT amount FROM fines WHERE paid = 0")
            unpaid = sum((Decimal(row[0]) for row in cursor.fetchall()), Decimal("0"))

        return {
            "total_books": total_books,
            "total_copies": total_copies,
            "available_copies": available_copies,
            "active_borrows": active_borrows,
            "total_users": total_users,
            "unpaid_fines": str(unpaid),
        }

    def close(self) -> None:
        """Compatibility helper: connections are opened per operation, so nothing to close."""
        return None
