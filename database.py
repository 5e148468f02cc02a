import os
import sqlite3
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from config import settings

logger = logging.getLogger(__name__)

# Default database file.
# Priority:
# 1) LIBRARY_DB_FILE read at call time (tests set it after import)
# 2) settings.database_file
DATABASE_FILE = settings.database_file


def resolve_db_file(db_file: Optional[str] = None) -> str:
    return db_file or os.environ.get("LIBRARY_DB_FILE") or DATABASE_FILE


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection to the SQLite database.

    Connections run in autocommit mode so that transaction() controls
    BEGIN/COMMIT explicitly.
    """
    conn = sqlite3.connect(
        resolve_db_file(db_file),
        timeout=settings.db_busy_timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


@contextmanager
def transaction(db_file: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Run a block as one atomic write transaction.

    BEGIN IMMEDIATE takes the database write lock before the first read, so
    every check made inside the block still holds when its writes commit.
    Any exception rolls back all statements issued in the block.
    """
    conn = get_db_connection(db_file)
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


@contextmanager
def read_connection(db_file: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    conn = get_db_connection(db_file)
    try:
        yield conn
    finally:
        conn.close()


def create_tables(db_file: Optional[str] = None) -> None:
    """Creates the necessary tables in the database if they don't exist."""
    conn = get_db_connection(db_file)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT NOT NULL UNIQUE,
                password_hash TEXT NOT NULL,
                role TEXT NOT NULL DEFAULT 'MEMBER'
                    CHECK(role IN ('MEMBER', 'LIBRARIAN', 'ADMIN')),
                refresh_token TEXT,
                created_at TIMESTAMP NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                isbn TEXT UNIQUE,
                publisher TEXT,
                published_year INTEGER,
                total_copies INTEGER NOT NULL CHECK(total_copies >= 0),
                available_copies INTEGER NOT NULL CHECK(available_copies >= 0),
                created_by_id TEXT REFERENCES users(id),
                updated_by_id TEXT REFERENCES users(id),
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS borrow_records (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL REFERENCES users(id),
                book_id TEXT NOT NULL REFERENCES books(id),
                borrowed_at TIMESTAMP NOT NULL,
                returned_at TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS fines (
                id TEXT PRIMARY KEY,
                borrow_record_id TEXT NOT NULL REFERENCES borrow_records(id),
                amount TEXT NOT NULL,
                reason TEXT,
                paid INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS wishlist (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL REFERENCES users(id),
                book_id TEXT NOT NULL REFERENCES books(id),
                notes TEXT,
                added_at TIMESTAMP NOT NULL,
                UNIQUE(user_id, book_id)
            )
        """)

        # At most one unreturned loan per (user, book)
        cursor.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_borrow_records_active_pair
            ON borrow_records(user_id, book_id) WHERE returned_at IS NULL
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_borrow_records_user ON borrow_records(user_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_borrow_records_book ON borrow_records(book_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_fines_borrow_record ON fines(borrow_record_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_wishlist_book ON wishlist(book_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_title ON books(title)")
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    """Initializes the database, creating tables if needed."""
    create_tables(db_file)
    logger.debug(f"Database ready at {resolve_db_file(db_file)}")
