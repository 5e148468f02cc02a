import sqlite3

import pytest

from database import get_db_connection, initialize_database, read_connection, transaction


def test_tables_created(db_file):
    initialize_database(db_file)
    with read_connection(db_file) as conn:
        names = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
    assert {"users", "books", "borrow_records", "fines", "wishlist"} <= names


def test_initialize_is_repeatable(db_file):
    initialize_database(db_file)
    initialize_database(db_file)


def test_connection_settings(db_file):
    conn = get_db_connection(db_file)
    try:
        assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
        assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
        assert conn.isolation_level is None
    finally:
        conn.close()


def test_transaction_commits(lib, make_book):
    book = make_book(copies=1)
    with transaction(lib.db_file) as conn:
        conn.execute("UPDATE books SET title = 'Dubliners' WHERE id = ?", (book.id,))
    assert lib.get_book(book.id).title == "Dubliners"


def test_transaction_rolls_back_every_statement(lib, make_book):
    book = make_book(copies=1)
    with pytest.raises(ValueError):
        with transaction(lib.db_file) as conn:
            conn.execute("UPDATE books SET title = 'Dubliners' WHERE id = ?", (book.id,))
            conn.execute("UPDATE books SET available_copies = 0 WHERE id = ?", (book.id,))
            raise ValueError("stop")
    stored = lib.get_book(book.id)
    assert stored.title == "Ulysses"
    assert stored.available_copies == 1


def test_counter_cannot_go_negative(lib, make_book):
    book = make_book(copies=0)
    with pytest.raises(sqlite3.IntegrityError):
        with transaction(lib.db_file) as conn:
            conn.execute("UPDATE books SET available_copies = -1 WHERE id = ?", (book.id,))


def test_only_one_active_loan_per_pair(lib, make_book, make_user):
    book = make_book(copies=2)
    user = make_user()
    lib.borrow(user.id, book.id)
    with pytest.raises(sqlite3.IntegrityError):
        with transaction(lib.db_file) as conn:
            conn.execute(
                "INSERT INTO borrow_records (id, user_id, book_id, borrowed_at) VALUES ('x', ?, ?, 'now')",
                (user.id, book.id),
            )


def test_book_with_history_cannot_be_deleted_directly(lib, make_book, make_user):
    book = make_book(copies=1)
    user = make_user()
    record = lib.borrow(user.id, book.id)
    lib.return_book(record.id, user.id)
    with pytest.raises(sqlite3.IntegrityError):
        with transaction(lib.db_file) as conn:
            conn.execute("DELETE FROM books WHERE id = ?", (book.id,))
