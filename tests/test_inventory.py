import pytest

from database import transaction
from errors import ConflictError, NotFoundError, UnavailableError


def test_reserve_and_release_move_counter(lib, make_book):
    book = make_book(copies=2)

    with transaction(lib.db_file) as conn:
        assert lib.ledger.reserve_copy(conn, book.id) == 1
    assert lib.get_book(book.id).available_copies == 1

    with transaction(lib.db_file) as conn:
        assert lib.ledger.release_copy(conn, book.id) == 2
    assert lib.get_book(book.id).available_copies == 2


def test_reserve_with_no_copies_left(lib, make_book):
    book = make_book(copies=0)

    with pytest.raises(UnavailableError):
        with transaction(lib.db_file) as conn:
            lib.ledger.reserve_copy(conn, book.id)
    assert lib.get_book(book.id).available_copies == 0


def test_reserve_unknown_book(lib):
    with pytest.raises(NotFoundError) as exc:
        with transaction(lib.db_file) as conn:
            lib.ledger.reserve_copy(conn, "missing")
    assert exc.value.entity == "book"


def test_reservation_rolls_back_with_transaction(lib, make_book):
    book = make_book(copies=1)

    with pytest.raises(RuntimeError):
        with transaction(lib.db_file) as conn:
            lib.ledger.reserve_copy(conn, book.id)
            raise RuntimeError("boom")
    assert lib.get_book(book.id).available_copies == 1


def test_set_total_copies_accounts_for_open_loans(lib, make_book, make_user):
    book = make_book(copies=3)
    lib.borrow(make_user().id, book.id)
    lib.borrow(make_user().id, book.id)

    updated = lib.update_book(book.id, total_copies=5)
    assert updated.total_copies == 5
    assert updated.available_copies == 3

    with pytest.raises(ConflictError) as exc:
        lib.update_book(book.id, total_copies=1)
    assert exc.value.active_borrows == 2
    assert lib.get_book(book.id).total_copies == 5


def test_set_total_copies_rejects_negative(lib, make_book):
    book = make_book(copies=1)
    with pytest.raises(ValueError):
        lib.update_book(book.id, total_copies=-1)


def test_audit_reports_consistency(lib, make_book, make_user):
    book = make_book(copies=2)
    record = lib.borrow(make_user().id, book.id)

    report = lib.audit_book(book.id)
    assert report["consistent"] is True
    assert report["active_borrows"] == 1
    assert report["available_copies"] == report["expected_available"] == 1

    lib.return_book(record.id, record.user_id)
    assert lib.audit_book(book.id)["available_copies"] == 2


def test_audit_detects_drift(lib, make_book):
    book = make_book(copies=2)
    with transaction(lib.db_file) as conn:
        conn.execute("UPDATE books SET available_copies = 1 WHERE id = ?", (book.id,))

    report = lib.audit_book(book.id)
    assert report["consistent"] is False
    assert report["expected_available"] == 2
