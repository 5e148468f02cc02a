import pytest

from database import read_connection
from errors import ConflictError, NotFoundError
from models import Role


def _row_counts(db_file):
    with read_connection(db_file) as conn:
        return {
            table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            for table in ("users", "books", "borrow_records", "fines", "wishlist")
        }


def _orphans(db_file):
    with read_connection(db_file) as conn:
        return conn.execute("PRAGMA foreign_key_check").fetchall()


def test_delete_book_refused_while_borrowed(lib, make_book, make_user):
    book = make_book(copies=2)
    record = lib.borrow(make_user().id, book.id)
    lib.assess_fine(record.id, "1.00")
    before = _row_counts(lib.db_file)

    with pytest.raises(ConflictError) as exc:
        lib.delete_book(book.id)

    assert exc.value.active_borrows == 1
    assert "1 active borrow" in str(exc.value)
    assert _row_counts(lib.db_file) == before


def test_delete_book_removes_history(lib, make_book, make_user):
    book = make_book(copies=1)
    keep = make_book(copies=1, title="Dubliners")
    user = make_user()
    for _ in range(2):
        record = lib.borrow(user.id, book.id)
        lib.assess_fine(record.id, "0.50")
        lib.return_book(record.id, user.id)
    kept_record = lib.borrow(user.id, keep.id)
    lib.wishlist.add(user.id, book.id)

    report = lib.delete_book(book.id)

    assert report.entity == "book"
    assert (report.fines, report.borrow_records, report.wishlist_entries) == (2, 2, 1)
    with pytest.raises(NotFoundError):
        lib.get_book(book.id)
    assert [r.id for r in lib.borrows.list_for_user(user.id)] == [kept_record.id]
    assert lib.wishlist.list_for_user(user.id) == []
    assert _orphans(lib.db_file) == []


def test_delete_unknown_book(lib):
    with pytest.raises(NotFoundError):
        lib.delete_book("missing")


def test_delete_user_refused_while_borrowing(lib, admin, make_book, make_user):
    user = make_user()
    lib.borrow(user.id, make_book(copies=1).id)
    lib.borrow(user.id, make_book(copies=1, title="Dubliners").id)
    before = _row_counts(lib.db_file)

    with pytest.raises(ConflictError, match="return all books first") as exc:
        lib.delete_user(user.id, requested_by=admin)

    assert exc.value.active_borrows == 2
    assert _row_counts(lib.db_file) == before


def test_delete_user_removes_history_and_clears_provenance(lib, admin, make_book, make_user):
    staff = make_user(Role.LIBRARIAN)
    member = make_user()
    book = make_book(copies=1, created_by=staff.id)
    lib.update_book(book.id, staff.id, publisher="Penguin")

    record = lib.borrow(staff.id, book.id)
    lib.assess_fine(record.id, "4.00")
    lib.return_book(record.id, staff.id)
    lib.wishlist.add(staff.id, book.id)
    member_record = lib.borrow(member.id, book.id)

    report = lib.delete_user(staff.id, requested_by=admin)

    assert (report.fines, report.borrow_records, report.wishlist_entries) == (1, 1, 1)
    assert report.provenance_cleared == 2
    survivor = lib.get_book(book.id)
    assert survivor.created_by_id is None
    assert survivor.updated_by_id is None
    assert survivor.available_copies == 0
    assert lib.borrows.get_borrow_record(member_record.id).is_active
    with pytest.raises(NotFoundError):
        lib.get_user(staff.id)
    assert _orphans(lib.db_file) == []


def test_delete_user_after_returning_everything(lib, admin, make_book, make_user):
    user = make_user()
    book = make_book(copies=1)
    record = lib.borrow(user.id, book.id)
    lib.return_book(record.id, user.id)

    report = lib.delete_user(user.id, requested_by=admin)

    assert report.borrow_records == 1
    assert lib.get_book(book.id).available_copies == 1


def test_delete_unknown_user(lib, admin):
    with pytest.raises(NotFoundError):
        lib.delete_user("missing", requested_by=admin)


def test_coordinator_reports_to_dict(lib, make_book):
    book = make_book()
    report = lib.deletions.delete_book(book.id)
    assert report.to_dict() == {
        "entity": "book",
        "entity_id": book.id,
        "fines": 0,
        "borrow_records": 0,
        "wishlist_entries": 0,
        "provenance_cleared": 0,
    }
