import random
import threading

import pytest

from errors import ConflictError, ForbiddenError, NotFoundError, UnavailableError
from library import Library


def test_create_borrow_reserves_a_copy(lib, make_book, make_user):
    book = make_book(copies=2)
    user = make_user()

    record = lib.borrow(user.id, book.id)

    assert record.is_active
    assert record.user_id == user.id and record.book_id == book.id
    assert lib.get_book(book.id).available_copies == 1
    assert [r.id for r in lib.borrows.list_for_user(user.id)] == [record.id]


def test_create_borrow_unknown_user(lib, make_book):
    book = make_book()
    with pytest.raises(NotFoundError) as exc:
        lib.borrow("nobody", book.id)
    assert exc.value.entity == "user"


def test_create_borrow_unknown_book(lib, make_user):
    with pytest.raises(NotFoundError) as exc:
        lib.borrow(make_user().id, "nothing")
    assert exc.value.entity == "book"


def test_second_active_borrow_of_same_book_conflicts(lib, make_book, make_user):
    book = make_book(copies=3)
    user = make_user()
    lib.borrow(user.id, book.id)

    with pytest.raises(ConflictError, match="already"):
        lib.borrow(user.id, book.id)

    assert lib.get_book(book.id).available_copies == 2
    assert len(lib.borrows.list_active_for_book(book.id)) == 1


def test_last_copy_handoff_between_members(lib, make_book, make_user):
    book = make_book(copies=1)
    alice, bob = make_user(), make_user()

    record = lib.borrow(alice.id, book.id)
    assert lib.get_book(book.id).available_copies == 0

    with pytest.raises(UnavailableError):
        lib.borrow(bob.id, book.id)

    lib.return_book(record.id, alice.id)
    assert lib.get_book(book.id).available_copies == 1

    lib.borrow(bob.id, book.id)
    assert lib.get_book(book.id).available_copies == 0


def test_return_sets_returned_at_and_releases(lib, make_book, make_user):
    book = make_book(copies=1)
    user = make_user()
    record = lib.borrow(user.id, book.id)

    returned = lib.return_book(record.id, user.id)

    assert returned.returned_at is not None
    assert returned.status == "RETURNED"
    assert lib.borrows.get_borrow_record(record.id).returned_at == returned.returned_at
    assert lib.get_book(book.id).available_copies == 1


def test_return_by_someone_else_is_forbidden(lib, make_book, make_user):
    book = make_book(copies=1)
    owner, other = make_user(), make_user()
    record = lib.borrow(owner.id, book.id)

    with pytest.raises(ForbiddenError):
        lib.return_book(record.id, other.id)

    assert lib.borrows.get_borrow_record(record.id).is_active
    assert lib.get_book(book.id).available_copies == 0


def test_return_twice_conflicts_without_double_release(lib, make_book, make_user):
    book = make_book(copies=1)
    user = make_user()
    record = lib.borrow(user.id, book.id)
    lib.return_book(record.id, user.id)

    with pytest.raises(ConflictError, match="already been returned"):
        lib.return_book(record.id, user.id)

    assert lib.get_book(book.id).available_copies == 1


def test_return_unknown_record(lib, make_user):
    with pytest.raises(NotFoundError):
        lib.return_book("missing", make_user().id)


def test_borrow_again_after_return_creates_new_record(lib, make_book, make_user):
    book = make_book(copies=1)
    user = make_user()
    first = lib.borrow(user.id, book.id)
    lib.return_book(first.id, user.id)

    second = lib.borrow(user.id, book.id)

    assert second.id != first.id
    history = lib.borrows.list_for_user(user.id)
    assert {r.id for r in history} == {first.id, second.id}


def test_delete_active_borrow_record_releases_copy_and_fines(lib, make_book, make_user):
    book = make_book(copies=1)
    user = make_user()
    record = lib.borrow(user.id, book.id)
    lib.assess_fine(record.id, "2.50", "damaged cover")

    removed = lib.borrows.delete_borrow_record(record.id)

    assert removed == 1
    assert lib.get_book(book.id).available_copies == 1
    assert lib.fines.list_for_borrow_record(record.id) == []
    with pytest.raises(NotFoundError):
        lib.borrows.get_borrow_record(record.id)


def test_delete_returned_borrow_record_keeps_counter(lib, make_book, make_user):
    book = make_book(copies=1)
    user = make_user()
    record = lib.borrow(user.id, book.id)
    lib.return_book(record.id, user.id)

    lib.borrows.delete_borrow_record(record.id)

    assert lib.get_book(book.id).available_copies == 1


def test_random_borrow_return_sequences_keep_counter_in_range(lib, make_book, make_user):
    copies = 3
    book = make_book(copies=copies)
    users = [make_user() for _ in range(5)]
    rng = random.Random(1234)
    active = {}

    for _ in range(120):
        user = rng.choice(users)
        try:
            if user.id in active and rng.random() < 0.6:
                lib.return_book(active.pop(user.id), user.id)
            else:
                record = lib.borrow(user.id, book.id)
                active[user.id] = record.id
        except (UnavailableError, ConflictError):
            pass

        available = lib.get_book(book.id).available_copies
        assert 0 <= available <= copies
        assert available == copies - len(active)

    assert lib.audit_book(book.id)["consistent"]


def test_concurrent_borrows_of_last_copy(lib, make_book, make_user):
    book = make_book(copies=1)
    users = [make_user() for _ in range(8)]
    barrier = threading.Barrier(len(users))
    outcomes = []
    lock = threading.Lock()

    def attempt(user_id):
        # separate Library per thread, same file
        worker = Library(db_file=lib.db_file)
        barrier.wait()
        try:
            worker.borrow(user_id, book.id)
            result = "ok"
        except UnavailableError:
            result = "unavailable"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=attempt, args=(u.id,)) for u in users]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 1
    assert outcomes.count("unavailable") == len(users) - 1
    assert lib.get_book(book.id).available_copies == 0
    assert len(lib.borrows.list_active_for_book(book.id)) == 1


def test_concurrent_returns_release_once(lib, make_book, make_user):
    book = make_book(copies=1)
    user = make_user()
    record = lib.borrow(user.id, book.id)
    barrier = threading.Barrier(4)
    outcomes = []
    lock = threading.Lock()

    def attempt():
        barrier.wait()
        try:
            lib.return_book(record.id, user.id)
            result = "ok"
        except ConflictError:
            result = "conflict"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=attempt) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 1
    assert outcomes.count("conflict") == 3
    assert lib.get_book(book.id).available_copies == 1
