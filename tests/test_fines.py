from decimal import Decimal

import pytest

from errors import NotFoundError


@pytest.fixture
def loan(lib, make_book, make_user):
    return lib.borrow(make_user().id, make_book(copies=1).id)


def test_create_fine_keeps_exact_amount(lib, loan):
    fine = lib.assess_fine(loan.id, "3.10", "late return")

    assert fine.amount == Decimal("3.10")
    assert fine.paid is False
    stored = lib.fines.get_fine(fine.id)
    assert stored.amount == Decimal("3.10")
    assert stored.to_dict()["amount"] == "3.10"
    assert stored.reason == "late return"


def test_float_amount_keeps_typed_digits(lib, loan):
    fine = lib.assess_fine(loan.id, 0.1)
    assert lib.fines.get_fine(fine.id).amount == Decimal("0.1")


@pytest.mark.parametrize("amount", ["-1", "abc", "NaN", "Infinity"])
def test_create_fine_rejects_bad_amounts(lib, loan, amount):
    with pytest.raises(ValueError):
        lib.assess_fine(loan.id, amount)
    assert lib.fines.list_for_borrow_record(loan.id) == []


def test_create_fine_for_unknown_record(lib):
    with pytest.raises(NotFoundError) as exc:
        lib.assess_fine("missing", "1.00")
    assert exc.value.entity == "borrow record"


def test_fine_on_returned_record_is_allowed(lib, loan):
    lib.return_book(loan.id, loan.user_id)
    fine = lib.assess_fine(loan.id, "5")
    assert [f.id for f in lib.fines.list_for_borrow_record(loan.id)] == [fine.id]


def test_update_fine_partial(lib, loan):
    fine = lib.assess_fine(loan.id, "2.00", "late")

    paid = lib.fines.update_fine(fine.id, paid=True)
    assert paid.paid is True
    assert paid.amount == Decimal("2.00")
    assert paid.reason == "late"

    changed = lib.fines.update_fine(fine.id, amount="1.25", reason="reduced")
    assert changed.amount == Decimal("1.25")
    assert changed.reason == "reduced"
    assert changed.paid is True


def test_update_fine_requires_a_field(lib, loan):
    fine = lib.assess_fine(loan.id, "2.00")
    with pytest.raises(ValueError, match="Nothing to update"):
        lib.fines.update_fine(fine.id)


def test_update_unknown_fine(lib):
    with pytest.raises(NotFoundError):
        lib.fines.update_fine("missing", paid=True)


def test_delete_fine(lib, loan):
    fine = lib.assess_fine(loan.id, "2.00")
    lib.fines.delete_fine(fine.id)

    with pytest.raises(NotFoundError):
        lib.fines.get_fine(fine.id)
    with pytest.raises(NotFoundError):
        lib.fines.delete_fine(fine.id)


def test_unpaid_total_for_user(lib, loan, make_book):
    other_loan = lib.borrow(loan.user_id, make_book(copies=1, title="Dubliners").id)
    lib.assess_fine(loan.id, "0.10")
    lib.assess_fine(other_loan.id, "0.20")
    settled = lib.assess_fine(other_loan.id, "9.99")
    lib.fines.update_fine(settled.id, paid=True)

    assert lib.fines.unpaid_total_for_user(loan.user_id) == Decimal("0.30")


def test_update_fine_blanks_reason_with_empty_string(lib, loan):
    fine = lib.assess_fine(loan.id, "2.00", "late")

    assert lib.fines.update_fine(fine.id, reason=None, paid=True).reason == "late"
    assert lib.fines.update_fine(fine.id, reason="").reason == ""
