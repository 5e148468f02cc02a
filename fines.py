import logging
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Union

from database import read_connection, transaction
from errors import NotFoundError
from models import Fine, new_id, utcnow

logger = logging.getLogger(__name__)

Amount = Union[Decimal, int, float, str]


def _to_amount(raw: Amount) -> Decimal:
    try:
        # str() first so floats keep the digits the caller typed
        amount = Decimal(str(raw))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid fine amount: {raw!r}") from e
    if not amount.is_finite() or amount < 0:
        raise ValueError("Fine amount must be a non-negative number.")
    return amount


class FineLifecycleManager:
    """Fines are assessed by staff against a borrow record; nothing here computes them."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    def create_fine(self, borrow_record_id: str, amount: Amount, reason: Optional[str] = None) -> Fine:
        value = _to_amount(amount)
        with transaction(self.db_file) as conn:
            if conn.execute(
                "SELECT 1 FROM borrow_records WHERE id = ?", (borrow_record_id,)
            ).fetchone() is None:
                raise NotFoundError("borrow record", borrow_record_id)

            fine = Fine(id=new_id(), borrow_record_id=borrow_record_id, amount=value,
                        reason=reason, paid=False, created_at=utcnow())
            conn.execute(
                "INSERT INTO fines (id, borrow_record_id, amount, reason, paid, created_at) "
                "VALUES (?, ?, ?, ?, 0, ?)",
                (fine.id, fine.borrow_record_id, str(fine.amount), fine.reason, fine.created_at),
            )
        logger.info(f"Fine {fine.id} of {fine.amount} assessed on borrow {borrow_record_id}")
        return fine

    def update_fine(self, fine_id: str, *, amount: Optional[Amount] = None,
                    reason: Optional[str] = None, paid: Optional[bool] = None) -> Fine:
        """Partially update a fine. Returns the updated fine.

        None means "leave unchanged", so a reason can be replaced but not
        cleared; pass an empty string to blank it.
        """
        update_fields = {}
        if amount is not None:
            update_fields["amount"] = str(_to_amount(amount))
        if reason is not None:
            update_fields["reason"] = reason
        if paid is not None:
            update_fields["paid"] = 1 if paid else 0

        if not update_fields:
            raise ValueError("Nothing to update. Provide amount, reason and/or paid.")

        set_clause = ", ".join([f"{field} = ?" for field in update_fields.keys()])
        params = list(update_fields.values()) + [fine_id]

        with transaction(self.db_file) as conn:
            cursor = conn.execute(f"UPDATE fines SET {set_clause} WHERE id = ?", params)
            if cursor.rowcount == 0:
                raise NotFoundError("fine", fine_id)
            row = conn.execute("SELECT * FROM fines WHERE id = ?", (fine_id,)).fetchone()

        fine = Fine.from_dict(dict(row))
        logger.info(f"Fine {fine_id} updated: {sorted(update_fields)}")
        return fine

    def delete_fine(self, fine_id: str) -> None:
        with transaction(self.db_file) as conn:
            cursor = conn.execute("DELETE FROM fines WHERE id = ?", (fine_id,))
            if cursor.rowcount == 0:
                raise NotFoundError("fine", fine_id)
        logger.info(f"Fine {fine_id} deleted")

    # ------------------------- Queries ------------------------- #
    def get_fine(self, fine_id: str) -> Fine:
        with read_connection(self.db_file) as conn:
            row = conn.execute("SELECT * FROM fines WHERE id = ?", (fine_id,)).fetchone()
        if row is None:
            raise NotFoundError("fine", fine_id)
        return Fine.from_dict(dict(row))

    def list_for_borrow_record(self, borrow_record_id: str) -> List[Fine]:
        with read_connection(self.db_file) as conn:
            rows = conn.execute(
                "SELECT * FROM fines WHERE borrow_record_id = ? ORDER BY created_at",
                (borrow_record_id,),
            ).fetchall()
        return [Fine.from_dict(dict(row)) for row in rows]

    def unpaid_total_for_user(self, user_id: str) -> Decimal:
        with read_connection(self.db_file) as conn:
            rows = conn.execute(
                """
                SELECT f.amount FROM fines f
                JOIN borrow_records br ON br.id = f.borrow_record_id
                WHERE br.user_id = ? AND f.paid = 0
                """,
                (user_id,),
            ).fetchall()
        # Summed in Python; sqlite would turn the text amounts into floats
        return sum((Decimal(row["amount"]) for row in rows), Decimal("0"))
