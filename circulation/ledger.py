"""Transaction ledger and the loan lifecycle.

A loan is a ``checkout`` transaction. It has exactly two states: ACTIVE while
``return_date`` is unset and RETURNED (terminal) once it is set. "Overdue" is
not a state of its own, it is an ACTIVE loan whose due date has passed.
Transactions are appended and completed. The only delete is ``reopen`` removing
the return event of a return that failed partway.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from circulation import rules
from circulation.errors import ErrorKind, NotFoundError, ValidationFailure, refusal
from circulation.models import Book, Member, Transaction, TransactionType, utcnow
from circulation.services.store import Join, Store, gte, is_null

logger = logging.getLogger(__name__)


class LoanState(str, Enum):
    ACTIVE = "active"
    RETURNED = "returned"


TRANSITIONS = {
    LoanState.ACTIVE: {LoanState.RETURNED},
    LoanState.RETURNED: set(),
}


def loan_state(txn: Transaction) -> LoanState:
    return LoanState.ACTIVE if txn.return_date is None else LoanState.RETURNED


def advance(current: LoanState, target: LoanState) -> LoanState:
    """Validate a lifecycle transition, refusing anything out of a terminal state."""
    if target not in TRANSITIONS[current]:
        raise refusal(ErrorKind.ALREADY_RETURNED)
    return target


def loan_status(txn: Transaction, now: Optional[datetime] = None) -> str:
    """Display label: returned, overdue or active."""
    if loan_state(txn) is LoanState.RETURNED:
        return "returned"
    if txn.due_date is not None and rules.is_overdue(txn.due_date, txn.return_date, now):
        return "overdue"
    return "active"


TRANSACTION_JOINS = {
    "book": Join("books", "book_id"),
    "member": Join("members", "member_id", joins={"profile": Join("profiles", "profile_id")}),
}


class TransactionLedger:
    TABLE = "transactions"

    def __init__(self, store: Store) -> None:
        self.store = store

    # ------------------------- Reads ------------------------- #
    def get(self, transaction_id: str) -> Transaction:
        row = self.store.select_one(self.TABLE, {"id": transaction_id}, joins=TRANSACTION_JOINS)
        if not row:
            raise NotFoundError(f"Transaction {transaction_id} not found.")
        return Transaction.from_dict(row)

    def _list(self, filters: dict, order: str = "-created_at") -> List[Transaction]:
        rows = self.store.select(self.TABLE, filters, joins=TRANSACTION_JOINS, order=order)
        return [Transaction.from_dict(row) for row in rows]

    def open_loans(self, member_id: Optional[str] = None, book_id: Optional[str] = None) -> List[Transaction]:
        filters = {"transaction_type": TransactionType.CHECKOUT.value, "return_date": is_null()}
        if member_id:
            filters["member_id"] = member_id
        if book_id:
            filters["book_id"] = book_id
        return self._list(filters, order="due_date")

    def overdue_loans(self, now: Optional[datetime] = None) -> List[Transaction]:
        now = now or utcnow()
        return [t for t in self.open_loans() if t.due_date and rules.is_overdue(t.due_date, t.return_date, now)]

    def open_reservations(self, book_id: Optional[str] = None, member_id: Optional[str] = None) -> List[Transaction]:
        """Open reservations, oldest first (queue order)."""
        filters = {"transaction_type": TransactionType.RESERVATION.value, "return_date": is_null()}
        if book_id:
            filters["book_id"] = book_id
        if member_id:
            filters["member_id"] = member_id
        return self._list(filters, order=["checkout_date", "created_at"])

    def renewal_count(self, loan: Transaction) -> int:
        rows = self.store.select(
            self.TABLE,
            {
                "transaction_type": TransactionType.RENEWAL.value,
                "book_id": loan.book_id,
                "member_id": loan.member_id,
                "checkout_date": gte(loan.checkout_date),
            },
        )
        return len(rows)

    def history(self, search: Optional[str] = None, transaction_type: Optional[str] = None) -> List[Transaction]:
        """Newest first; ``search`` matches member name, title, membership number or ISBN."""
        filters = {}
        if transaction_type:
            try:
                filters["transaction_type"] = TransactionType(transaction_type).value
            except ValueError:
                allowed = ", ".join(t.value for t in TransactionType)
                raise ValidationFailure(f"Invalid transaction type: {transaction_type}. Allowed: {allowed}")
        items = self._list(filters)
        if not search:
            return items
        term = search.lower().strip()

        def matches(t: Transaction) -> bool:
            fields = [
                t.member.full_name if t.member else "",
                t.member.membership_number if t.member else "",
                t.book.title if t.book else "",
                (t.book.isbn or "") if t.book else "",
            ]
            return any(term in f.lower() for f in fields)

        return [t for t in items if matches(t)]

    # ------------------------- Writes ------------------------- #
    def record_checkout(
        self,
        member: Member,
        book: Book,
        now: datetime,
        librarian_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Transaction:
        row = self.store.insert(
            self.TABLE,
            {
                "transaction_type": TransactionType.CHECKOUT,
                "book_id": book.id,
                "member_id": member.id,
                "librarian_id": librarian_id,
                "checkout_date": now,
                "due_date": rules.compute_due_date(now),
                "fine_amount": Decimal("0.00"),
                "notes": notes,
            },
        )
        return Transaction.from_dict(row)

    def complete(self, loan: Transaction, now: datetime, fine: Decimal = Decimal("0.00")) -> Transaction:
        """Move a checkout to RETURNED. Only the first completion wins."""
        advance(loan_state(loan), LoanState.RETURNED)
        matched = self.store.update(
            self.TABLE,
            {"id": loan.id, "return_date": is_null()},
            {"return_date": now, "fine_amount": fine},
        )
        if matched == 0:
            logger.warning(f"Transaction {loan.id} was already completed")
            raise refusal(ErrorKind.ALREADY_RETURNED)
        self.store.insert(
            self.TABLE,
            {
                "transaction_type": TransactionType.RETURN,
                "book_id": loan.book_id,
                "member_id": loan.member_id,
                "checkout_date": loan.checkout_date,
                "due_date": loan.due_date,
                "return_date": now,
                "fine_amount": fine,
                "notes": f"Return of {loan.id}",
            },
        )
        return self.get(loan.id)

    def reopen(self, loan: Transaction, returned_at: datetime) -> bool:
        """Undo a completion made at ``returned_at``: clear return_date and drop its return event."""
        matched = self.store.update(
            self.TABLE,
            {"id": loan.id, "return_date": returned_at},
            {"return_date": None, "fine_amount": loan.fine_amount},
        )
        if matched:
            self.store.delete(
                self.TABLE,
                {
                    "transaction_type": TransactionType.RETURN.value,
                    "book_id": loan.book_id,
                    "return_date": returned_at,
                    "notes": f"Return of {loan.id}",
                },
            )
            logger.warning(f"Transaction {loan.id} reopened after a failed return")
        return matched > 0

    def record_renewal(self, loan: Transaction, new_due: datetime, now: datetime, librarian_id: Optional[str] = None) -> Transaction:
        """Push an active loan's due date and append the renewal event."""
        matched = self.store.update(
            self.TABLE, {"id": loan.id, "return_date": is_null()}, {"due_date": new_due}
        )
        if matched == 0:
            raise refusal(ErrorKind.ALREADY_RETURNED)
        self.store.insert(
            self.TABLE,
            {
                "transaction_type": TransactionType.RENEWAL,
                "book_id": loan.book_id,
                "member_id": loan.member_id,
                "librarian_id": librarian_id,
                "checkout_date": now,
                "due_date": new_due,
                "notes": f"Renewal of {loan.id}",
            },
        )
        return self.get(loan.id)

    def record_reservation(self, member_id: str, book_id: str, now: datetime, notes: Optional[str] = None) -> Transaction:
        row = self.store.insert(
            self.TABLE,
            {
                "transaction_type": TransactionType.RESERVATION,
                "book_id": book_id,
                "member_id": member_id,
                "checkout_date": now,
                "notes": notes,
            },
        )
        return Transaction.from_dict(row)

    def close_reservation(self, reservation: Transaction, now: datetime) -> bool:
        """Close an open reservation (fulfilled or cancelled). False if already closed."""
        matched = self.store.update(
            self.TABLE, {"id": reservation.id, "return_date": is_null()}, {"return_date": now}
        )
        return matched > 0
