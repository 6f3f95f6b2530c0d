"""Circulation desk: checkout, return, renewal and reservations.

Book.available_copies and Member.current_books_issued move in lockstep with the
ledger. Every counter change is a compare-and-set update filtered on the value
that was read, so a concurrent writer makes one side fail cleanly instead of
pushing a counter out of range.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from circulation import rules
from circulation.catalog import Catalog
from circulation.errors import CirculationError, ErrorKind, ValidationFailure, refusal
from circulation.ledger import TransactionLedger
from circulation.membership import MembershipRegistry
from circulation.models import Book, BookStatus, Member, MemberStatus, Transaction, TransactionType, utcnow
from circulation.services.store import Store

logger = logging.getLogger(__name__)

UNAVAILABLE_STATUSES = (BookStatus.MAINTENANCE, BookStatus.LOST)


class CirculationDesk:
    cas_attempts = 3

    def __init__(
        self,
        store: Store,
        catalog: Catalog,
        members: MembershipRegistry,
        ledger: TransactionLedger,
        fine_per_day: Decimal = Decimal("0.50"),
        fine_cap: Optional[Decimal] = Decimal("25.00"),
        max_renewals: int = 2,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.members = members
        self.ledger = ledger
        self.fine_per_day = fine_per_day
        self.fine_cap = fine_cap
        self.max_renewals = max_renewals

    # ------------------------- Counter helpers ------------------------- #
    def _shift_copies(self, book_id: str, delta: int) -> None:
        for _ in range(self.cas_attempts):
            book = self.catalog.get_book(book_id)
            available = book.available_copies + delta
            if available < 0 or available > book.total_copies:
                raise ValidationFailure(
                    f"Copy counter for '{book.title}' would leave its range.", ErrorKind.CONFLICT
                )
            matched = self.store.update(
                "books",
                {"id": book.id, "available_copies": book.available_copies},
                {"available_copies": available, "status": rules.derive_book_status(available, book.status)},
            )
            if matched:
                return
        raise ValidationFailure("Book kept changing; try again.", ErrorKind.CONFLICT)

    def _shift_issued(self, member_id: str, delta: int) -> None:
        for _ in range(self.cas_attempts):
            member = self.members.get(member_id)
            issued = max(0, member.current_books_issued + delta)
            matched = self.store.update(
                "members",
                {"id": member.id, "current_books_issued": member.current_books_issued},
                {"current_books_issued": issued},
            )
            if matched:
                return
        raise ValidationFailure("Member kept changing; try again.", ErrorKind.CONFLICT)

    def _require_active(self, member: Member, now: datetime) -> None:
        if rules.membership_status_for(member, now) != MemberStatus.ACTIVE:
            logger.warning(f"Refused: member {member.membership_number} is {member.status.value}")
            raise refusal(ErrorKind.INELIGIBLE_MEMBER)

    # ------------------------- Checkout ------------------------- #
    def checkout(
        self,
        member_id: str,
        book_id: str,
        librarian_id: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Transaction:
        """Lend one copy of a book. Nothing is written unless every check passes."""
        now = now or utcnow()
        member = self.members.get(member_id)
        book = self.catalog.get_book(book_id)

        self._require_active(member, now)
        kind = rules.checkout_refusal(member, book)
        if kind is not None:
            logger.warning(f"Checkout refused for {member.membership_number} / {book.title}: {kind.value}")
            raise refusal(kind)
        if book.status in UNAVAILABLE_STATUSES:
            raise refusal(ErrorKind.NO_COPIES_AVAILABLE, f"'{book.title}' is marked {book.status.value}.")
        ahead = self._queued_ahead(book.id, member.id)
        if ahead and book.available_copies <= ahead:
            raise refusal(ErrorKind.RESERVED_FOR_ANOTHER_MEMBER)

        self._take_copy(book)
        try:
            self._claim_slot(member)
            try:
                loan = self.ledger.record_checkout(member, book, now, librarian_id, notes)
            except CirculationError:
                self._shift_issued(member.id, -1)
                raise
        except CirculationError:
            self._shift_copies(book.id, +1)
            raise

        for reservation in self.ledger.open_reservations(book_id=book.id, member_id=member.id):
            self.ledger.close_reservation(reservation, now)

        logger.info(f"Checked out '{book.title}' to {member.membership_number}, due {loan.due_date:%Y-%m-%d}")
        return self.ledger.get(loan.id)

    def _queued_ahead(self, book_id: str, member_id: str) -> int:
        """Members waiting before this one; everyone in the queue if they hold no reservation."""
        waiting = [r.member_id for r in self.ledger.open_reservations(book_id=book_id)]
        return waiting.index(member_id) if member_id in waiting else len(waiting)

    def _take_copy(self, book: Book) -> None:
        for _ in range(self.cas_attempts):
            available = book.available_copies - 1
            taken = self.store.update(
                "books",
                {"id": book.id, "available_copies": book.available_copies},
                {"available_copies": available, "status": rules.derive_book_status(available, book.status)},
            )
            if taken:
                return
            book = self.catalog.get_book(book.id)
            if book.available_copies <= 0 or book.status in UNAVAILABLE_STATUSES:
                break
        logger.warning(f"Lost the race for '{book.title}'")
        raise refusal(ErrorKind.NO_COPIES_AVAILABLE)

    def _claim_slot(self, member: Member) -> None:
        matched = self.store.update(
            "members",
            {
                "id": member.id,
                "current_books_issued": member.current_books_issued,
                "status": MemberStatus.ACTIVE.value,
            },
            {"current_books_issued": member.current_books_issued + 1},
        )
        if matched:
            return
        fresh = self.members.get(member.id)
        if fresh.status != MemberStatus.ACTIVE:
            raise refusal(ErrorKind.INELIGIBLE_MEMBER)
        if fresh.current_books_issued >= fresh.max_books_allowed:
            raise refusal(ErrorKind.BORROW_LIMIT_REACHED)
        raise ValidationFailure("Member changed during checkout; try again.", ErrorKind.CONFLICT)

    # ------------------------- Return ------------------------- #
    def return_book(self, transaction_id: str, now: Optional[datetime] = None) -> Transaction:
        """Complete a loan, restore both counters and charge any late fine.

        A second return of the same loan raises ALREADY_RETURNED and leaves the
        counters alone.
        """
        now = now or utcnow()
        loan = self.ledger.get(transaction_id)
        if loan.transaction_type != TransactionType.CHECKOUT:
            raise ValidationFailure(f"Transaction {loan.id} is a {loan.transaction_type.value}, not a checkout.")
        if not loan.is_open:
            raise refusal(ErrorKind.ALREADY_RETURNED)

        fine = rules.compute_fine(loan.due_date or now, now, self.fine_per_day, self.fine_cap)
        # completion decides which of two concurrent returns wins; later steps unwind it
        completed = self.ledger.complete(loan, now, fine)
        try:
            self._shift_copies(loan.book_id, +1)
            try:
                self._shift_issued(loan.member_id, -1)
                try:
                    if fine > 0:
                        self.members.add_fine(self.members.get(loan.member_id), fine)
                except CirculationError:
                    self._shift_issued(loan.member_id, +1)
                    raise
            except CirculationError:
                self._shift_copies(loan.book_id, -1)
                raise
        except CirculationError:
            self.ledger.reopen(loan, now)
            raise
        if fine > 0:
            logger.info(f"Late return of {loan.id}: fine {fine}")
        logger.info(f"Returned transaction {loan.id}")
        return completed

    # ------------------------- Renewal ------------------------- #
    def renew(
        self, transaction_id: str, now: Optional[datetime] = None, librarian_id: Optional[str] = None
    ) -> Transaction:
        now = now or utcnow()
        loan = self.ledger.get(transaction_id)
        if loan.transaction_type != TransactionType.CHECKOUT:
            raise ValidationFailure(f"Transaction {loan.id} is not a checkout.")
        if not loan.is_open:
            raise refusal(ErrorKind.ALREADY_RETURNED)
        self._require_active(self.members.get(loan.member_id), now)
        if loan.due_date and rules.is_overdue(loan.due_date, None, now):
            raise refusal(ErrorKind.RENEWAL_NOT_ALLOWED, "Overdue loans cannot be renewed; return the book first.")
        if self.ledger.renewal_count(loan) >= self.max_renewals:
            raise refusal(
                ErrorKind.RENEWAL_NOT_ALLOWED, f"Loan has already been renewed {self.max_renewals} times."
            )
        if any(r.member_id != loan.member_id for r in self.ledger.open_reservations(book_id=loan.book_id)):
            raise refusal(ErrorKind.RENEWAL_NOT_ALLOWED, "Another member is waiting for this book.")

        renewed = self.ledger.record_renewal(loan, rules.compute_due_date(now), now, librarian_id)
        logger.info(f"Renewed transaction {loan.id}, now due {renewed.due_date:%Y-%m-%d}")
        return renewed

    # ------------------------- Reservations ------------------------- #
    def reserve(
        self, member_id: str, book_id: str, now: Optional[datetime] = None, notes: Optional[str] = None
    ) -> Transaction:
        now = now or utcnow()
        member = self.members.get(member_id)
        book: Book = self.catalog.get_book(book_id)
        self._require_active(member, now)
        if book.status == BookStatus.LOST:
            raise refusal(ErrorKind.NO_COPIES_AVAILABLE, f"'{book.title}' is marked lost.")
        if self.ledger.open_reservations(book_id=book.id, member_id=member.id):
            raise ValidationFailure("Member already has an open reservation for this book.", ErrorKind.CONFLICT)
        if self.ledger.open_loans(member_id=member.id, book_id=book.id):
            raise ValidationFailure("Member already has this book checked out.", ErrorKind.CONFLICT)

        reservation = self.ledger.record_reservation(member.id, book.id, now, notes)
        logger.info(f"Reserved '{book.title}' for {member.membership_number}")
        return self.ledger.get(reservation.id)

    def cancel_reservation(self, transaction_id: str, now: Optional[datetime] = None) -> Transaction:
        now = now or utcnow()
        reservation = self.ledger.get(transaction_id)
        if reservation.transaction_type != TransactionType.RESERVATION:
            raise ValidationFailure(f"Transaction {reservation.id} is not a reservation.")
        if not self.ledger.close_reservation(reservation, now):
            raise refusal(ErrorKind.ALREADY_RETURNED, "Reservation is already closed.")
        return self.ledger.get(reservation.id)

    def queue(self, book_id: str) -> List[Transaction]:
        return self.ledger.open_reservations(book_id=self.catalog.get_book(book_id).id)

    # ------------------------- Fines ------------------------- #
    def pay_fine(self, member_id: str, amount: Decimal) -> Member:
        member = self.members.pay_fine(member_id, amount)
        logger.info(f"Payment of {amount} recorded for {member.membership_number}")
        return member
