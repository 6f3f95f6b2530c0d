from datetime import timedelta
from decimal import Decimal

import pytest

from circulation.errors import ErrorKind, ValidationFailure
from circulation.ledger import LoanState, advance, loan_state, loan_status
from circulation.models import TransactionType


def test_record_checkout_sets_due_date(lib, member, book, now):
    loan = lib.ledger.record_checkout(member, book, now)
    assert loan.transaction_type == TransactionType.CHECKOUT
    assert loan.due_date == now + timedelta(days=14)
    assert loan.return_date is None
    assert loan_state(loan) is LoanState.ACTIVE


def test_complete_moves_loan_to_returned_and_appends_event(lib, member, book, now):
    loan = lib.ledger.record_checkout(member, book, now)
    done = lib.ledger.complete(loan, now + timedelta(days=3), Decimal("0.00"))

    assert loan_state(done) is LoanState.RETURNED
    assert done.return_date == now + timedelta(days=3)
    returns = lib.ledger.history(transaction_type="return")
    assert len(returns) == 1
    assert returns[0].book_id == book.id


def test_complete_twice_is_rejected(lib, member, book, now):
    loan = lib.ledger.record_checkout(member, book, now)
    lib.ledger.complete(loan, now)

    # stale copy of the loan still looks active
    with pytest.raises(ValidationFailure) as exc:
        lib.ledger.complete(loan, now + timedelta(days=1))
    assert exc.value.kind == ErrorKind.ALREADY_RETURNED
    assert len(lib.ledger.history(transaction_type="return")) == 1


def test_returned_is_terminal():
    with pytest.raises(ValidationFailure):
        advance(LoanState.RETURNED, LoanState.ACTIVE)
    assert advance(LoanState.ACTIVE, LoanState.RETURNED) is LoanState.RETURNED


def test_loan_status_labels(lib, member, book, now):
    loan = lib.ledger.record_checkout(member, book, now)
    assert loan_status(loan, now + timedelta(days=1)) == "active"
    assert loan_status(loan, now + timedelta(days=15)) == "overdue"
    done = lib.ledger.complete(loan, now + timedelta(days=30))
    assert loan_status(done, now + timedelta(days=60)) == "returned"


def test_overdue_loans(lib, member, book, now):
    lib.ledger.record_checkout(member, book, now)
    assert lib.ledger.overdue_loans(now + timedelta(days=1)) == []
    assert len(lib.ledger.overdue_loans(now + timedelta(days=20))) == 1


def test_reservations_are_fifo(lib, member, book, now):
    other = lib.members.register_member(lib.members.add_profile("Grace Hopper", "grace@example.com").id)
    lib.ledger.record_reservation(other.id, book.id, now + timedelta(hours=2))
    lib.ledger.record_reservation(member.id, book.id, now)

    queue = lib.ledger.open_reservations(book_id=book.id)
    assert [r.member_id for r in queue] == [member.id, other.id]

    assert lib.ledger.close_reservation(queue[0], now) is True
    assert lib.ledger.close_reservation(queue[0], now) is False
    assert [r.member_id for r in lib.ledger.open_reservations(book_id=book.id)] == [other.id]


def test_history_search_matches_member_title_and_isbn(lib, member, book, now):
    lib.ledger.record_checkout(member, book, now)
    assert len(lib.ledger.history(search="ada")) == 1
    assert len(lib.ledger.history(search="EARTHSEA")) == 1
    assert len(lib.ledger.history(search="9780547773742")) == 1
    assert len(lib.ledger.history(search=member.membership_number.lower())) == 1
    assert lib.ledger.history(search="nobody") == []


def test_renewal_count(lib, member, book, now):
    loan = lib.ledger.record_checkout(member, book, now)
    assert lib.ledger.renewal_count(loan) == 0
    lib.ledger.record_renewal(loan, now + timedelta(days=20), now + timedelta(days=5))
    assert lib.ledger.renewal_count(loan) == 1
    assert lib.ledger.get(loan.id).due_date == now + timedelta(days=20)


def test_reopen_undoes_only_the_matching_completion(lib, member, book, now):
    loan = lib.desk.checkout(member.id, book.id, now=now)
    returned_at = now + timedelta(days=1)
    lib.ledger.complete(loan, returned_at)

    assert lib.ledger.reopen(loan, now + timedelta(days=2)) is False
    assert lib.ledger.reopen(loan, returned_at) is True

    reopened = lib.ledger.get(loan.id)
    assert loan_state(reopened) is LoanState.ACTIVE
    assert lib.ledger.history(transaction_type="return") == []


def test_history_rejects_unknown_type(lib):
    with pytest.raises(ValidationFailure) as exc:
        lib.ledger.history(transaction_type="bogus")
    assert exc.value.kind == ErrorKind.INVALID_INPUT
