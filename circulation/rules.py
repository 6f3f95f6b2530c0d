"""Circulation rules: eligibility, due dates, overdue and expiry checks, fines.

Everything here is a pure function of its arguments. The evaluation instant
``now`` is a parameter (defaulting to the current UTC time) so results are
reproducible in tests.
"""

from __future__ import annotations

import math
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, Union

from circulation.errors import ErrorKind
from circulation.models import CENTS, Book, BookStatus, Member, MemberStatus, utcnow

LOAN_PERIOD_DAYS = 14
EXPIRY_WARNING_DAYS = 30

Instant = Union[date, datetime]


def _as_datetime(value: Instant) -> datetime:
    """Dates count from midnight UTC; naive datetimes are taken as UTC."""
    if not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _now(now: Optional[Instant]) -> datetime:
    return _as_datetime(now) if now is not None else utcnow()


# ------------------------- Eligibility ------------------------- #
def checkout_refusal(member: Member, book: Book) -> Optional[ErrorKind]:
    """Return why ``member`` may not take ``book``, or None when they may."""
    if member.status != MemberStatus.ACTIVE:
        return ErrorKind.INELIGIBLE_MEMBER
    if member.current_books_issued >= member.max_books_allowed:
        return ErrorKind.BORROW_LIMIT_REACHED
    if book.available_copies <= 0:
        return ErrorKind.NO_COPIES_AVAILABLE
    return None


def can_checkout(member: Member, book: Book) -> bool:
    return checkout_refusal(member, book) is None


# ------------------------- Dates ------------------------- #
def compute_due_date(checkout_at: Instant) -> datetime:
    """Fixed loan period in calendar days, no business-day adjustment."""
    return _as_datetime(checkout_at) + timedelta(days=LOAN_PERIOD_DAYS)


def is_overdue(due_date: Instant, return_date: Optional[Instant] = None, now: Optional[Instant] = None) -> bool:
    # Returned loans are never overdue, even when they came back late
    if return_date is not None:
        return False
    return _as_datetime(due_date) < _now(now)


def days_until(expiry: Instant, now: Optional[Instant] = None) -> int:
    delta = _as_datetime(expiry) - _now(now)
    return math.ceil(delta.total_seconds() / 86400)


def is_expiring_soon(expiry_date: Instant, now: Optional[Instant] = None) -> bool:
    remaining = days_until(expiry_date, now)
    return 0 < remaining <= EXPIRY_WARNING_DAYS


def is_expired(expiry_date: Instant, now: Optional[Instant] = None) -> bool:
    return _as_datetime(expiry_date) < _now(now)


def membership_status_for(member: Member, now: Optional[Instant] = None) -> MemberStatus:
    """Effective status: a lapsed expiry date wins over the stored status."""
    if member.expiry_date is not None and is_expired(member.expiry_date, now):
        return MemberStatus.EXPIRED
    return member.status


# ------------------------- Fines ------------------------- #
def days_overdue(due_date: Instant, returned_at: Instant) -> int:
    """Whole calendar days between the due date and the return."""
    late = _as_datetime(returned_at).date() - _as_datetime(due_date).date()
    return max(0, late.days)


def compute_fine(due_date: Instant, returned_at: Instant, per_day: Decimal, cap: Optional[Decimal] = None) -> Decimal:
    days = days_overdue(due_date, returned_at)
    fine = Decimal(days) * Decimal(per_day)
    if cap is not None and fine > cap:
        fine = Decimal(cap)
    return fine.quantize(CENTS)


# ------------------------- Book status ------------------------- #
def derive_book_status(available_copies: int, status: BookStatus = BookStatus.AVAILABLE) -> BookStatus:
    """maintenance and lost are manual overrides; otherwise follow the counter."""
    if status in (BookStatus.MAINTENANCE, BookStatus.LOST):
        return status
    return BookStatus.AVAILABLE if available_copies > 0 else BookStatus.CHECKED_OUT
