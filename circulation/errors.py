"""Error kinds raised by the circulation service.

Every failure carries one member of the closed ``ErrorKind`` enumeration so
that callers (the HTTP API, the CLI, tests) can tell a refused checkout from
an unreachable store without parsing messages.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    # rule failures, detected before any store mutation
    INELIGIBLE_MEMBER = "ineligible_member"
    BORROW_LIMIT_REACHED = "borrow_limit_reached"
    NO_COPIES_AVAILABLE = "no_copies_available"
    RESERVED_FOR_ANOTHER_MEMBER = "reserved_for_another_member"
    ALREADY_RETURNED = "already_returned"
    RENEWAL_NOT_ALLOWED = "renewal_not_allowed"
    # lookup / input failures
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    CONFLICT = "conflict"
    MEMBERSHIP_NUMBER_EXHAUSTED = "membership_number_exhausted"
    # store failures
    STORE_UNAVAILABLE = "store_unavailable"
    CONSTRAINT_VIOLATION = "constraint_violation"
    # scanned data
    MALFORMED_PAYLOAD = "malformed_payload"


class CirculationError(Exception):
    """Base error; ``kind`` identifies the failure, ``str(err)`` is user facing."""

    default_kind = ErrorKind.CONFLICT

    def __init__(self, message: str, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        self.kind = kind or self.default_kind
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.kind.value}


class ValidationFailure(CirculationError):
    """A business rule or input check refused the action."""

    default_kind = ErrorKind.INVALID_INPUT


class NotFoundError(CirculationError):
    default_kind = ErrorKind.NOT_FOUND


class StoreError(CirculationError):
    """The backing store could not complete an operation."""

    default_kind = ErrorKind.STORE_UNAVAILABLE


class MalformedPayloadError(CirculationError):
    default_kind = ErrorKind.MALFORMED_PAYLOAD


# Messages shown for refused circulation actions
REFUSAL_MESSAGES = {
    ErrorKind.INELIGIBLE_MEMBER: "Member is not active.",
    ErrorKind.BORROW_LIMIT_REACHED: "Member has reached the borrowing limit.",
    ErrorKind.NO_COPIES_AVAILABLE: "No copies of this book are available.",
    ErrorKind.RESERVED_FOR_ANOTHER_MEMBER: "Book is reserved for another member.",
    ErrorKind.ALREADY_RETURNED: "Transaction has already been completed.",
    ErrorKind.RENEWAL_NOT_ALLOWED: "Loan cannot be renewed.",
}


def refusal(kind: ErrorKind, message: str | None = None) -> ValidationFailure:
    """Build the ValidationFailure for a refused circulation action."""
    return ValidationFailure(message or REFUSAL_MESSAGES.get(kind, "Action refused."), kind)
