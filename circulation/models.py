from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

CENTS = Decimal("0.01")


class BookStatus(str, Enum):
    AVAILABLE = "available"
    CHECKED_OUT = "checked_out"
    RESERVED = "reserved"
    MAINTENANCE = "maintenance"
    LOST = "lost"


class MembershipType(str, Enum):
    STANDARD = "standard"
    PREMIUM = "premium"
    STUDENT = "student"


class MemberStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    EXPIRED = "expired"


class TransactionType(str, Enum):
    CHECKOUT = "checkout"
    RETURN = "return"
    RENEWAL = "renewal"
    RESERVATION = "reservation"


class Role(str, Enum):
    MEMBER = "member"
    LIBRARIAN = "librarian"
    ADMIN = "admin"


# ------------------------- Conversion helpers ------------------------- #
def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp (or date) from the store; naive values are UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip().replace(" ", "T", 1)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def to_money(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENTS)


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


# ------------------------- Records ------------------------- #
@dataclass
class Author:
    id: str
    name: str

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}

    @staticmethod
    def from_dict(data: dict) -> "Author":
        return Author(id=data["id"], name=data["name"])


@dataclass
class Category:
    id: str
    name: str
    description: Optional[str] = None

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "description": self.description}

    @staticmethod
    def from_dict(data: dict) -> "Category":
        return Category(id=data["id"], name=data["name"], description=data.get("description"))


@dataclass
class Profile:
    """Identity and contact data for a person; members point at one."""

    id: str
    full_name: str
    email: str
    phone: Optional[str] = None
    role: Role = Role.MEMBER

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "role": self.role.value,
        }

    @staticmethod
    def from_dict(data: dict) -> "Profile":
        return Profile(
            id=data["id"],
            full_name=data["full_name"],
            email=data["email"],
            phone=data.get("phone"),
            role=Role(data.get("role") or Role.MEMBER.value),
        )


@dataclass
class Book:
    """A catalog title and its copy counters."""

    id: str
    title: str
    total_copies: int = 1
    available_copies: int = 1
    status: BookStatus = BookStatus.AVAILABLE
    language: str = "English"
    isbn: Optional[str] = None
    publisher: Optional[str] = None
    publication_year: Optional[int] = None
    pages: Optional[int] = None
    description: Optional[str] = None
    location: Optional[str] = None
    author_id: Optional[str] = None
    category_id: Optional[str] = None
    created_at: Optional[datetime] = None
    # joined display data
    author_name: Optional[str] = None
    category_name: Optional[str] = None

    @property
    def copies_out(self) -> int:
        return self.total_copies - self.available_copies

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} ({self.available_copies}/{self.total_copies} available)"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "isbn": self.isbn,
            "publisher": self.publisher,
            "publication_year": self.publication_year,
            "pages": self.pages,
            "language": self.language,
            "description": self.description,
            "location": self.location,
            "author_id": self.author_id,
            "category_id": self.category_id,
            "total_copies": self.total_copies,
            "available_copies": self.available_copies,
            "status": self.status.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "author_name": self.author_name,
            "category_name": self.category_name,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        # Embedded joins arrive as nested records
        author = data.get("author") or {}
        category = data.get("category") or {}
        return Book(
            id=data["id"],
            title=data["title"],
            total_copies=int(data.get("total_copies") or 0),
            available_copies=int(data.get("available_copies") or 0),
            status=BookStatus(data.get("status") or BookStatus.AVAILABLE.value),
            language=data.get("language") or "English",
            isbn=data.get("isbn"),
            publisher=data.get("publisher"),
            publication_year=data.get("publication_year"),
            pages=data.get("pages"),
            description=data.get("description"),
            location=data.get("location"),
            author_id=data.get("author_id"),
            category_id=data.get("category_id"),
            created_at=parse_datetime(data.get("created_at")),
            author_name=author.get("name"),
            category_name=category.get("name"),
        )


@dataclass
class Member:
    id: str
    membership_number: str
    membership_type: MembershipType = MembershipType.STANDARD
    status: MemberStatus = MemberStatus.ACTIVE
    join_date: Optional[date] = None
    expiry_date: Optional[date] = None
    max_books_allowed: int = 5
    current_books_issued: int = 0
    fine_amount: Decimal = field(default_factory=lambda: Decimal("0.00"))
    profile_id: Optional[str] = None
    profile: Optional[Profile] = None

    @property
    def full_name(self) -> str:
        return self.profile.full_name if self.profile else ""

    @property
    def email(self) -> str:
        return self.profile.email if self.profile else ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "membership_number": self.membership_number,
            "membership_type": self.membership_type.value,
            "status": self.status.value,
            "join_date": _iso(self.join_date),
            "expiry_date": _iso(self.expiry_date),
            "max_books_allowed": self.max_books_allowed,
            "current_books_issued": self.current_books_issued,
            "fine_amount": str(self.fine_amount),
            "profile_id": self.profile_id,
            "profile": self.profile.to_dict() if self.profile else None,
        }

    @staticmethod
    def from_dict(data: dict) -> "Member":
        profile = data.get("profile")
        return Member(
            id=data["id"],
            membership_number=data["membership_number"],
            membership_type=MembershipType(data.get("membership_type") or MembershipType.STANDARD.value),
            status=MemberStatus(data.get("status") or MemberStatus.ACTIVE.value),
            join_date=parse_date(data.get("join_date")),
            expiry_date=parse_date(data.get("expiry_date")),
            max_books_allowed=int(data.get("max_books_allowed") or 0),
            current_books_issued=int(data.get("current_books_issued") or 0),
            fine_amount=to_money(data.get("fine_amount")),
            profile_id=data.get("profile_id"),
            profile=Profile.from_dict(profile) if profile else None,
        )


@dataclass
class Transaction:
    """One ledger entry. A checkout is complete once return_date is set."""

    id: str
    transaction_type: TransactionType
    book_id: str
    member_id: str
    checkout_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    return_date: Optional[datetime] = None
    fine_amount: Decimal = field(default_factory=lambda: Decimal("0.00"))
    librarian_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    book: Optional[Book] = None
    member: Optional[Member] = None

    @property
    def is_open(self) -> bool:
        return self.return_date is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_type": self.transaction_type.value,
            "book_id": self.book_id,
            "member_id": self.member_id,
            "librarian_id": self.librarian_id,
            "checkout_date": self.checkout_date.isoformat() if self.checkout_date else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "return_date": self.return_date.isoformat() if self.return_date else None,
            "fine_amount": str(self.fine_amount),
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "book_title": self.book.title if self.book else None,
            "membership_number": self.member.membership_number if self.member else None,
            "member_name": self.member.full_name if self.member else None,
        }

    @staticmethod
    def from_dict(data: dict) -> "Transaction":
        book = data.get("book")
        member = data.get("member")
        return Transaction(
            id=data["id"],
            transaction_type=TransactionType(data["transaction_type"]),
            book_id=data["book_id"],
            member_id=data["member_id"],
            checkout_date=parse_datetime(data.get("checkout_date")),
            due_date=parse_datetime(data.get("due_date")),
            return_date=parse_datetime(data.get("return_date")),
            fine_amount=to_money(data.get("fine_amount")),
            librarian_id=data.get("librarian_id"),
            notes=data.get("notes"),
            created_at=parse_datetime(data.get("created_at")),
            book=Book.from_dict(book) if book else None,
            member=Member.from_dict(member) if member else None,
        )
