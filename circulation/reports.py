"""Derived statistics and exports, recomputed from the store on every call."""

from __future__ import annotations

import csv
import io
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from circulation import rules
from circulation.catalog import Catalog
from circulation.errors import ValidationFailure
from circulation.ledger import TransactionLedger
from circulation.membership import MembershipRegistry
from circulation.models import MemberStatus, TransactionType, utcnow


def _ratio(part: float, whole: float, scale: int = 1) -> float:
    return round(part / whole * scale, 2) if whole else 0.0


class ReportingAggregator:
    def __init__(self, catalog: Catalog, members: MembershipRegistry, ledger: TransactionLedger) -> None:
        self.catalog = catalog
        self.members = members
        self.ledger = ledger

    def summary(self, now: Optional[datetime] = None) -> Dict[str, object]:
        now = now or utcnow()
        books = self.catalog.list_books()
        members = self.members.list_members()
        open_loans = self.ledger.open_loans()

        total_books = len(books)
        issued = len(open_loans)
        overdue = sum(1 for t in open_loans if t.due_date and rules.is_overdue(t.due_date, None, now))
        active = sum(1 for m in members if m.status == MemberStatus.ACTIVE)
        fines = sum((m.fine_amount for m in members), Decimal("0.00"))

        return {
            "total_books": total_books,
            "books_issued": issued,
            "active_members": active,
            "total_fines": fines,
            "overdue_books": overdue,
            "total_reservations": len(self.ledger.open_reservations()),
            "circulation_rate": _ratio(issued, total_books, 100),
            "overdue_rate": _ratio(overdue, max(1, issued), 100),
            "books_per_member": _ratio(total_books, max(1, active)),
            "loans_per_member": _ratio(issued, max(1, active)),
        }

    # ------------------------- Export rows ------------------------- #
    def overdue_rows(self, now: Optional[datetime] = None) -> List[Dict[str, object]]:
        """Overdue loans with the contact details needed to chase them."""
        now = now or utcnow()
        rows = []
        for loan in self.ledger.overdue_loans(now):
            member = loan.member
            rows.append(
                {
                    "transaction_id": loan.id,
                    "book_title": loan.book.title if loan.book else "",
                    "isbn": (loan.book.isbn or "") if loan.book else "",
                    "membership_number": member.membership_number if member else "",
                    "member_name": member.full_name if member else "",
                    "email": member.email if member else "",
                    "phone": (member.profile.phone or "") if member and member.profile else "",
                    "due_date": loan.due_date.date().isoformat(),
                    "days_overdue": rules.days_overdue(loan.due_date, now),
                }
            )
        return rows

    def member_rows(self) -> List[Dict[str, object]]:
        return [
            {
                "membership_number": m.membership_number,
                "name": m.full_name,
                "email": m.email,
                "phone": (m.profile.phone or "") if m.profile else "",
                "membership_type": m.membership_type.value,
                "status": m.status.value,
                "join_date": m.join_date.isoformat() if m.join_date else "",
                "expiry_date": m.expiry_date.isoformat() if m.expiry_date else "",
                "books_issued": m.current_books_issued,
                "max_books_allowed": m.max_books_allowed,
                "fine_amount": str(m.fine_amount),
            }
            for m in self.members.list_members()
        ]

    def catalog_rows(self) -> List[Dict[str, object]]:
        return [
            {
                "title": b.title,
                "isbn": b.isbn or "",
                "author": b.author_name or "",
                "category": b.category_name or "",
                "publisher": b.publisher or "",
                "publication_year": b.publication_year or "",
                "location": b.location or "",
                "status": b.status.value,
                "total_copies": b.total_copies,
                "available_copies": b.available_copies,
            }
            for b in self.catalog.list_books()
        ]

    def financial_rows(self) -> List[Dict[str, object]]:
        """Fines charged on returns and the balance still outstanding, per member."""
        charged: Dict[str, Decimal] = {}
        for event in self.ledger.history(transaction_type=TransactionType.RETURN.value):
            charged[event.member_id] = charged.get(event.member_id, Decimal("0.00")) + event.fine_amount

        rows = []
        for m in self.members.list_members():
            total = charged.get(m.id, Decimal("0.00"))
            if total == 0 and m.fine_amount == 0:
                continue
            rows.append(
                {
                    "membership_number": m.membership_number,
                    "name": m.full_name,
                    "fines_charged": str(total),
                    "outstanding": str(m.fine_amount),
                    "collected": str(max(Decimal("0.00"), total - m.fine_amount)),
                }
            )
        return rows

    EXPORTS = {
        "overdue": "overdue_rows",
        "members": "member_rows",
        "catalog": "catalog_rows",
        "financial": "financial_rows",
    }

    def export_rows(self, kind: str, now: Optional[datetime] = None) -> List[Dict[str, object]]:
        method = self.EXPORTS.get(kind)
        if method is None:
            raise ValidationFailure(f"Unknown export '{kind}'. Choose from: {', '.join(self.EXPORTS)}")
        if kind == "overdue":
            return self.overdue_rows(now)
        return getattr(self, method)()

    def export_csv(self, kind: str, now: Optional[datetime] = None) -> str:
        rows = self.export_rows(kind, now)
        output = io.StringIO()
        if not rows:
            return ""
        writer = csv.DictWriter(output, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
        return output.getvalue()
