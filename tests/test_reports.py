import csv
import io
from datetime import timedelta
from decimal import Decimal

import pytest

from circulation.errors import ValidationFailure


def test_summary_on_empty_library(lib):
    stats = lib.reports.summary()
    assert stats["total_books"] == 0
    assert stats["books_issued"] == 0
    assert stats["circulation_rate"] == 0.0
    assert stats["overdue_rate"] == 0.0
    assert stats["total_fines"] == Decimal("0.00")


def test_summary_counts_and_ratios(lib, member, book, now):
    lib.catalog.add_book("Second Title", 1)
    lib.catalog.add_book("Third Title", 1)
    lib.catalog.add_book("Fourth Title", 1)
    loan = lib.desk.checkout(member.id, book.id, now=now)
    lib.desk.reserve(member.id, lib.catalog.list_books(search="second")[0].id, now=now)

    stats = lib.reports.summary(now=loan.due_date + timedelta(days=1))
    assert stats["total_books"] == 4
    assert stats["books_issued"] == 1
    assert stats["overdue_books"] == 1
    assert stats["active_members"] == 1
    assert stats["total_reservations"] == 1
    assert stats["circulation_rate"] == 25.0
    assert stats["overdue_rate"] == 100.0
    assert stats["books_per_member"] == 4.0
    assert stats["loans_per_member"] == 1.0


def test_returned_loans_do_not_count_as_issued(lib, member, book, now):
    loan = lib.desk.checkout(member.id, book.id, now=now)
    lib.desk.return_book(loan.id, now=loan.due_date + timedelta(days=2))
    stats = lib.reports.summary(now=loan.due_date + timedelta(days=5))
    assert stats["books_issued"] == 0
    assert stats["overdue_books"] == 0
    assert stats["total_fines"] == Decimal("1.00")


def test_overdue_export_includes_contact_details(lib, member, book, now):
    loan = lib.desk.checkout(member.id, book.id, now=now)
    later = loan.due_date + timedelta(days=3)

    rows = lib.reports.overdue_rows(later)
    assert len(rows) == 1
    assert rows[0]["email"] == "ada@example.com"
    assert rows[0]["phone"] == "555-0100"
    assert rows[0]["days_overdue"] == 3

    text = lib.reports.export_csv("overdue", later)
    parsed = list(csv.DictReader(io.StringIO(text)))
    assert parsed[0]["book_title"] == "A Wizard of Earthsea"
    assert parsed[0]["membership_number"] == member.membership_number


def test_member_and_catalog_exports(lib, member, book):
    members = lib.reports.export_rows("members")
    assert members[0]["name"] == "Ada Lovelace"
    catalog = lib.reports.export_rows("catalog")
    assert catalog[0]["author"] == "Ursula K. Le Guin"


def test_financial_export(lib, member, book, now):
    loan = lib.desk.checkout(member.id, book.id, now=now)
    lib.desk.return_book(loan.id, now=loan.due_date + timedelta(days=4))
    lib.desk.pay_fine(member.id, Decimal("0.50"))

    rows = lib.reports.export_rows("financial")
    assert rows == [
        {
            "membership_number": member.membership_number,
            "name": "Ada Lovelace",
            "fines_charged": "2.00",
            "outstanding": "1.50",
            "collected": "0.50",
        }
    ]


def test_unknown_export(lib):
    with pytest.raises(ValidationFailure):
        lib.reports.export_rows("everything")
