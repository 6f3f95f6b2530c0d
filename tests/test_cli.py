import json
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from circulation.cli import app
from circulation.ui_helpers import OUTPUT_MODE_ENV

runner = CliRunner()


@pytest.fixture(autouse=True)
def plain_output(monkeypatch):
    # --output writes the mode into the environment; keep tests independent
    monkeypatch.delenv(OUTPUT_MODE_ENV, raising=False)


def invoke(lib, args):
    return runner.invoke(app, args, obj=lib)


def test_list_no_books(lib):
    result = invoke(lib, ["books"])
    assert result.exit_code == 0
    assert "No books in library." in result.stdout


def test_add_book_creates_author_once(lib):
    result = invoke(lib, ["add-book", "The Dispossessed", "--copies", "2", "--author", "Ursula K. Le Guin"])
    assert result.exit_code == 0
    assert "Added book: The Dispossessed (2 copies)" in result.stdout

    invoke(lib, ["add-book", "The Lathe of Heaven", "--author", "ursula k. le guin"])
    assert len(lib.catalog.list_authors()) == 1

    result = invoke(lib, ["books", "--search", "lathe"])
    assert "The Lathe of Heaven (1/1 available) [available]" in result.stdout


def test_add_book_rejects_blank_title(lib):
    result = invoke(lib, ["add-book", "  "])
    assert result.exit_code == 1
    assert "Error:" in result.stdout


def test_add_member(lib):
    result = invoke(lib, ["add-member", "Grace Hopper", "grace@example.com", "--type", "premium"])
    assert result.exit_code == 0
    assert "Registered member LIB" in result.stdout
    assert lib.members.list_members()[0].max_books_allowed == 10

    result = invoke(lib, ["members"])
    assert "Grace Hopper [active] 0/10 books" in result.stdout


def test_checkout_and_return_by_membership_number(lib, member, book):
    result = invoke(lib, ["checkout", member.membership_number, book.id])
    assert result.exit_code == 0
    assert f"Checked out 'A Wizard of Earthsea' to {member.membership_number}" in result.stdout

    loan = lib.ledger.open_loans(member_id=member.id)[0]
    result = invoke(lib, ["return", loan.id])
    assert result.exit_code == 0
    assert "Returned 'A Wizard of Earthsea'." in result.stdout
    assert "Late fine" not in result.stdout


def test_double_return_exits_with_error(lib, member, book):
    loan = lib.desk.checkout(member.id, book.id)
    lib.desk.return_book(loan.id)

    result = invoke(lib, ["return", loan.id])
    assert result.exit_code == 1
    assert "Error: Transaction has already been completed." in result.stdout


def test_suspended_member_cannot_borrow(lib, member, book):
    result = invoke(lib, ["suspend", member.membership_number])
    assert f"Member {member.membership_number} is now suspended." in result.stdout

    result = invoke(lib, ["checkout", member.id, book.id])
    assert result.exit_code == 1
    assert "Error: Member is not active." in result.stdout


def test_unknown_membership_number(lib, book):
    result = invoke(lib, ["checkout", "LIB00000000", book.id])
    assert result.exit_code == 1
    assert "Error: Membership number LIB00000000 not found." in result.stdout


def test_reserve_reports_queue_position(lib, member, book):
    result = invoke(lib, ["reserve", member.id, book.id])
    assert result.exit_code == 0
    assert "(queue position 1)" in result.stdout


def test_pay_rejects_bad_amount(lib, member):
    result = invoke(lib, ["pay", member.id, "lots"])
    assert result.exit_code == 1
    assert "Error: Invalid amount: lots" in result.stdout


def test_overdue_and_transactions(lib, member, book, now):
    loan = lib.desk.checkout(member.id, book.id, now=now - timedelta(days=30))

    result = invoke(lib, ["overdue"])
    assert loan.id in result.stdout
    assert "[overdue]" in result.stdout

    result = invoke(lib, ["transactions", "--type", "return"])
    assert "No transactions found." in result.stdout


def test_stats_json_output(lib, member, book):
    lib.desk.checkout(member.id, book.id)

    result = invoke(lib, ["--output", "json", "stats"])
    assert result.exit_code == 0
    stats = json.loads(result.stdout)
    assert stats["books_issued"] == 1
    assert stats["circulation_rate"] == 100.0


def test_stats_plain_output(lib):
    result = invoke(lib, ["stats"])
    assert "Total Books: 0" in result.stdout
    assert "Circulation Rate (%): 0.0" in result.stdout


def test_export_writes_file(lib, member, tmp_path):
    target = tmp_path / "members.csv"
    result = invoke(lib, ["export", "members", "--output-file", str(target)])
    assert result.exit_code == 0
    assert "Exported 1 row(s)" in result.stdout
    assert "Ada Lovelace" in target.read_text(encoding="utf-8")


def test_qr_then_scan(lib, book):
    payload = invoke(lib, ["qr", "book", book.id]).stdout.strip()
    result = invoke(lib, ["scan", payload])
    assert result.exit_code == 0
    assert "book: Book: A Wizard of Earthsea" in result.stdout


def test_remove_book_uses_catalog(lib, monkeypatch):
    rm_mock = MagicMock(return_value=True)
    monkeypatch.setattr(lib.catalog, "remove_book", rm_mock)

    result = invoke(lib, ["remove-book", "b-1"])
    assert result.exit_code == 0
    assert "Book b-1 has been removed." in result.stdout
    rm_mock.assert_called_once_with("b-1")


@patch("subprocess.run")
def test_serve_command(mock_subprocess_run, lib):
    result = invoke(lib, ["serve"])
    assert result.exit_code == 0
    assert "Starting API on" in result.stdout
    mock_subprocess_run.assert_called_once()
    assert "circulation.api:app" in mock_subprocess_run.call_args[0][0]


def test_unknown_filter_values_are_reported(lib):
    result = invoke(lib, ["transactions", "--type", "bogus"])
    assert result.exit_code == 1
    assert "Error: Invalid transaction type: bogus." in result.stdout

    result = invoke(lib, ["members", "--status", "bogus"])
    assert result.exit_code == 1
    assert "Error: Invalid status: bogus." in result.stdout
