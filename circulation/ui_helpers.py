import os
import json
from typing import Any, Dict, List, Sequence, Tuple
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from circulation.ledger import loan_status
from circulation.models import Book, Member, Transaction

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _print_rows(
    title: str,
    columns: Sequence[Tuple[str, str]],
    rows: List[Dict[str, Any]],
    plain_line,
    empty: str,
) -> None:
    """Shared renderer: columns are (key, header) pairs used by the rich table."""
    mode = get_output_mode()

    if not rows:
        print(empty)
        return

    if mode == "json":
        print(json.dumps(rows, ensure_ascii=False, default=str))
    elif mode == "rich":
        table = Table(title=title, show_lines=True, header_style="bold cyan")
        for _, header in columns:
            table.add_column(header, style="white")
        for row in rows:
            table.add_row(*(str(row.get(key) if row.get(key) is not None else "") for key, _ in columns))
        _console.print(table)
    else:
        for row in rows:
            print(plain_line(row))


def print_books(books: List[Book]) -> None:
    rows = [b.to_dict() for b in books]
    _print_rows(
        "📚 Books",
        [("id", "ID"), ("title", "Title"), ("author_name", "Author"), ("isbn", "ISBN"),
         ("available_copies", "Available"), ("total_copies", "Total"), ("status", "Status")],
        rows,
        lambda r: f"{r['id']} - {r['title']} ({r['available_copies']}/{r['total_copies']} available) [{r['status']}]",
        "No books in library.",
    )


def print_members(members: List[Member]) -> None:
    rows = []
    for m in members:
        row = m.to_dict()
        row.pop("profile", None)
        row["name"] = m.full_name
        row["email"] = m.email
        rows.append(row)
    _print_rows(
        "👥 Members",
        [("membership_number", "Number"), ("name", "Name"), ("email", "Email"), ("membership_type", "Type"),
         ("status", "Status"), ("current_books_issued", "Issued"), ("fine_amount", "Fines")],
        rows,
        lambda r: f"{r['membership_number']} - {r['name'] or '(no profile)'} [{r['status']}] "
        f"{r['current_books_issued']}/{r['max_books_allowed']} books, fines {r['fine_amount']}",
        "No members found.",
    )


def print_transactions(transactions: List[Transaction]) -> None:
    rows = []
    for t in transactions:
        row = t.to_dict()
        row["status"] = loan_status(t)
        rows.append(row)
    _print_rows(
        "🔄 Transactions",
        [("id", "ID"), ("transaction_type", "Type"), ("book_title", "Book"), ("membership_number", "Member"),
         ("due_date", "Due"), ("status", "Status"), ("fine_amount", "Fine")],
        rows,
        lambda r: f"{r['id']} {r['transaction_type']} '{r['book_title']}' -> {r['membership_number']} "
        f"[{r['status']}]" + (f" due {r['due_date'][:10]}" if r["due_date"] else ""),
        "No transactions found.",
    )


def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print circulation statistics in the current output mode."""
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    labels = [
        ("total_books", "Total Books"),
        ("books_issued", "Books Issued"),
        ("active_members", "Active Members"),
        ("overdue_books", "Overdue Books"),
        ("total_reservations", "Open Reservations"),
        ("total_fines", "Outstanding Fines"),
        ("circulation_rate", "Circulation Rate (%)"),
        ("overdue_rate", "Overdue Rate (%)"),
        ("books_per_member", "Books per Member"),
        ("loans_per_member", "Loans per Member"),
    ]

    if mode == "json":
        print(json.dumps({k: stats.get(k) for k, _ in labels}, ensure_ascii=False, default=str))
    elif mode == "rich":
        content = "\n".join(f"[bold]{label}:[/] {stats.get(key)}" for key, label in labels)
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for key, label in labels:
            print(f"{label}: {stats.get(key)}")
