import json
import logging
import os
import subprocess
import sys
from decimal import Decimal, InvalidOperation
from functools import wraps
from typing import Optional

import typer

from circulation import qr
from circulation.config import settings
from circulation.errors import CirculationError, NotFoundError
from circulation.library import Library
from circulation.models import Member, MembershipType
from circulation.ui_helpers import (
    print_books,
    print_members,
    print_stats_result,
    print_transactions,
    set_output_mode,
)

APP_NAME = "Library Circulation CLI"

logger = logging.getLogger(__name__)

app = typer.Typer(help=APP_NAME)


def handle_errors(func):
    """Turn circulation errors into 'Error: ...' and a non-zero exit code."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except CirculationError as e:
            print(f"Error: {e.message}")
            raise typer.Exit(code=1)

    return wrapper


def _library(ctx: typer.Context) -> Library:
    return ctx.obj


def _resolve_member(lib: Library, ref: str) -> Member:
    """Accept either a member id or a membership number."""
    if ref.upper().startswith("LIB"):
        member = lib.members.find_by_number(ref)
        if member is None:
            raise NotFoundError(f"Membership number {ref} not found.")
        return member
    return lib.members.get(ref)


# --- Typer CLI Application ---
@app.callback()
def _global_options(
    ctx: typer.Context,
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    db: Optional[str] = typer.Option(None, "--db", help="SQLite database file (overrides LIBRARY_DB_FILE)"),
):
    """Global CLI options (output mode, database)."""
    logging.basicConfig(level=settings.log_level)
    if output:
        set_output_mode(output)
    if ctx.obj is None:
        ctx.obj = Library.from_settings(db_file=db)
        ctx.call_on_close(ctx.obj.close)


# --- Catalog ---
@app.command("books")
@handle_errors
def cli_books(
    ctx: typer.Context,
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Title, ISBN, publisher or author"),
    available: bool = typer.Option(False, "--available", help="Only books with copies on the shelf"),
):
    """List the catalog."""
    print_books(_library(ctx).catalog.list_books(search=search, available_only=available))


@app.command("add-book")
@handle_errors
def cli_add_book(
    ctx: typer.Context,
    title: str,
    copies: int = typer.Option(1, "--copies", "-c", help="Number of copies"),
    isbn: Optional[str] = typer.Option(None, "--isbn"),
    author: Optional[str] = typer.Option(None, "--author", "-a", help="Author name (created if new)"),
    category: Optional[str] = typer.Option(None, "--category", help="Category name (created if new)"),
    publisher: Optional[str] = typer.Option(None, "--publisher"),
    year: Optional[int] = typer.Option(None, "--year", help="Publication year"),
    location: Optional[str] = typer.Option(None, "--location", help="Shelf location"),
):
    """Add a book to the catalog."""
    lib = _library(ctx)
    author_id = None
    if author:
        existing = [a for a in lib.catalog.list_authors() if a.name.lower() == author.strip().lower()]
        author_id = existing[0].id if existing else lib.catalog.add_author(author).id
    category_id = None
    if category:
        existing = [c for c in lib.catalog.list_categories() if c.name.lower() == category.strip().lower()]
        category_id = existing[0].id if existing else lib.catalog.add_category(category).id
    book = lib.catalog.add_book(
        title,
        copies,
        isbn=isbn,
        author_id=author_id,
        category_id=category_id,
        publisher=publisher,
        publication_year=year,
        location=location,
    )
    print(f"Added book: {book.title} ({book.total_copies} copies) id={book.id}")


@app.command("remove-book")
@handle_errors
def cli_remove_book(ctx: typer.Context, book_id: str):
    """Remove a book that has no copies out and no circulation history."""
    _library(ctx).catalog.remove_book(book_id)
    print(f"Book {book_id} has been removed.")


# --- Members ---
@app.command("members")
@handle_errors
def cli_members(
    ctx: typer.Context,
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Name, email or membership number"),
    status: Optional[str] = typer.Option(None, "--status", help="active | suspended | expired"),
):
    """List members."""
    print_members(_library(ctx).members.list_members(search=search, status=status))


@app.command("add-member")
@handle_errors
def cli_add_member(
    ctx: typer.Context,
    full_name: str,
    email: str,
    phone: Optional[str] = typer.Option(None, "--phone"),
    membership_type: MembershipType = typer.Option(MembershipType.STANDARD, "--type", "-t"),
    max_books: Optional[int] = typer.Option(None, "--max-books", help="Override the default borrowing limit"),
):
    """Create a profile and register a member for it."""
    lib = _library(ctx)
    profile = lib.members.add_profile(full_name, email, phone)
    member = lib.members.register_member(profile.id, membership_type, max_books)
    print(f"Registered member {member.membership_number} for {profile.full_name} (expires {member.expiry_date})")


@app.command("suspend")
@handle_errors
def cli_suspend(ctx: typer.Context, member: str):
    """Suspend a member (id or membership number)."""
    lib = _library(ctx)
    updated = lib.members.suspend(_resolve_member(lib, member).id)
    print(f"Member {updated.membership_number} is now {updated.status.value}.")


@app.command("activate")
@handle_errors
def cli_activate(ctx: typer.Context, member: str):
    """Re-activate a suspended member (id or membership number)."""
    lib = _library(ctx)
    updated = lib.members.activate(_resolve_member(lib, member).id)
    print(f"Member {updated.membership_number} is now {updated.status.value}.")


@app.command("expire")
@handle_errors
def cli_expire(ctx: typer.Context):
    """Mark members whose membership has lapsed as expired."""
    expired = _library(ctx).members.expire_lapsed()
    print(f"Expired {len(expired)} membership(s).")


@app.command("pay")
@handle_errors
def cli_pay(ctx: typer.Context, member: str, amount: str):
    """Record a fine payment."""
    lib = _library(ctx)
    try:
        value = Decimal(amount)
    except InvalidOperation:
        print(f"Error: Invalid amount: {amount}")
        raise typer.Exit(code=1)
    updated = lib.desk.pay_fine(_resolve_member(lib, member).id, value)
    print(f"Outstanding fines for {updated.membership_number}: {updated.fine_amount}")


# --- Circulation ---
@app.command("checkout")
@handle_errors
def cli_checkout(
    ctx: typer.Context,
    member: str,
    book_id: str,
    notes: Optional[str] = typer.Option(None, "--notes"),
):
    """Check a book out to a member."""
    lib = _library(ctx)
    loan = lib.desk.checkout(_resolve_member(lib, member).id, book_id, notes=notes)
    title = loan.book.title if loan.book else book_id
    print(f"Checked out '{title}' to {loan.member.membership_number if loan.member else member}, "
          f"due {loan.due_date:%Y-%m-%d} (transaction {loan.id})")


@app.command("return")
@handle_errors
def cli_return(ctx: typer.Context, transaction_id: str):
    """Return a checked-out book."""
    loan = _library(ctx).desk.return_book(transaction_id)
    title = loan.book.title if loan.book else loan.book_id
    message = f"Returned '{title}'."
    if loan.fine_amount > 0:
        message += f" Late fine: {loan.fine_amount}"
    print(message)


@app.command("renew")
@handle_errors
def cli_renew(ctx: typer.Context, transaction_id: str):
    """Renew an active loan."""
    loan = _library(ctx).desk.renew(transaction_id)
    print(f"Renewed transaction {loan.id}, now due {loan.due_date:%Y-%m-%d}")


@app.command("reserve")
@handle_errors
def cli_reserve(ctx: typer.Context, member: str, book_id: str):
    """Place a reservation for a book."""
    lib = _library(ctx)
    reservation = lib.desk.reserve(_resolve_member(lib, member).id, book_id)
    position = len(lib.ledger.open_reservations(book_id=reservation.book_id))
    print(f"Reservation {reservation.id} placed (queue position {position}).")


@app.command("transactions")
@handle_errors
def cli_transactions(
    ctx: typer.Context,
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Member name, title, membership number or ISBN"),
    type: Optional[str] = typer.Option(None, "--type", "-t", help="checkout | return | renewal | reservation"),
):
    """Show the transaction history, newest first."""
    print_transactions(_library(ctx).ledger.history(search=search, transaction_type=type))


@app.command("overdue")
@handle_errors
def cli_overdue(ctx: typer.Context):
    """List overdue loans."""
    print_transactions(_library(ctx).ledger.overdue_loans())


# --- Reports ---
@app.command("stats")
@handle_errors
def cli_stats(ctx: typer.Context):
    """Show circulation statistics."""
    print_stats_result(_library(ctx).reports.summary())


@app.command("export")
@handle_errors
def cli_export(
    ctx: typer.Context,
    kind: str = typer.Argument(..., help="overdue | members | catalog | financial"),
    format: str = typer.Option("csv", "--format", "-f", help="csv | json"),
    output: Optional[str] = typer.Option(None, "--output-file", help="File to write (default: <kind>_report.<format>)"),
):
    """Export a report to a file."""
    reports = _library(ctx).reports
    if format.lower() == "csv":
        content = reports.export_csv(kind)
        rows = content.count("\n") - 1 if content else 0
    elif format.lower() == "json":
        data = reports.export_rows(kind)
        content = json.dumps(data, indent=2, ensure_ascii=False, default=str)
        rows = len(data)
    else:
        print(f"Unsupported format: {format}. Use csv or json.")
        raise typer.Exit(code=1)
    filename = output or f"{kind}_report.{format.lower()}"
    with open(filename, "w", newline="", encoding="utf-8") as f:
        f.write(content)
    print(f"Exported {max(rows, 0)} row(s) to {filename}")


# --- QR ---
@app.command("qr")
@handle_errors
def cli_qr(
    ctx: typer.Context,
    kind: str = typer.Argument(..., help="book | member"),
    ref: str = typer.Argument(..., help="Book id, member id or membership number"),
):
    """Print the QR payload for a book or member."""
    lib = _library(ctx)
    if kind == "book":
        print(qr.book_payload(lib.catalog.get_book(ref)))
    elif kind == "member":
        print(qr.member_payload(_resolve_member(lib, ref)))
    else:
        print(f"Unknown QR kind: {kind}. Use book or member.")
        raise typer.Exit(code=1)


@app.command("scan")
@handle_errors
def cli_scan(data: str):
    """Interpret scanned QR text."""
    result = qr.interpret_scan(data)
    print(f"{result.kind}: {result.label}")


# --- Server ---
@app.command("serve")
def cli_serve(timeout: int = typer.Option(0, "--timeout", help="Seconds to run before exiting (0 = no timeout)")):
    """Start the HTTP API with uvicorn."""
    host = settings.api_host
    port = int(settings.api_port)
    print(f"Starting API on http://{host}:{port}/")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "circulation.api:app",
        "--host", host,
        "--port", str(port),
    ]
    if timeout and timeout > 0:
        start_new_session = os.name != "nt"
        proc = subprocess.Popen(args, start_new_session=start_new_session)
        try:
            proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            proc.terminate()
            try:
                proc.wait(timeout=5)
            except subprocess.TimeoutExpired:
                proc.kill()
    else:
        subprocess.run(args)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
