from __future__ import annotations

import logging
from typing import Any, List, Optional

from circulation import rules
from circulation.errors import ErrorKind, NotFoundError, ValidationFailure
from circulation.models import Author, Book, BookStatus, Category
from circulation.services.store import Join, Store, gt

logger = logging.getLogger(__name__)

BOOK_JOINS = {
    "author": Join("authors", "author_id"),
    "category": Join("categories", "category_id"),
}

EDITABLE_FIELDS = {
    "title",
    "isbn",
    "author_id",
    "category_id",
    "publisher",
    "publication_year",
    "pages",
    "language",
    "description",
    "location",
    "total_copies",
}


class Catalog:
    """Books, authors and categories."""

    def __init__(self, store: Store) -> None:
        self.store = store

    # ------------------------- Authors & categories ------------------------- #
    def add_author(self, name: str) -> Author:
        name = (name or "").strip()
        if not name:
            raise ValidationFailure("Author name cannot be empty.")
        return Author.from_dict(self.store.insert("authors", {"name": name}))

    def list_authors(self) -> List[Author]:
        return [Author.from_dict(row) for row in self.store.select("authors", order="name")]

    def add_category(self, name: str, description: Optional[str] = None) -> Category:
        name = (name or "").strip()
        if not name:
            raise ValidationFailure("Category name cannot be empty.")
        return Category.from_dict(self.store.insert("categories", {"name": name, "description": description}))

    def list_categories(self) -> List[Category]:
        return [Category.from_dict(row) for row in self.store.select("categories", order="name")]

    # ------------------------- Books ------------------------- #
    def add_book(
        self,
        title: str,
        total_copies: int = 1,
        *,
        isbn: Optional[str] = None,
        author_id: Optional[str] = None,
        category_id: Optional[str] = None,
        publisher: Optional[str] = None,
        publication_year: Optional[int] = None,
        pages: Optional[int] = None,
        language: str = "English",
        description: Optional[str] = None,
        location: Optional[str] = None,
    ) -> Book:
        """Add a title; every copy starts on the shelf."""
        title = (title or "").strip()
        if not title:
            raise ValidationFailure("Title cannot be empty.")
        if total_copies < 0:
            raise ValidationFailure("Total copies cannot be negative.")

        row = self.store.insert(
            "books",
            {
                "title": title,
                "isbn": isbn.strip() if isbn else None,
                "author_id": author_id or None,
                "category_id": category_id or None,
                "publisher": publisher or None,
                "publication_year": publication_year,
                "pages": pages,
                "language": language or "English",
                "description": description or None,
                "location": location or None,
                "total_copies": total_copies,
                "available_copies": total_copies,
                "status": rules.derive_book_status(total_copies),
            },
        )
        logger.info(f"Book added: {title} ({total_copies} copies)")
        return self.get_book(row["id"])

    def get_book(self, book_id: str) -> Book:
        row = self.store.select_one("books", {"id": book_id}, joins=BOOK_JOINS)
        if not row:
            raise NotFoundError(f"Book {book_id} not found.")
        return Book.from_dict(row)

    def find_by_isbn(self, isbn: str) -> Optional[Book]:
        row = self.store.select_one("books", {"isbn": isbn.strip()}, joins=BOOK_JOINS)
        return Book.from_dict(row) if row else None

    def list_books(self, search: Optional[str] = None, available_only: bool = False) -> List[Book]:
        """All books by title; ``search`` matches title, ISBN, publisher or author."""
        filters = {"available_copies": gt(0)} if available_only else None
        books = [Book.from_dict(row) for row in self.store.select("books", filters, joins=BOOK_JOINS, order="title")]
        if not search:
            return books
        term = search.lower().strip()
        return [
            b
            for b in books
            if term in b.title.lower()
            or term in (b.isbn or "").lower()
            or term in (b.publisher or "").lower()
            or term in (b.author_name or "").lower()
        ]

    def update_book(self, book_id: str, **fields: Any) -> Book:
        """Edit catalog fields. A new total_copies moves available_copies by the same delta."""
        book = self.get_book(book_id)
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValidationFailure(f"Cannot update field(s): {', '.join(sorted(unknown))}")
        patch = {k: v for k, v in fields.items() if v is not None}
        if not patch:
            raise ValidationFailure("Nothing to update.")
        if "title" in patch and not str(patch["title"]).strip():
            raise ValidationFailure("Title cannot be empty.")

        filters = {"id": book.id}
        if "total_copies" in patch:
            new_total = int(patch["total_copies"])
            if new_total < book.copies_out:
                raise ValidationFailure(
                    f"{book.copies_out} copies are checked out; total cannot drop below that.",
                    ErrorKind.CONFLICT,
                )
            available = book.available_copies + (new_total - book.total_copies)
            patch["available_copies"] = available
            patch["status"] = rules.derive_book_status(available, book.status)
            # only apply if no checkout/return slipped in since the read
            filters["available_copies"] = book.available_copies
            filters["total_copies"] = book.total_copies

        if self.store.update("books", filters, patch) == 0:
            raise ValidationFailure("Book changed while updating; try again.", ErrorKind.CONFLICT)
        return self.get_book(book.id)

    def set_status(self, book_id: str, status: BookStatus) -> Book:
        """Flag a book for maintenance/lost, or clear the flag back to the counter-driven status."""
        book = self.get_book(book_id)
        status = BookStatus(status)
        new_status = rules.derive_book_status(book.available_copies, status)
        self.store.update("books", {"id": book.id}, {"status": new_status})
        logger.info(f"Book {book.id} status set to {new_status.value}")
        return self.get_book(book.id)

    def remove_book(self, book_id: str) -> bool:
        book = self.get_book(book_id)
        if book.copies_out > 0:
            raise ValidationFailure(
                f"Cannot remove '{book.title}': {book.copies_out} copies are checked out.", ErrorKind.CONFLICT
            )
        history = self.store.select("transactions", {"book_id": book.id}, limit=1)
        if history:
            raise ValidationFailure(
                f"Cannot remove '{book.title}': it has circulation history.", ErrorKind.CONFLICT
            )
        return self.store.delete("books", {"id": book.id}) > 0
