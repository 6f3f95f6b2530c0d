import pytest

from circulation.errors import ErrorKind, NotFoundError, ValidationFailure
from circulation.models import BookStatus


def test_add_book_starts_fully_available(lib, book):
    assert book.total_copies == 2
    assert book.available_copies == 2
    assert book.status == BookStatus.AVAILABLE
    assert book.author_name == "Ursula K. Le Guin"
    assert lib.catalog.find_by_isbn("9780547773742").id == book.id


def test_add_book_requires_title(lib):
    with pytest.raises(ValidationFailure):
        lib.catalog.add_book("   ")


def test_book_with_no_copies_is_not_available(lib):
    book = lib.catalog.add_book("Reference Only", 0)
    assert book.status == BookStatus.CHECKED_OUT


def test_list_books_search_and_available_filter(lib, book):
    category = lib.catalog.add_category("Fantasy")
    lib.catalog.add_book("The Hobbit", 1, category_id=category.id, publisher="Allen & Unwin")
    lib.catalog.add_book("Empty Shelf", 0)

    assert [b.title for b in lib.catalog.list_books()] == ["A Wizard of Earthsea", "Empty Shelf", "The Hobbit"]
    assert [b.title for b in lib.catalog.list_books(available_only=True)] == ["A Wizard of Earthsea", "The Hobbit"]
    assert [b.title for b in lib.catalog.list_books(search="le guin")] == ["A Wizard of Earthsea"]
    assert [b.title for b in lib.catalog.list_books(search="unwin")] == ["The Hobbit"]
    assert lib.catalog.list_books(search="hobbit")[0].category_name == "Fantasy"


def test_update_total_copies_shifts_available(lib, member, book):
    lib.desk.checkout(member.id, book.id)

    updated = lib.catalog.update_book(book.id, total_copies=4, location="Shelf B")
    assert updated.total_copies == 4
    assert updated.available_copies == 3
    assert updated.location == "Shelf B"


def test_total_cannot_drop_below_copies_out(lib, member, book):
    lib.desk.checkout(member.id, book.id)
    with pytest.raises(ValidationFailure) as exc:
        lib.catalog.update_book(book.id, total_copies=0)
    assert exc.value.kind == ErrorKind.CONFLICT


def test_update_rejects_counter_fields(lib, book):
    with pytest.raises(ValidationFailure):
        lib.catalog.update_book(book.id, available_copies=10)


def test_set_status_overrides_and_clears(lib, book):
    assert lib.catalog.set_status(book.id, BookStatus.MAINTENANCE).status == BookStatus.MAINTENANCE
    assert lib.catalog.set_status(book.id, BookStatus.AVAILABLE).status == BookStatus.AVAILABLE
    assert lib.catalog.set_status(book.id, BookStatus.LOST).status == BookStatus.LOST
    # only maintenance and lost override the copy counter
    assert lib.catalog.set_status(book.id, BookStatus.RESERVED).status == BookStatus.AVAILABLE


def test_set_status_cannot_fake_availability(lib, member, now):
    book = lib.catalog.add_book("Single Copy", 1)
    lib.desk.checkout(member.id, book.id, now=now)
    assert lib.catalog.set_status(book.id, BookStatus.AVAILABLE).status == BookStatus.CHECKED_OUT


def test_remove_book(lib, book):
    assert lib.catalog.remove_book(book.id) is True
    with pytest.raises(NotFoundError):
        lib.catalog.get_book(book.id)


def test_remove_book_refused_while_copies_out(lib, member, book):
    lib.desk.checkout(member.id, book.id)
    with pytest.raises(ValidationFailure) as exc:
        lib.catalog.remove_book(book.id)
    assert exc.value.kind == ErrorKind.CONFLICT


def test_authors_and_categories_are_sorted(lib):
    lib.catalog.add_author("Zadie Smith")
    lib.catalog.add_author("Chinua Achebe")
    assert [a.name for a in lib.catalog.list_authors()] == ["Chinua Achebe", "Zadie Smith"]
    with pytest.raises(ValidationFailure):
        lib.catalog.add_category("")
