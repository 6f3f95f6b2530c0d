import pytest

from circulation.errors import ErrorKind, StoreError
from circulation.services.sqlite_store import SQLiteStore
from circulation.services.store import Join, gt, in_, is_null, lte, neq


def test_insert_assigns_id_and_timestamps(store):
    row = store.insert("authors", {"name": "Octavia Butler"})
    assert row["id"]
    assert row["created_at"]
    assert store.select("authors", {"id": row["id"]})[0]["name"] == "Octavia Butler"


def test_select_filters_and_order(store):
    for title, copies in [("B", 0), ("A", 2), ("C", 1)]:
        store.insert("books", {"title": title, "total_copies": copies, "available_copies": copies})

    titles = [r["title"] for r in store.select("books", {"available_copies": gt(0)}, order="title")]
    assert titles == ["A", "C"]

    titles = [r["title"] for r in store.select("books", order="-title", limit=2)]
    assert titles == ["C", "B"]

    assert [r["title"] for r in store.select("books", {"title": in_(["A", "B"]), "available_copies": lte(0)})] == ["B"]
    assert len(store.select("books", {"title": neq("A")})) == 2
    assert store.select("books", {"title": in_([])}) == []


def test_none_filter_means_is_null(store):
    store.insert("books", {"title": "No ISBN"})
    store.insert("books", {"title": "With ISBN", "isbn": "123"})
    assert [r["title"] for r in store.select("books", {"isbn": None})] == ["No ISBN"]
    assert [r["title"] for r in store.select("books", {"isbn": is_null(False)})] == ["With ISBN"]


def test_update_returns_matched_rows_for_compare_and_set(store):
    row = store.insert("books", {"title": "Dune", "total_copies": 1, "available_copies": 1})

    assert store.update("books", {"id": row["id"], "available_copies": 1}, {"available_copies": 0}) == 1
    # second writer still believes one copy is left
    assert store.update("books", {"id": row["id"], "available_copies": 1}, {"available_copies": 0}) == 0
    assert store.select_one("books", {"id": row["id"]})["available_copies"] == 0


def test_delete_returns_count(store):
    row = store.insert("authors", {"name": "Gone"})
    assert store.delete("authors", {"id": row["id"]}) == 1
    assert store.delete("authors", {"id": row["id"]}) == 0


def test_constraint_violation_is_typed(store):
    with pytest.raises(StoreError) as exc:
        store.insert("books", {"title": "Broken", "total_copies": 1, "available_copies": 5})
    assert exc.value.kind == ErrorKind.CONSTRAINT_VIOLATION


def test_unknown_column_is_rejected(store):
    with pytest.raises(StoreError) as exc:
        store.select("books", {"nope": 1})
    assert exc.value.kind == ErrorKind.INVALID_INPUT


def test_nested_joins_are_embedded(store):
    profile = store.insert("profiles", {"full_name": "Ada", "email": "ada@example.com"})
    member = store.insert("members", {"membership_number": "LIB20240001", "profile_id": profile["id"]})
    book = store.insert("books", {"title": "Dune"})
    store.insert(
        "transactions",
        {"transaction_type": "checkout", "book_id": book["id"], "member_id": member["id"]},
    )

    joins = {
        "book": Join("books", "book_id"),
        "member": Join("members", "member_id", joins={"profile": Join("profiles", "profile_id")}),
    }
    row = store.select("transactions", joins=joins)[0]
    assert row["book"]["title"] == "Dune"
    assert row["member"]["profile"]["full_name"] == "Ada"


def test_unopenable_database_raises_store_error(tmp_path):
    with pytest.raises(StoreError):
        SQLiteStore(str(tmp_path / "missing" / "dir" / "library.db"))
