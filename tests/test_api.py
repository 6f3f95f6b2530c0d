import csv
import io

import pytest
from fastapi.testclient import TestClient

from circulation.api import create_app
from circulation.config import settings
from circulation.errors import ErrorKind, StoreError


@pytest.fixture
def client(lib):
    # Inject the per-test library instead of opening one from settings
    return TestClient(create_app(lib))


@pytest.fixture
def headers(lib):
    return {"X-API-Key": lib.settings.api_key}


@pytest.fixture
def member_id(client, headers):
    response = client.post(
        "/members",
        headers=headers,
        json={"full_name": "Ada Lovelace", "email": "ada@example.com", "membership_type": "student"},
    )
    assert response.status_code == 201
    return response.json()["id"]


@pytest.fixture
def book_id(client, headers):
    response = client.post("/books", headers=headers, json={"title": "Dune", "total_copies": 1, "isbn": "9780441013593"})
    assert response.status_code == 201
    return response.json()["id"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["store"] == "SQLiteStore"


def test_get_books(client, book_id):
    response = client.get("/books")
    assert response.status_code == 200
    assert [b["title"] for b in response.json()] == ["Dune"]
    assert response.headers["X-Total-Count"] == "1"


def test_mutations_require_api_key(client):
    assert client.post("/books", json={"title": "Dune"}).status_code == 403
    response = client.post("/books", headers={"X-API-Key": "invalid-key"}, json={"title": "Dune"})
    assert response.status_code == 403


def test_member_created_with_inline_profile(client, member_id):
    member = client.get(f"/members/{member_id}").json()
    assert member["membership_type"] == "student"
    assert member["max_books_allowed"] == 3
    assert member["profile"]["full_name"] == "Ada Lovelace"
    assert member["membership_number"].startswith("LIB")


def test_unknown_book_is_404_with_error_code(client):
    response = client.get("/books/missing")
    assert response.status_code == 404
    assert response.json()["code"] == ErrorKind.NOT_FOUND.value


def test_checkout_and_return_flow(client, headers, member_id, book_id):
    response = client.post("/transactions/checkout", headers=headers, json={"member_id": member_id, "book_id": book_id})
    assert response.status_code == 201
    loan = response.json()
    assert loan["status"] == "active"
    assert loan["book_title"] == "Dune"
    assert client.get(f"/books/{book_id}").json()["available_copies"] == 0

    response = client.post(f"/transactions/{loan['id']}/return", headers=headers)
    assert response.status_code == 200
    assert response.json()["status"] == "returned"
    assert client.get(f"/books/{book_id}").json()["available_copies"] == 1

    again = client.post(f"/transactions/{loan['id']}/return", headers=headers)
    assert again.status_code == 409
    assert again.json()["code"] == "already_returned"


def test_checkout_refusal_is_409(client, headers, member_id, book_id):
    client.post(f"/members/{member_id}/suspend", headers=headers)
    response = client.post("/transactions/checkout", headers=headers, json={"member_id": member_id, "book_id": book_id})
    assert response.status_code == 409
    assert response.json()["code"] == "ineligible_member"


def test_invalid_input_is_422(client, headers):
    response = client.post("/books", headers=headers, json={"title": "   "})
    assert response.status_code == 422
    assert response.json()["code"] == "invalid_input"


def test_store_failure_is_503(client, lib, monkeypatch):
    def unavailable(*args, **kwargs):
        raise StoreError("Store is unreachable")

    monkeypatch.setattr(lib.catalog, "get_book", unavailable)
    response = client.get("/books/anything")
    assert response.status_code == 503
    assert response.json() == {"detail": "Store is unreachable", "code": "store_unavailable"}


def test_reservations(client, headers, member_id, book_id):
    response = client.post("/reservations", headers=headers, json={"member_id": member_id, "book_id": book_id})
    assert response.status_code == 201
    reservation_id = response.json()["id"]

    assert [r["id"] for r in client.get("/reservations", params={"book_id": book_id}).json()] == [reservation_id]

    response = client.post(f"/reservations/{reservation_id}/cancel", headers=headers)
    assert response.status_code == 200
    assert client.get("/reservations").json() == []


def test_transactions_search_and_type_filter(client, headers, member_id, book_id):
    client.post("/transactions/checkout", headers=headers, json={"member_id": member_id, "book_id": book_id})
    assert len(client.get("/transactions", params={"q": "dune"}).json()) == 1
    assert client.get("/transactions", params={"type": "return"}).json() == []
    assert client.get("/transactions", params={"type": "bogus"}).status_code == 400


def test_pay_fine_validates_amount(client, headers, member_id):
    assert client.post(f"/members/{member_id}/pay", headers=headers, json={"amount": "-1"}).status_code == 422


def test_summary_and_export(client, headers, member_id, book_id):
    client.post("/transactions/checkout", headers=headers, json={"member_id": member_id, "book_id": book_id})

    stats = client.get("/reports/summary").json()
    assert stats["books_issued"] == 1
    assert stats["circulation_rate"] == 100.0

    response = client.get("/reports/export/members", params={"format": "csv"})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    rows = list(csv.DictReader(io.StringIO(response.text)))
    assert rows[0]["name"] == "Ada Lovelace"

    response = client.get("/reports/export/catalog", params={"format": "json"})
    assert response.json()[0]["title"] == "Dune"

    assert client.get("/reports/export/nothing").status_code == 422


def test_qr_endpoints(client, book_id, member_id):
    payload = client.get(f"/qr/books/{book_id}").json()["payload"]
    scanned = client.post("/qr/scan", json={"data": payload}).json()
    assert scanned["kind"] == "book"
    assert scanned["id"] == book_id

    payload = client.get(f"/qr/members/{member_id}").json()["payload"]
    assert client.post("/qr/scan", json={"data": payload}).json()["kind"] == "member"

    assert client.post("/qr/scan", json={"data": "hello"}).json()["kind"] == "text"


def test_book_status_and_delete(client, headers, book_id):
    response = client.put(f"/books/{book_id}/status", headers=headers, json={"status": "maintenance"})
    assert response.json()["status"] == "maintenance"
    assert client.delete(f"/books/{book_id}", headers=headers).status_code == 200
    assert client.get(f"/books/{book_id}").status_code == 404


def test_debug_setting_reaches_the_app(lib, monkeypatch):
    monkeypatch.setattr(settings, "debug", True)
    assert create_app(lib).debug is True
    monkeypatch.setattr(settings, "debug", False)
    assert create_app(lib).debug is False
