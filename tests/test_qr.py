import json

import pytest

from circulation import qr
from circulation.errors import ErrorKind, MalformedPayloadError


def test_book_payload_round_trips_through_scan(book):
    payload = qr.book_payload(book)
    assert json.loads(payload)["type"] == "book"

    result = qr.interpret_scan(payload)
    assert result.kind == "book"
    assert result.id == book.id
    assert result.label == "Book: A Wizard of Earthsea"


def test_member_payload(member):
    result = qr.interpret_scan(qr.member_payload(member))
    assert result.kind == "member"
    assert result.id == member.id
    assert result.label == "Member: Ada Lovelace"
    assert result.data["membership_number"] == member.membership_number


@pytest.mark.parametrize(
    "text",
    [
        "not json at all",
        "[1, 2, 3]",
        '{"type": "dvd", "id": "x"}',
        '{"type": "book"}',
    ],
)
def test_parse_payload_is_strict(text):
    with pytest.raises(MalformedPayloadError) as exc:
        qr.parse_payload(text)
    assert exc.value.kind == ErrorKind.MALFORMED_PAYLOAD


def test_unrecognised_scan_falls_back_to_text():
    result = qr.interpret_scan("https://example.com/shelf/12")
    assert result.kind == "text"
    assert result.id is None
    assert result.raw == "https://example.com/shelf/12"
