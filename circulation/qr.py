"""Text payloads carried by library QR codes.

Only the payload is handled here; turning it into (or reading it from) an
image is the job of whatever QR codec the front end uses.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from circulation.errors import MalformedPayloadError
from circulation.models import Book, Member

PAYLOAD_TYPES = ("book", "member")


@dataclass
class ScanResult:
    kind: str  # book, member or text
    id: Optional[str] = None
    label: str = ""
    data: Dict[str, Any] = field(default_factory=dict)
    raw: str = ""

    def to_dict(self) -> dict:
        return {"kind": self.kind, "id": self.id, "label": self.label, "data": self.data, "raw": self.raw}


def book_payload(book: Book) -> str:
    return json.dumps(
        {"type": "book", "id": book.id, "title": book.title, "isbn": book.isbn},
        ensure_ascii=False,
        separators=(",", ":"),
    )


def member_payload(member: Member) -> str:
    return json.dumps(
        {
            "type": "member",
            "id": member.id,
            "name": member.full_name,
            "membership_number": member.membership_number,
        },
        ensure_ascii=False,
        separators=(",", ":"),
    )


def parse_payload(text: str) -> Dict[str, Any]:
    """Decode a structured payload, raising MalformedPayloadError on anything else."""
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as e:
        raise MalformedPayloadError(f"Payload is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedPayloadError("Payload must be a JSON object.")
    if data.get("type") not in PAYLOAD_TYPES:
        raise MalformedPayloadError(f"Unknown payload type: {data.get('type')!r}")
    if not data.get("id"):
        raise MalformedPayloadError("Payload has no id.")
    return data


def interpret_scan(text: str) -> ScanResult:
    """Like ``parse_payload`` but never raises: unknown data comes back as plain text."""
    try:
        data = parse_payload(text)
    except MalformedPayloadError:
        return ScanResult(kind="text", label=text, raw=text)

    if data["type"] == "book":
        label = f"Book: {data.get('title') or data['id']}"
    else:
        label = f"Member: {data.get('name') or data.get('membership_number') or data['id']}"
    return ScanResult(kind=data["type"], id=str(data["id"]), label=label, data=data, raw=text)
