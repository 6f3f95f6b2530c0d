"""Store backed by a hosted PostgREST-style API (as exposed by Supabase and friends)."""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Tuple

import httpx

from circulation.errors import ErrorKind, StoreError
from circulation.models import utcnow
from circulation.services.store import (
    Condition,
    Filters,
    Order,
    Record,
    Store,
    adapt_record,
    adapt_value,
    new_id,
    normalize_filters,
    normalize_order,
)

logger = logging.getLogger(__name__)

_RESERVED = set(',.:()"')


def _literal(value: Any) -> str:
    """Quote a list item for ``in.(...)`` when it contains reserved characters."""
    text = str(adapt_value(value))
    if any(ch in _RESERVED for ch in text) or text != text.strip():
        text = '"' + text.replace('"', '\\"') + '"'
    return text


def encode_condition(cond: Condition) -> str:
    """Render a condition in PostgREST operator syntax (``gt.0``, ``is.null``...)."""
    if cond.op == "is_null":
        return "is.null" if cond.value else "not.is.null"
    if cond.op == "in":
        return "in.(" + ",".join(_literal(v) for v in cond.value) + ")"
    return f"{cond.op}.{adapt_value(cond.value)}"


class RestStore(Store):
    """Talks to ``{base_url}/rest/v1/<table>`` with an API key."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"

        if client is None:
            limits = httpx.Limits(max_keepalive_connections=10, max_connections=20, keepalive_expiry=30.0)
            client = httpx.Client(
                base_url=base_url.rstrip("/") + "/rest/v1",
                headers=headers,
                limits=limits,
                timeout=httpx.Timeout(timeout, connect=5.0),
                follow_redirects=True,
            )
        else:
            client.headers.update(headers)
        self._client = client

    # ------------------------- Helpers ------------------------- #
    @staticmethod
    def _params(filters: Filters) -> List[Tuple[str, str]]:
        return [(column, encode_condition(cond)) for column, cond in normalize_filters(filters)]

    def _request(self, method: str, table: str, **kwargs) -> Any:
        try:
            response = self._client.request(method, f"/{table}", **kwargs)
        except httpx.RequestError as e:
            logger.error(f"Store request failed: {method} {table}: {e}")
            raise StoreError(f"Store is unreachable: {e}") from e

        if response.status_code >= 400:
            message = response.text
            code = ""
            try:
                body = response.json()
                message = body.get("message") or message
                code = str(body.get("code") or "")
            except ValueError:
                pass
            kind = ErrorKind.STORE_UNAVAILABLE
            if response.status_code == 409 or code.startswith("23"):
                kind = ErrorKind.CONSTRAINT_VIOLATION
            logger.error(f"Store returned {response.status_code} for {method} {table}: {message}")
            raise StoreError(f"Store error ({response.status_code}): {message}", kind)

        if not response.content:
            return []
        return response.json()

    # ------------------------- Store operations ------------------------- #
    def insert(self, table: str, record: Mapping[str, Any]) -> Record:
        row = adapt_record(record)
        row.setdefault("id", new_id())
        row.setdefault("created_at", utcnow().isoformat())
        data = self._request(
            "POST", table, json=[row], headers={"Prefer": "return=representation"}
        )
        return data[0] if data else row

    def update(self, table: str, filters: Filters, patch: Mapping[str, Any]) -> int:
        values = adapt_record(patch)
        values.setdefault("updated_at", utcnow().isoformat())
        data = self._request(
            "PATCH",
            table,
            params=self._params(filters),
            json=values,
            headers={"Prefer": "return=representation"},
        )
        return len(data)

    def delete(self, table: str, filters: Filters) -> int:
        data = self._request(
            "DELETE", table, params=self._params(filters), headers={"Prefer": "return=representation"}
        )
        return len(data)

    def _select_rows(self, table: str, filters: Filters, order: Order, limit: Optional[int]) -> List[Record]:
        params = [("select", "*")] + self._params(filters)
        ordering = normalize_order(order)
        if ordering:
            params.append(("order", ",".join(f"{c}.{'desc' if desc else 'asc'}" for c, desc in ordering)))
        if limit is not None:
            params.append(("limit", str(int(limit))))
        return list(self._request("GET", table, params=params))

    def close(self) -> None:
        self._client.close()
