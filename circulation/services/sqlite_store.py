"""SQLite-backed store used for local deployments and tests."""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, List, Mapping, Optional, Tuple

from circulation import database
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

_SQL_OPS = {"eq": "=", "neq": "!=", "gt": ">", "gte": ">=", "lt": "<", "lte": "<="}


class SQLiteStore(Store):
    """Runs each operation on its own short-lived connection."""

    def __init__(self, db_file: str) -> None:
        self.db_file = db_file
        try:
            self._columns = database.initialize_database(db_file)
        except sqlite3.Error as e:
            raise StoreError(f"Could not open database {db_file}: {e}") from e

    # ------------------------- Helpers ------------------------- #
    def _check_columns(self, table: str, columns) -> None:
        known = self._columns.get(table)
        if known is None:
            raise StoreError(f"Unknown table: {table}", ErrorKind.INVALID_INPUT)
        unknown = [c for c in columns if c not in known]
        if unknown:
            raise StoreError(f"Unknown column(s) for {table}: {', '.join(unknown)}", ErrorKind.INVALID_INPUT)

    def _where(self, table: str, filters: Filters) -> Tuple[str, List[Any]]:
        conditions = normalize_filters(filters)
        self._check_columns(table, [column for column, _ in conditions])
        clauses: List[str] = []
        params: List[Any] = []
        for column, cond in conditions:
            clause, values = self._clause(column, cond)
            clauses.append(clause)
            params.extend(values)
        if not clauses:
            return "", params
        return " WHERE " + " AND ".join(clauses), params

    @staticmethod
    def _clause(column: str, cond: Condition) -> Tuple[str, List[Any]]:
        if cond.op == "is_null":
            return (f"{column} IS NULL" if cond.value else f"{column} IS NOT NULL"), []
        if cond.op == "in":
            if not cond.value:
                return "0", []
            marks = ", ".join("?" for _ in cond.value)
            return f"{column} IN ({marks})", [adapt_value(v) for v in cond.value]
        return f"{column} {_SQL_OPS[cond.op]} ?", [adapt_value(cond.value)]

    def _execute(self, sql: str, params: List[Any]) -> int:
        """Run one write statement and return the affected row count."""
        conn = database.get_db_connection(self.db_file)
        try:
            cursor = conn.execute(sql, params)
            conn.commit()
            return cursor.rowcount
        except sqlite3.IntegrityError as e:
            logger.warning(f"Constraint violation: {e}")
            raise StoreError(f"Constraint violation: {e}", ErrorKind.CONSTRAINT_VIOLATION) from e
        except sqlite3.Error as e:
            logger.error(f"SQLite operation failed: {e}")
            raise StoreError(f"Database error: {e}") from e
        finally:
            conn.close()

    # ------------------------- Store operations ------------------------- #
    def insert(self, table: str, record: Mapping[str, Any]) -> Record:
        row = adapt_record(record)
        row.setdefault("id", new_id())
        now = utcnow().isoformat()
        known = self._columns.get(table, [])
        if "created_at" in known:
            row.setdefault("created_at", now)
        if "updated_at" in known:
            row.setdefault("updated_at", now)
        self._check_columns(table, row.keys())

        columns = ", ".join(row.keys())
        marks = ", ".join("?" for _ in row)
        self._execute(f"INSERT INTO {table} ({columns}) VALUES ({marks})", list(row.values()))
        return self.select_one(table, {"id": row["id"]}) or row

    def update(self, table: str, filters: Filters, patch: Mapping[str, Any]) -> int:
        values = adapt_record(patch)
        if "updated_at" in self._columns.get(table, []):
            values.setdefault("updated_at", utcnow().isoformat())
        if not values:
            raise StoreError("Nothing to update.", ErrorKind.INVALID_INPUT)
        self._check_columns(table, values.keys())
        set_clause = ", ".join(f"{column} = ?" for column in values)
        where, params = self._where(table, filters)
        return self._execute(f"UPDATE {table} SET {set_clause}{where}", list(values.values()) + params)

    def delete(self, table: str, filters: Filters) -> int:
        where, params = self._where(table, filters)
        return self._execute(f"DELETE FROM {table}{where}", params)

    def _select_rows(self, table: str, filters: Filters, order: Order, limit: Optional[int]) -> List[Record]:
        where, params = self._where(table, filters)
        ordering = normalize_order(order)
        self._check_columns(table, [column for column, _ in ordering])
        sql = f"SELECT * FROM {table}{where}"
        if ordering:
            sql += " ORDER BY " + ", ".join(f"{c} {'DESC' if desc else 'ASC'}" for c, desc in ordering)
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        conn = database.get_db_connection(self.db_file)
        try:
            rows = conn.execute(sql, params).fetchall()
            return [dict(row) for row in rows]
        except sqlite3.Error as e:
            logger.error(f"SQLite query failed: {e}")
            raise StoreError(f"Database error: {e}") from e
        finally:
            conn.close()
