"""
Postgres datastore adapter used by every pipeline.

Raw psycopg2 against ``DATABASE_URL``, like the Prefect tasks, so pipelines
can run from flows without Django's ORM. The table layout itself belongs to
the database; this module only speaks generic select/insert/update/upsert/
delete/count with simple filters:

    store.select("media_assets", filters={"final_selected": True})
    store.select("artists_active", filters={"id": in_(["1", "2"])})
    store.update("artists_active", {"status": "active"}, {"id": "7"})

A filter value of ``None`` means IS NULL, a list or tuple means IN, and an
``Op`` (``gte``, ``lt``, ``ne``, ``not_null``, ...) covers the rest.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence, Union

import psycopg2
from psycopg2 import sql
from psycopg2.extras import Json, RealDictCursor
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from agents.enrichment.errors import ConfigurationError, PersistenceError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Filter operators
# ---------------------------------------------------------------------------

_COMPARATORS = {
    "eq": "=",
    "ne": "<>",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
}


@dataclass(frozen=True)
class Op:
    """A non-equality filter on one column."""
    name: str
    value: Any = None

    def sql(self, column: str) -> tuple[sql.Composable, list]:
        ident = sql.Identifier(column)
        if self.name in _COMPARATORS:
            return sql.SQL("{} " + _COMPARATORS[self.name] + " %s").format(ident), [self.value]
        if self.name == "is_null":
            return sql.SQL("{} IS NULL").format(ident), []
        if self.name == "not_null":
            return sql.SQL("{} IS NOT NULL").format(ident), []
        if self.name in ("in", "not_in"):
            values = list(self.value or [])
            if not values:
                # IN () is a syntax error; an empty set matches nothing.
                return sql.SQL("TRUE" if self.name == "not_in" else "FALSE"), []
            keyword = "IN" if self.name == "in" else "NOT IN"
            placeholders = sql.SQL(", ").join(sql.Placeholder() * len(values))
            return sql.SQL("{} " + keyword + " ({})").format(ident, placeholders), values
        raise ValueError(f"Unknown filter operator: {self.name}")

    def matches(self, actual: Any) -> bool:
        """Evaluate the operator against a Python value (NULL semantics included)."""
        if self.name == "is_null":
            return actual is None
        if self.name == "not_null":
            return actual is not None
        if self.name == "in":
            return actual is not None and actual in list(self.value or [])
        if self.name == "not_in":
            return actual is not None and actual not in list(self.value or [])
        if actual is None or self.value is None:
            return False
        if self.name == "eq":
            return actual == self.value
        if self.name == "ne":
            return actual != self.value
        if self.name == "gt":
            return actual > self.value
        if self.name == "gte":
            return actual >= self.value
        if self.name == "lt":
            return actual < self.value
        if self.name == "lte":
            return actual <= self.value
        raise ValueError(f"Unknown filter operator: {self.name}")


def eq(value):
    return Op("eq", value)


def ne(value):
    return Op("ne", value)


def gt(value):
    return Op("gt", value)


def gte(value):
    return Op("gte", value)


def lt(value):
    return Op("lt", value)


def lte(value):
    return Op("lte", value)


def in_(values: Iterable):
    return Op("in", tuple(values))


def not_in(values: Iterable):
    return Op("not_in", tuple(values))


def is_null():
    return Op("is_null")


def not_null():
    return Op("not_null")


def as_op(value: Any) -> Op:
    """Normalize a raw filter value into an Op."""
    if isinstance(value, Op):
        return value
    if value is None:
        return Op("is_null")
    if isinstance(value, (list, tuple, set, frozenset)):
        return Op("in", tuple(value))
    return Op("eq", value)


def row_matches(row: dict, filters: Optional[dict]) -> bool:
    return all(as_op(v).matches(row.get(k)) for k, v in (filters or {}).items())


@dataclass(frozen=True)
class Order:
    column: str
    descending: bool = False
    nulls_first: Optional[bool] = None

    @classmethod
    def parse(cls, spec: Union[str, "Order"]) -> "Order":
        """``"name"`` ascending, ``"-name"`` descending."""
        if isinstance(spec, Order):
            return spec
        if spec.startswith("-"):
            return cls(spec[1:], descending=True)
        return cls(spec)

    def sql(self) -> sql.Composable:
        parts = [sql.Identifier(self.column), sql.SQL("DESC" if self.descending else "ASC")]
        if self.nulls_first is not None:
            parts.append(sql.SQL("NULLS FIRST" if self.nulls_first else "NULLS LAST"))
        return sql.SQL(" ").join(parts)

    def sort_key(self, row: dict) -> tuple:
        """Ascending Python sort key; sort with ``reverse=self.descending``.

        Mirrors Postgres NULL placement: NULLS LAST for ASC and NULLS FIRST
        for DESC unless ``nulls_first`` says otherwise.
        """
        value = row.get(self.column)
        if value is not None:
            return 1, value
        nulls_first = self.nulls_first if self.nulls_first is not None else self.descending
        at_start = nulls_first != self.descending
        return (0 if at_start else 2), 0


# ---------------------------------------------------------------------------
# SQL helpers
# ---------------------------------------------------------------------------

def _adapt(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return Json(value)
    return value


def _where(filters: Optional[dict]) -> tuple[sql.Composable, list]:
    if not filters:
        return sql.SQL(""), []
    clauses, params = [], []
    for column, value in filters.items():
        clause, clause_params = as_op(value).sql(column)
        clauses.append(clause)
        params.extend(_adapt(p) for p in clause_params)
    return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(clauses), params


def _columns(columns: Union[str, Sequence[str]]) -> sql.Composable:
    if columns == "*" or not columns:
        return sql.SQL("*")
    if isinstance(columns, str):
        columns = [c.strip() for c in columns.split(",") if c.strip()]
    return sql.SQL(", ").join(sql.Identifier(c) for c in columns)


def _as_rows(rows: Union[dict, Sequence[dict]]) -> list[dict]:
    return [rows] if isinstance(rows, dict) else list(rows)


def _database_url() -> str:
    dsn = os.environ.get("DATABASE_URL", "")
    if not dsn:
        from django.conf import settings
        if settings.configured:
            dsn = getattr(settings, "DATABASE_URL", "") or ""
    if not dsn:
        raise ConfigurationError("DATABASE_URL not configured")
    return dsn


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class PostgresStore:
    """Generic table access over a single psycopg2 connection.

    Every write commits immediately; per-entity persistence is the commit
    point and there is no cross-entity transaction.
    """

    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn or _database_url()
        self._conn = None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(psycopg2.OperationalError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    def _connect(self):
        return psycopg2.connect(self.dsn)

    @property
    def connection(self):
        if self._conn is None or self._conn.closed:
            try:
                self._conn = self._connect()
            except psycopg2.Error as e:
                raise PersistenceError(f"Could not connect to database: {e}") from e
        return self._conn

    def close(self) -> None:
        if self._conn is not None and not self._conn.closed:
            self._conn.close()
        self._conn = None

    def _execute(self, op: str, table: str, query: sql.Composable, params: list, fetch: bool = True):
        conn = self.connection
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, params)
                rows = [dict(r) for r in cur.fetchall()] if fetch and cur.description else []
                rowcount = cur.rowcount
            conn.commit()
        except psycopg2.Error as e:
            conn.rollback()
            logger.error("%s on %s failed: %s", op, table, e)
            raise PersistenceError(f"{op} on {table} failed: {e}") from e
        return rows, rowcount

    def select(
        self,
        table: str,
        columns: Union[str, Sequence[str]] = "*",
        filters: Optional[dict] = None,
        order_by: Optional[Sequence[Union[str, Order]]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[dict]:
        where, params = _where(filters)
        query = sql.SQL("SELECT {} FROM {}").format(_columns(columns), sql.Identifier(table)) + where
        if order_by:
            query += sql.SQL(" ORDER BY ") + sql.SQL(", ").join(Order.parse(o).sql() for o in order_by)
        if limit is not None:
            query += sql.SQL(" LIMIT %s")
            params.append(int(limit))
        if offset:
            query += sql.SQL(" OFFSET %s")
            params.append(int(offset))
        rows, _ = self._execute("select", table, query, params)
        return rows

    def count(self, table: str, filters: Optional[dict] = None) -> int:
        where, params = _where(filters)
        query = sql.SQL("SELECT COUNT(*) AS n FROM {}").format(sql.Identifier(table)) + where
        rows, _ = self._execute("count", table, query, params)
        return int(rows[0]["n"]) if rows else 0

    def insert(self, table: str, rows: Union[dict, Sequence[dict]]) -> list[dict]:
        rows = _as_rows(rows)
        inserted = []
        for row in rows:
            columns = list(row.keys())
            query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING *").format(
                sql.Identifier(table),
                sql.SQL(", ").join(sql.Identifier(c) for c in columns),
                sql.SQL(", ").join(sql.Placeholder() * len(columns)),
            )
            result, _ = self._execute("insert", table, query, [_adapt(row[c]) for c in columns])
            inserted.extend(result)
        return inserted

    def upsert(
        self,
        table: str,
        rows: Union[dict, Sequence[dict]],
        conflict: Sequence[str],
    ) -> list[dict]:
        """Insert or update on the unique key ``conflict``."""
        rows = _as_rows(rows)
        conflict = [conflict] if isinstance(conflict, str) else list(conflict)
        written = []
        for row in rows:
            columns = list(row.keys())
            updates = [c for c in columns if c not in conflict]
            if updates:
                action = sql.SQL("DO UPDATE SET {}").format(sql.SQL(", ").join(
                    sql.SQL("{} = EXCLUDED.{}").format(sql.Identifier(c), sql.Identifier(c))
                    for c in updates
                ))
            else:
                action = sql.SQL("DO NOTHING")
            query = sql.SQL(
                "INSERT INTO {} ({}) VALUES ({}) ON CONFLICT ({}) {} RETURNING *"
            ).format(
                sql.Identifier(table),
                sql.SQL(", ").join(sql.Identifier(c) for c in columns),
                sql.SQL(", ").join(sql.Placeholder() * len(columns)),
                sql.SQL(", ").join(sql.Identifier(c) for c in conflict),
                action,
            )
            result, _ = self._execute("upsert", table, query, [_adapt(row[c]) for c in columns])
            written.extend(result)
        return written

    def update(self, table: str, values: dict, filters: dict) -> list[dict]:
        if not filters:
            raise PersistenceError(f"Refusing unfiltered update on {table}")
        columns = list(values.keys())
        where, where_params = _where(filters)
        query = sql.SQL("UPDATE {} SET {}").format(
            sql.Identifier(table),
            sql.SQL(", ").join(sql.SQL("{} = %s").format(sql.Identifier(c)) for c in columns),
        ) + where + sql.SQL(" RETURNING *")
        rows, _ = self._execute("update", table, query, [_adapt(values[c]) for c in columns] + where_params)
        return rows

    def delete(self, table: str, filters: dict) -> int:
        if not filters:
            raise PersistenceError(f"Refusing unfiltered delete on {table}")
        where, params = _where(filters)
        query = sql.SQL("DELETE FROM {}").format(sql.Identifier(table)) + where
        _, rowcount = self._execute("delete", table, query, params, fetch=False)
        return rowcount

    def ping(self) -> bool:
        rows, _ = self._execute("ping", "-", sql.SQL("SELECT 1 AS ok"), [])
        return bool(rows)


_store: Optional[PostgresStore] = None


def get_store() -> PostgresStore:
    global _store
    if _store is None:
        _store = PostgresStore()
    return _store
