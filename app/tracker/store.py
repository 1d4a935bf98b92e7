"""Persistent-store collaborator.

The tracker talks to one generic table API: select / insert / update /
upsert / delete with simple filters. ``SqlStore`` runs it over an async
SQLAlchemy session with parameterized ``text()`` statements;
``MemoryStore`` keeps everything in-process (local-only mode, tests).

Errors surface as two classes only:
- ScopingUnsupported — the table has no ``"user"`` column (legacy schema)
- TransientStoreFailure — anything else the store reports
"""

from __future__ import annotations

import logging
import re
import uuid
from copy import deepcopy
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable, Protocol, Sequence

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

USER_COLUMN = "user"

TABLES: frozenset[str] = frozenset(
    {
        "profiles",
        "weights",
        "period_goals",
        "quests",
        "rewards",
        "wishes",
        "quest_history",
        "reward_history",
    }
)

# Columns holding calendar dates; bound as ``date`` objects for the SQL driver.
DATE_COLUMNS: frozenset[str] = frozenset({"recorded_at", "start_date", "end_date"})

_IDENT_RE = re.compile(r"^[a-z_][a-z0-9_]*$")
_DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

_OPERATORS: dict[str, str] = {
    "eq": "=",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
}


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class StoreError(Exception):
    def __init__(self, message: str, *, table: str | None = None, operation: str | None = None) -> None:
        super().__init__(message)
        self.table = table
        self.operation = operation


class ScopingUnsupported(StoreError):
    """The per-user ``"user"`` column does not exist on this table."""


class TransientStoreFailure(StoreError):
    """Any other store-reported failure; treated as terminal for the attempt."""


def is_missing_user_column(message: str) -> bool:
    """Recognize "no user column" errors from PostgREST and Postgres."""
    if "'user' column" in message and "schema cache" in message:
        return True
    if "column" in message and "user" in message and "does not exist" in message:
        return True
    return False


def classify_error(exc: BaseException, table: str | None = None, operation: str | None = None) -> StoreError:
    if isinstance(exc, StoreError):
        return exc
    message = str(exc)
    if is_missing_user_column(message):
        return ScopingUnsupported(message, table=table, operation=operation)
    return TransientStoreFailure(message, table=table, operation=operation)


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Filter:
    column: str
    op: str  # "eq" | "gt" | "gte" | "lt" | "lte" | "in"
    value: Any


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def gt(column: str, value: Any) -> Filter:
    return Filter(column, "gt", value)


def gte(column: str, value: Any) -> Filter:
    return Filter(column, "gte", value)


def lt(column: str, value: Any) -> Filter:
    return Filter(column, "lt", value)


def lte(column: str, value: Any) -> Filter:
    return Filter(column, "lte", value)


def in_(column: str, values: Iterable[Any]) -> Filter:
    return Filter(column, "in", tuple(values))


def matches(row: dict[str, Any], f: Filter) -> bool:
    value = row.get(f.column)
    if f.op == "in":
        return value in f.value
    if f.op == "eq":
        return value == f.value
    if value is None or f.value is None:
        return False
    if f.op == "gt":
        return value > f.value
    if f.op == "gte":
        return value >= f.value
    if f.op == "lt":
        return value < f.value
    if f.op == "lte":
        return value <= f.value
    raise ValueError(f"Unknown filter op: {f.op}")


def has_user_filter(filters: Sequence[Filter]) -> bool:
    return any(f.column == USER_COLUMN for f in filters)


def without_user(filters: Sequence[Filter]) -> list[Filter]:
    return [f for f in filters if f.column != USER_COLUMN]


# ---------------------------------------------------------------------------
# Store protocol
# ---------------------------------------------------------------------------

class Store(Protocol):
    async def select(
        self,
        table: str,
        columns: Sequence[str] | None = None,
        filters: Sequence[Filter] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]: ...

    async def update(self, table: str, fields: dict[str, Any], filters: Sequence[Filter]) -> list[dict[str, Any]]: ...

    async def upsert(
        self, table: str, row: dict[str, Any], conflict_keys: Sequence[str]
    ) -> dict[str, Any] | None: ...

    async def delete(self, table: str, filters: Sequence[Filter]) -> None: ...


# ---------------------------------------------------------------------------
# SQL implementation
# ---------------------------------------------------------------------------

def _ident(name: str) -> str:
    if not _IDENT_RE.match(name):
        raise ValueError(f"Invalid identifier: {name!r}")
    return f'"{name}"'


def _table(name: str) -> str:
    if name not in TABLES:
        raise ValueError(f"Unknown table: {name!r}")
    return _ident(name)


def _bind(column: str, value: Any) -> Any:
    if column in DATE_COLUMNS and isinstance(value, str) and _DATE_KEY_RE.match(value):
        return date.fromisoformat(value)
    return value


class SqlStore:
    """Store over an async SQLAlchemy session factory (Postgres in production)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    def _where(self, filters: Sequence[Filter], params: dict[str, Any]) -> str:
        clauses: list[str] = []
        for i, f in enumerate(filters):
            col = _ident(f.column)
            if f.op == "in":
                names = []
                for j, v in enumerate(f.value):
                    name = f"w{i}_{j}"
                    params[name] = _bind(f.column, v)
                    names.append(f":{name}")
                clauses.append(f"{col} IN ({', '.join(names)})" if names else "FALSE")
                continue
            if f.op not in _OPERATORS:
                raise ValueError(f"Unknown filter op: {f.op}")
            name = f"w{i}"
            params[name] = _bind(f.column, f.value)
            clauses.append(f"{col} {_OPERATORS[f.op]} :{name}")
        return f" WHERE {' AND '.join(clauses)}" if clauses else ""

    async def _execute(
        self, table: str, operation: str, sql: str, params: dict[str, Any], returns_rows: bool = True
    ) -> list[dict[str, Any]]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(text(sql), params)
                rows: list[dict[str, Any]] = []
                if returns_rows:
                    columns = list(result.keys())
                    rows = [dict(zip(columns, r)) for r in result.fetchall()]
                await session.commit()
                return rows
        except (DBAPIError, SQLAlchemyError, OSError) as exc:
            raise classify_error(exc, table, operation) from exc

    async def select(
        self,
        table: str,
        columns: Sequence[str] | None = None,
        filters: Sequence[Filter] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {}
        cols = ", ".join(_ident(c) for c in columns) if columns else "*"
        sql = f"SELECT {cols} FROM {_table(table)}" + self._where(filters, params)
        if order_by:
            sql += f" ORDER BY {_ident(order_by)} {'DESC' if descending else 'ASC'}"
        if limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = int(limit)
        return await self._execute(table, "select", sql, params)

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        params = {f"v{i}": _bind(k, v) for i, (k, v) in enumerate(row.items())}
        cols = ", ".join(_ident(k) for k in row)
        values = ", ".join(f":v{i}" for i in range(len(row)))
        sql = f"INSERT INTO {_table(table)} ({cols}) VALUES ({values}) RETURNING *"
        rows = await self._execute(table, "insert", sql, params)
        if not rows:
            raise TransientStoreFailure("Insert returned no row", table=table, operation="insert")
        return rows[0]

    async def update(self, table: str, fields: dict[str, Any], filters: Sequence[Filter]) -> list[dict[str, Any]]:
        if not fields:
            return []
        params = {f"s{i}": _bind(k, v) for i, (k, v) in enumerate(fields.items())}
        sets = ", ".join(f"{_ident(k)} = :s{i}" for i, k in enumerate(fields))
        sql = f"UPDATE {_table(table)} SET {sets}" + self._where(filters, params) + " RETURNING *"
        return await self._execute(table, "update", sql, params)

    async def upsert(self, table: str, row: dict[str, Any], conflict_keys: Sequence[str]) -> dict[str, Any] | None:
        params = {f"v{i}": _bind(k, v) for i, (k, v) in enumerate(row.items())}
        cols = ", ".join(_ident(k) for k in row)
        values = ", ".join(f":v{i}" for i in range(len(row)))
        conflict = ", ".join(_ident(k) for k in conflict_keys)
        updates = [k for k in row if k not in conflict_keys]
        if updates:
            action = "DO UPDATE SET " + ", ".join(f"{_ident(k)} = EXCLUDED.{_ident(k)}" for k in updates)
        else:
            # Row-ensure: never touch an existing row.
            action = "DO NOTHING"
        sql = f"INSERT INTO {_table(table)} ({cols}) VALUES ({values}) ON CONFLICT ({conflict}) {action} RETURNING *"
        rows = await self._execute(table, "upsert", sql, params)
        return rows[0] if rows else None

    async def delete(self, table: str, filters: Sequence[Filter]) -> None:
        if not filters:
            raise ValueError("Refusing to delete without filters")
        params: dict[str, Any] = {}
        sql = f"DELETE FROM {_table(table)}" + self._where(filters, params)
        await self._execute(table, "delete", sql, params, returns_rows=False)


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------

# Column defaults applied on insert (mirrors the production table defaults).
_TABLE_DEFAULTS: dict[str, dict[str, Any]] = {
    "profiles": {"points": 0, "goal_weight": None, "final_goal_weight": None},
    "quests": {"description": ""},
    "wishes": {"icon": "⭐", "completed": False},
    "period_goals": {"target_weight": None},
}

# Tables keyed by "user" rather than a generated id.
_NO_ID_TABLES: frozenset[str] = frozenset({"profiles"})


class MemoryStore:
    """In-process store with store-assigned UUIDs and created_at stamps.

    ``unscoped_tables`` have no ``"user"`` column: any filter or row that
    references it raises ScopingUnsupported, reproducing the legacy schema.
    ``fail_next`` queues an error for the next matching call.
    """

    def __init__(
        self,
        unscoped_tables: Iterable[str] = (),
        seed: dict[str, list[dict[str, Any]]] | None = None,
    ) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {t: [] for t in TABLES}
        self.unscoped_tables = set(unscoped_tables)
        self.calls: list[tuple[str, str]] = []
        self._failures: list[tuple[str | None, str | None, StoreError]] = []
        self._last_stamp: datetime | None = None
        for table, rows in (seed or {}).items():
            for row in rows:
                self._insert_row(table, row)

    # -- test hooks --------------------------------------------------------

    def fail_next(self, operation: str | None = None, table: str | None = None, error: StoreError | None = None) -> None:
        self._failures.append((operation, table, error or TransientStoreFailure("injected failure")))

    def _check(self, operation: str, table: str, columns: Iterable[str]) -> None:
        self.calls.append((operation, table))
        if table not in TABLES:
            raise TransientStoreFailure(f"relation \"{table}\" does not exist", table=table, operation=operation)
        for i, (op, tbl, err) in enumerate(self._failures):
            if (op is None or op == operation) and (tbl is None or tbl == table):
                del self._failures[i]
                raise err
        if table in self.unscoped_tables and USER_COLUMN in columns:
            raise ScopingUnsupported(
                f'column "{USER_COLUMN}" does not exist', table=table, operation=operation
            )

    # -- helpers -----------------------------------------------------------

    def _stamp(self) -> datetime:
        now = datetime.now(timezone.utc)
        if self._last_stamp is not None and now <= self._last_stamp:
            now = self._last_stamp + timedelta(microseconds=1)
        self._last_stamp = now
        return now

    def _insert_row(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        stored = {**_TABLE_DEFAULTS.get(table, {}), **deepcopy(row)}
        if table not in _NO_ID_TABLES:
            stored.setdefault("id", str(uuid.uuid4()))
            stored.setdefault("created_at", self._stamp())
        if table in self.unscoped_tables:
            stored.pop(USER_COLUMN, None)
        self.tables[table].append(stored)
        return stored

    def _find(self, table: str, filters: Sequence[Filter]) -> list[dict[str, Any]]:
        return [r for r in self.tables[table] if all(matches(r, f) for f in filters)]

    @staticmethod
    def _project(row: dict[str, Any], columns: Sequence[str] | None) -> dict[str, Any]:
        if not columns:
            return deepcopy(row)
        return {c: deepcopy(row.get(c)) for c in columns}

    # -- Store API ---------------------------------------------------------

    async def select(
        self,
        table: str,
        columns: Sequence[str] | None = None,
        filters: Sequence[Filter] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        self._check("select", table, [f.column for f in filters] + list(columns or []))
        rows = self._find(table, filters)
        if order_by:
            present = [r for r in rows if r.get(order_by) is not None]
            missing = [r for r in rows if r.get(order_by) is None]
            rows = sorted(present, key=lambda r: r[order_by], reverse=descending) + missing
        if limit is not None:
            rows = rows[:limit]
        return [self._project(r, columns) for r in rows]

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        self._check("insert", table, row.keys())
        return deepcopy(self._insert_row(table, row))

    async def update(self, table: str, fields: dict[str, Any], filters: Sequence[Filter]) -> list[dict[str, Any]]:
        self._check("update", table, list(fields) + [f.column for f in filters])
        rows = self._find(table, filters)
        for r in rows:
            r.update(deepcopy(fields))
        return [deepcopy(r) for r in rows]

    async def upsert(self, table: str, row: dict[str, Any], conflict_keys: Sequence[str]) -> dict[str, Any] | None:
        self._check("upsert", table, list(row) + list(conflict_keys))
        existing = self._find(table, [eq(k, row.get(k)) for k in conflict_keys])
        if existing:
            updates = {k: v for k, v in row.items() if k not in conflict_keys}
            if not updates:
                return None
            existing[0].update(deepcopy(updates))
            return deepcopy(existing[0])
        return deepcopy(self._insert_row(table, row))

    async def delete(self, table: str, filters: Sequence[Filter]) -> None:
        if not filters:
            raise ValueError("Refusing to delete without filters")
        self._check("delete", table, [f.column for f in filters])
        doomed = self._find(table, filters)
        self.tables[table] = [r for r in self.tables[table] if not any(r is d for d in doomed)]
