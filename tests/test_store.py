"""Tests for the store layer: error classification, MemoryStore and SqlStore statements."""

from __future__ import annotations

from datetime import date
from typing import Any

import pytest
from sqlalchemy.exc import OperationalError, ProgrammingError

from app.tracker.store import (
    MemoryStore,
    ScopingUnsupported,
    SqlStore,
    TransientStoreFailure,
    classify_error,
    eq,
    gte,
    in_,
    is_missing_user_column,
    lt,
)


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

class TestClassifyError:
    def test_postgrest_schema_cache_message(self):
        assert is_missing_user_column("Could not find the 'user' column of 'quests' in the schema cache")

    def test_postgres_message(self):
        assert is_missing_user_column('column "user" does not exist')

    def test_unrelated_message(self):
        assert not is_missing_user_column("duplicate key value violates unique constraint")

    def test_maps_to_scoping(self):
        err = classify_error(Exception('column quests.user does not exist'), "quests", "select")
        assert isinstance(err, ScopingUnsupported)
        assert err.table == "quests"
        assert err.operation == "select"

    def test_maps_to_transient(self):
        err = classify_error(Exception("connection reset"), "weights", "insert")
        assert isinstance(err, TransientStoreFailure)

    def test_store_errors_pass_through(self):
        original = TransientStoreFailure("x", table="t")
        assert classify_error(original) is original


# ---------------------------------------------------------------------------
# MemoryStore
# ---------------------------------------------------------------------------

class TestMemoryStore:
    @pytest.mark.asyncio
    async def test_insert_assigns_id_and_created_at(self):
        s = MemoryStore()
        row = await s.insert("quests", {"title": "散歩", "points": 50})
        assert len(row["id"]) == 36
        assert row["created_at"] is not None
        assert row["description"] == ""

    @pytest.mark.asyncio
    async def test_created_at_strictly_increasing(self):
        s = MemoryStore()
        a = await s.insert("wishes", {"title": "a"})
        b = await s.insert("wishes", {"title": "b"})
        assert b["created_at"] > a["created_at"]

    @pytest.mark.asyncio
    async def test_select_filters_order_limit(self):
        s = MemoryStore()
        for d, w in (("2024-01-03", 69.0), ("2024-01-01", 70.0), ("2024-01-02", 69.5)):
            await s.insert("weights", {"user": "じぃじ", "weight": w, "recorded_at": d})
        await s.insert("weights", {"user": "ばぁば", "weight": 55.0, "recorded_at": "2024-01-02"})
        rows = await s.select(
            "weights",
            ["weight", "recorded_at"],
            [eq("user", "じぃじ"), gte("recorded_at", "2024-01-02"), lt("recorded_at", "2024-01-04")],
            order_by="recorded_at",
            descending=True,
            limit=1,
        )
        assert rows == [{"weight": 69.0, "recorded_at": "2024-01-03"}]

    @pytest.mark.asyncio
    async def test_in_filter(self):
        s = MemoryStore(seed={"profiles": [{"user": "じぃじ", "points": 5}, {"user": "other", "points": 1}]})
        rows = await s.select("profiles", ["user"], [in_("user", ["じぃじ", "ばぁば"])])
        assert rows == [{"user": "じぃじ"}]

    @pytest.mark.asyncio
    async def test_row_ensure_does_not_reset(self):
        s = MemoryStore(seed={"profiles": [{"user": "じぃじ", "points": 120}]})
        assert await s.upsert("profiles", {"user": "じぃじ"}, conflict_keys=["user"]) is None
        rows = await s.select("profiles", ["points"], [eq("user", "じぃじ")])
        assert rows == [{"points": 120}]

    @pytest.mark.asyncio
    async def test_upsert_updates_non_key_columns(self):
        s = MemoryStore()
        await s.upsert("profiles", {"user": "ばぁば", "final_goal_weight": 50.0}, conflict_keys=["user"])
        row = await s.upsert("profiles", {"user": "ばぁば", "final_goal_weight": 48.0}, conflict_keys=["user"])
        assert row["final_goal_weight"] == 48.0
        assert len(s.tables["profiles"]) == 1

    @pytest.mark.asyncio
    async def test_unscoped_table_rejects_user_column(self):
        s = MemoryStore(unscoped_tables={"quests"})
        with pytest.raises(ScopingUnsupported):
            await s.select("quests", None, [eq("user", "じぃじ")])
        with pytest.raises(ScopingUnsupported):
            await s.insert("quests", {"user": "じぃじ", "title": "x", "points": 1})
        assert await s.select("quests") == []

    @pytest.mark.asyncio
    async def test_fail_next_is_consumed_once(self):
        s = MemoryStore()
        s.fail_next("select", "weights")
        with pytest.raises(TransientStoreFailure):
            await s.select("weights")
        assert await s.select("weights") == []

    @pytest.mark.asyncio
    async def test_delete_requires_filters(self):
        with pytest.raises(ValueError):
            await MemoryStore().delete("quests", [])

    @pytest.mark.asyncio
    async def test_returned_rows_are_copies(self):
        s = MemoryStore()
        row = await s.insert("wishes", {"title": "旅行"})
        row["title"] = "changed"
        assert s.tables["wishes"][0]["title"] == "旅行"


# ---------------------------------------------------------------------------
# SqlStore — statements built against a fake session
# ---------------------------------------------------------------------------

class FakeResult:
    def __init__(self, rows: list[dict[str, Any]]):
        self._rows = rows
        self._keys = list(rows[0].keys()) if rows else []

    def keys(self):
        return self._keys

    def fetchall(self):
        return [tuple(r[k] for k in self._keys) for r in self._rows]


class FakeSession:
    def __init__(self, rows: list[dict[str, Any]] | None = None, error: Exception | None = None):
        self.rows = rows or []
        self.error = error
        self.statements: list[tuple[str, dict[str, Any]]] = []
        self.committed = False

    async def execute(self, stmt, params=None):
        self.statements.append((str(stmt), dict(params or {})))
        if self.error is not None:
            raise self.error
        return FakeResult(self.rows)

    async def commit(self):
        self.committed = True

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass


def _store(session: FakeSession) -> SqlStore:
    return SqlStore(lambda: session)


class TestSqlStore:
    @pytest.mark.asyncio
    async def test_select_statement(self):
        session = FakeSession(rows=[{"weight": 70.0, "recorded_at": date(2024, 1, 1)}])
        rows = await _store(session).select(
            "weights",
            ["weight", "recorded_at"],
            [eq("user", "じぃじ"), gte("recorded_at", "2024-01-01")],
            order_by="recorded_at",
            limit=5,
        )
        sql, params = session.statements[0]
        assert sql == (
            'SELECT "weight", "recorded_at" FROM "weights" WHERE "user" = :w0 AND "recorded_at" >= :w1 '
            'ORDER BY "recorded_at" ASC LIMIT :limit'
        )
        assert params == {"w0": "じぃじ", "w1": date(2024, 1, 1), "limit": 5}
        assert rows == [{"weight": 70.0, "recorded_at": date(2024, 1, 1)}]

    @pytest.mark.asyncio
    async def test_row_ensure_is_do_nothing(self):
        session = FakeSession()
        assert await _store(session).upsert("profiles", {"user": "じぃじ"}, conflict_keys=["user"]) is None
        sql, _ = session.statements[0]
        assert 'ON CONFLICT ("user") DO NOTHING RETURNING *' in sql

    @pytest.mark.asyncio
    async def test_upsert_updates_excluded(self):
        session = FakeSession(rows=[{"user": "じぃじ", "final_goal_weight": 65.0}])
        await _store(session).upsert("profiles", {"user": "じぃじ", "final_goal_weight": 65.0}, conflict_keys=["user"])
        sql, _ = session.statements[0]
        assert 'DO UPDATE SET "final_goal_weight" = EXCLUDED."final_goal_weight"' in sql
        assert session.committed

    @pytest.mark.asyncio
    async def test_empty_in_filter(self):
        session = FakeSession()
        await _store(session).select("profiles", ["points"], [in_("user", [])])
        assert session.statements[0][0].endswith("WHERE FALSE")

    @pytest.mark.asyncio
    async def test_rejects_unknown_table(self):
        with pytest.raises(ValueError):
            await _store(FakeSession()).select("users")

    @pytest.mark.asyncio
    async def test_rejects_bad_identifier(self):
        with pytest.raises(ValueError):
            await _store(FakeSession()).select("weights", ['weight"; DROP TABLE weights; --'])

    @pytest.mark.asyncio
    async def test_missing_user_column_maps_to_scoping(self):
        error = ProgrammingError("SELECT", {}, Exception('column "user" does not exist'))
        with pytest.raises(ScopingUnsupported) as exc_info:
            await _store(FakeSession(error=error)).select("quests", None, [eq("user", "じぃじ")])
        assert exc_info.value.table == "quests"

    @pytest.mark.asyncio
    async def test_other_db_error_is_transient(self):
        error = OperationalError("INSERT", {}, Exception("server closed the connection unexpectedly"))
        with pytest.raises(TransientStoreFailure):
            await _store(FakeSession(error=error)).insert("weights", {"weight": 70.0})

    @pytest.mark.asyncio
    async def test_insert_without_returning_row_fails(self):
        with pytest.raises(TransientStoreFailure):
            await _store(FakeSession(rows=[])).insert("wishes", {"title": "x"})
