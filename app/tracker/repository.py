"""Per-user store access — weights, goals and completion histories.

Every query is scoped by the user's stored label. Rows that fail to
parse are skipped. Store errors propagate to the caller, who decides
whether to keep prior state.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from app.tracker.datekeys import normalize_date_key
from app.tracker.history import HistorySeries
from app.tracker.models import PeriodGoal, QuestHistoryEntry, RewardHistoryEntry, WeightSample, new_local_id
from app.tracker.store import Store, eq, gte, lt
from app.tracker.users import UserIdentity
from app.tracker.validation import finite_or_none


def _occurred_at(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            pass
        else:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


def parse_period_goal(row: dict[str, Any]) -> PeriodGoal | None:
    start = normalize_date_key(row.get("start_date"))
    end = normalize_date_key(row.get("end_date"))
    if start is None or end is None:
        return None
    return PeriodGoal(start_date=start, end_date=end, target_weight=finite_or_none(row.get("target_weight")))


class UserRepository:
    def __init__(self, store: Store) -> None:
        self._store = store

    # -- weights -----------------------------------------------------------

    async def fetch_series(self, user: UserIdentity) -> HistorySeries:
        rows = await self._store.select(
            "weights", ["weight", "recorded_at"], [eq("user", user.label)], order_by="recorded_at"
        )
        return HistorySeries.from_rows(rows)

    async def fetch_weights_between(self, user: UserIdentity, start: str, end_exclusive: str) -> list[WeightSample]:
        rows = await self._store.select(
            "weights",
            ["weight", "recorded_at"],
            [eq("user", user.label), gte("recorded_at", start), lt("recorded_at", end_exclusive)],
            order_by="recorded_at",
        )
        return HistorySeries.from_rows(rows).ordered()

    async def write_weight(self, user: UserIdentity, date: str, weight: float) -> None:
        """Update the row for (user, date) if one exists, else insert."""
        existing = await self._store.select(
            "weights", ["id"], [eq("user", user.label), eq("recorded_at", date)], limit=1
        )
        if existing and existing[0].get("id") is not None:
            await self._store.update("weights", {"weight": weight}, [eq("id", existing[0]["id"])])
            return
        await self._store.insert("weights", {"user": user.label, "weight": weight, "recorded_at": date})

    # -- goals -------------------------------------------------------------

    async def fetch_final_goal(self, user: UserIdentity) -> float | None:
        rows = await self._store.select("profiles", ["final_goal_weight"], [eq("user", user.label)], limit=1)
        if not rows:
            return None
        return finite_or_none(rows[0].get("final_goal_weight"))

    async def save_final_goal(self, user: UserIdentity, target: float | None) -> None:
        await self._store.upsert("profiles", {"user": user.label, "final_goal_weight": target}, conflict_keys=["user"])

    async def save_period_goal(self, user: UserIdentity, goal: PeriodGoal) -> None:
        await self._store.upsert(
            "period_goals",
            {
                "user": user.label,
                "start_date": goal.start_date,
                "end_date": goal.end_date,
                "target_weight": goal.target_weight,
            },
            conflict_keys=["user", "start_date", "end_date"],
        )

    async def fetch_period_goals(self, user: UserIdentity) -> list[PeriodGoal]:
        rows = await self._store.select(
            "period_goals",
            ["start_date", "end_date", "target_weight"],
            [eq("user", user.label)],
            order_by="end_date",
        )
        return [g for g in map(parse_period_goal, rows) if g is not None]

    # -- completion histories ----------------------------------------------

    async def fetch_quest_history(self, user: UserIdentity, limit: int) -> list[QuestHistoryEntry]:
        rows = await self._store.select(
            "quest_history",
            ["id", "title", "points", "created_at"],
            [eq("user", user.label)],
            order_by="created_at",
            descending=True,
            limit=limit,
        )
        entries: list[QuestHistoryEntry] = []
        for r in rows:
            title = r.get("title") if isinstance(r.get("title"), str) else ""
            points = finite_or_none(r.get("points"))
            if not title or points is None:
                continue
            entries.append(
                QuestHistoryEntry(
                    id=str(r.get("id") or new_local_id("quest")),
                    title=title,
                    points=int(points),
                    occurred_at=_occurred_at(r.get("created_at")),
                )
            )
        return entries

    async def fetch_reward_history(self, user: UserIdentity, limit: int) -> list[RewardHistoryEntry]:
        rows = await self._store.select(
            "reward_history",
            ["id", "title", "cost", "created_at"],
            [eq("user", user.label)],
            order_by="created_at",
            descending=True,
            limit=limit,
        )
        entries: list[RewardHistoryEntry] = []
        for r in rows:
            title = r.get("title") if isinstance(r.get("title"), str) else ""
            cost = finite_or_none(r.get("cost"))
            if not title or cost is None:
                continue
            entries.append(
                RewardHistoryEntry(
                    id=str(r.get("id") or new_local_id("reward")),
                    title=title,
                    cost=int(cost),
                    occurred_at=_occurred_at(r.get("created_at")),
                )
            )
        return entries

    async def append_quest_history(self, user: UserIdentity, title: str, points: int) -> None:
        await self._store.insert("quest_history", {"user": user.label, "title": title, "points": points})

    async def append_reward_history(self, user: UserIdentity, title: str, cost: int) -> None:
        await self._store.insert("reward_history", {"user": user.label, "title": title, "cost": cost})
