"""Household session — the UI-event operations over both users' state.

Each operation updates local state first (phase 1), then issues store
calls sequentially and replaces local values with whatever the store
returns (phase 2). Store failures are logged and never raised: reads
keep prior state, writes keep the optimistic state. Only local
validation (ValidationFailure) and lookups (UnknownItem,
InsufficientPoints) reach the caller.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from app.config import settings
from app.db import async_session
from app.tracker.capper import cap_and_pad, prepend_capped, quest_placeholder, reward_placeholder
from app.tracker.datekeys import today_key
from app.tracker.goals import build_progress, select_active_period_goal
from app.tracker.history import HistorySeries
from app.tracker.ledger import BalanceBook, PointsLedger
from app.tracker.models import (
    PeriodGoal,
    QuestDefinition,
    QuestHistoryEntry,
    RewardDefinition,
    RewardHistoryEntry,
    UserBalance,
    UserSummary,
    WeightSample,
    WishItem,
    new_local_id,
)
from app.tracker.reconcile import Reconciled, RequestSequencer
from app.tracker.repository import UserRepository
from app.tracker.seed import SEED_QUESTS, SEED_REWARDS, SEED_WISHES, seed_rows
from app.tracker.shared_lists import QUEST_LIST, REWARD_LIST, WISH_LIST, ScopeCapabilities, SharedList
from app.tracker.store import MemoryStore, SqlStore, Store, StoreError
from app.tracker.users import USERS, UserIdentity
from app.tracker.validation import require_date_key, require_optional_weight, require_period, require_weight

logger = logging.getLogger(__name__)

LOAD_SCOPE = "load"
RANGE_SCOPE = "weights-range"


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


class UnknownItem(LookupError):
    pass


class InsufficientPoints(Exception):
    pass


class UserState:
    """Everything shown for one user."""

    def __init__(self, user: UserIdentity, window: int) -> None:
        self.user = user
        self.series = HistorySeries()
        self.final_goal: Reconciled[float | None] = Reconciled(None)
        self.period_goal: Reconciled[PeriodGoal | None] = Reconciled(None)
        self.completed_quest_ids: list[str] = []
        self.quest_history: list[QuestHistoryEntry] = cap_and_pad([], quest_placeholder(user), window)
        self.reward_history: list[RewardHistoryEntry] = cap_and_pad([], reward_placeholder(user), window)


class Household:
    def __init__(
        self,
        store: Store,
        today: Callable[[], str] | None = None,
        history_window: int | None = None,
        record_bonus: int | None = None,
    ) -> None:
        self.store = store
        self.repo = UserRepository(store)
        self.ledger = PointsLedger(store)
        self.balances = BalanceBook()
        self.sequencer = RequestSequencer()
        self.capabilities = ScopeCapabilities()
        self.window = settings.history_window if history_window is None else history_window
        self.record_bonus = settings.record_bonus_points if record_bonus is None else record_bonus
        self._today = today or today_key

        self.quests: SharedList[QuestDefinition] = SharedList(QUEST_LIST, store, self.capabilities, SEED_QUESTS)
        self.rewards: SharedList[RewardDefinition] = SharedList(REWARD_LIST, store, self.capabilities, SEED_REWARDS)
        self.wishes: SharedList[WishItem] = SharedList(WISH_LIST, store, self.capabilities, SEED_WISHES)

        self.states: dict[UserIdentity, UserState] = {u: UserState(u, self.window) for u in USERS}
        self.active_user = UserIdentity.jiiji

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def state(self, user: UserIdentity) -> UserState:
        return self.states[user]

    def summary(self, user: UserIdentity) -> UserSummary:
        st = self.states[user]
        return UserSummary(
            user=user,
            label=user.label,
            points=self.balances.points(user),
            level=self.balances.level(user),
            progress=build_progress(st.series, st.final_goal.value, st.period_goal.value),
            weights=st.series.ordered(),
            completed_quest_ids=list(st.completed_quest_ids),
            quest_history=list(st.quest_history),
            reward_history=list(st.reward_history),
        )

    def balances_overview(self) -> list[UserBalance]:
        return [
            UserBalance(user=u, label=u.label, points=self.balances.points(u), level=self.balances.level(u))
            for u in USERS
        ]

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def switch_user(self, user: UserIdentity) -> UserSummary:
        """Make ``user`` active; responses still in flight for the previous context are dropped."""
        self.active_user = user
        self.sequencer.invalidate(LOAD_SCOPE, RANGE_SCOPE)
        await self.load(user)
        return self.summary(user)

    async def refresh_balances(self) -> None:
        try:
            balances = await self.ledger.fetch_balances()
        except StoreError as exc:
            logger.error("Refreshing balances failed: %s", exc)
            return
        self.balances.replace_all(balances)

    async def refresh_shared_lists(self, user: UserIdentity) -> None:
        await self.quests.refresh(user)
        await self.rewards.refresh(user)
        await self.wishes.refresh(user)

    async def load(self, user: UserIdentity) -> bool:
        """Fetch everything for ``user``. False if a newer load superseded this one."""
        token = self.sequencer.begin(LOAD_SCOPE)
        st = self.states[user]

        await self.ledger.ensure_accounts()
        await self.refresh_balances()
        await self.refresh_shared_lists(user)

        try:
            final_goal = await self.repo.fetch_final_goal(user)
        except StoreError as exc:
            logger.error("Loading final goal for %s failed: %s", user.value, exc)
        else:
            if not self.sequencer.is_current(LOAD_SCOPE, token):
                return False
            st.final_goal.confirm(final_goal)

        try:
            goals = await self.repo.fetch_period_goals(user)
        except StoreError as exc:
            logger.error("Loading period goals for %s failed: %s", user.value, exc)
        else:
            if not self.sequencer.is_current(LOAD_SCOPE, token):
                return False
            st.period_goal.confirm(select_active_period_goal(goals, self._today()))

        try:
            series = await self.repo.fetch_series(user)
        except StoreError as exc:
            logger.error("Loading weights for %s failed: %s", user.value, exc)
        else:
            if not self.sequencer.is_current(LOAD_SCOPE, token):
                return False
            st.series = series

        try:
            quest_entries = await self.repo.fetch_quest_history(user, self.window)
        except StoreError as exc:
            logger.error("Loading quest history for %s failed: %s", user.value, exc)
        else:
            if not self.sequencer.is_current(LOAD_SCOPE, token):
                return False
            st.quest_history = cap_and_pad(quest_entries, quest_placeholder(user), self.window)

        try:
            reward_entries = await self.repo.fetch_reward_history(user, self.window)
        except StoreError as exc:
            logger.error("Loading reward history for %s failed: %s", user.value, exc)
        else:
            if not self.sequencer.is_current(LOAD_SCOPE, token):
                return False
            st.reward_history = cap_and_pad(reward_entries, reward_placeholder(user), self.window)

        return True

    async def fetch_weights_for_range(
        self, user: UserIdentity, start: str, end_exclusive: str
    ) -> list[WeightSample] | None:
        """Samples in [start, end_exclusive). None when superseded by a newer range request."""
        start_key = require_date_key(start, "from")
        end_key = require_date_key(end_exclusive, "to")
        token = self.sequencer.begin(RANGE_SCOPE)
        try:
            samples = await self.repo.fetch_weights_between(user, start_key, end_key)
        except StoreError as exc:
            logger.error("Range fetch %s..%s for %s failed: %s", start_key, end_key, user.value, exc)
            samples = self.states[user].series.between(start_key, end_key)
        if not self.sequencer.is_current(RANGE_SCOPE, token):
            return None
        return samples

    # ------------------------------------------------------------------
    # Weight & goals
    # ------------------------------------------------------------------

    async def record_weight(self, user: UserIdentity, weight: float, date: str | None = None) -> UserSummary:
        value = require_weight(weight)
        key = require_date_key(date) if date else self._today()
        st = self.states[user]

        st.series.upsert(key, value)
        self.balances.apply_local(user, self.record_bonus)

        try:
            await self.repo.write_weight(user, key, value)
        except StoreError as exc:
            logger.error("Saving weight %s=%.1f for %s failed: %s", key, value, user.value, exc)
            saved = False
        else:
            saved = True

        await self.ledger.apply_delta(user, self.record_bonus)
        await self.refresh_balances()

        if not saved:
            return self.summary(user)
        try:
            series = await self.repo.fetch_series(user)
        except StoreError as exc:
            logger.error("Re-fetching weights for %s failed: %s", user.value, exc)
        else:
            st.series = series
        return self.summary(user)

    async def save_goals(
        self,
        user: UserIdentity,
        final_goal_weight: float | None = UNSET,
        period_goal: PeriodGoal | None = None,
    ) -> UserSummary:
        """Save the final and/or period goal, then re-derive what is shown.

        The just-saved period goal is preferred when re-deriving the
        active one, so the display does not jump back to an older goal.
        """
        final = UNSET if final_goal_weight is UNSET else require_optional_weight(final_goal_weight)
        period = None
        if period_goal is not None:
            start, end = require_period(period_goal.start_date, period_goal.end_date)
            period = PeriodGoal(
                start_date=start, end_date=end, target_weight=require_optional_weight(period_goal.target_weight)
            )
        st = self.states[user]

        if final is not UNSET:
            st.final_goal.propose(final)
        if period is not None:
            st.period_goal.propose(period)

        try:
            await self.ledger.ensure_account(user)
        except StoreError as exc:
            logger.error("ensure_account(%s) failed: %s", user.value, exc)

        final_saved = period_saved = False
        if final is not UNSET:
            try:
                await self.repo.save_final_goal(user, final)
                final_saved = True
            except StoreError as exc:
                logger.error("Saving final goal for %s failed: %s", user.value, exc)
        if period is not None:
            try:
                await self.repo.save_period_goal(user, period)
                period_saved = True
            except StoreError as exc:
                logger.error("Saving period goal for %s failed: %s", user.value, exc)

        if final is UNSET or final_saved:
            await st.final_goal.settle(self.repo.fetch_final_goal(user))

        if period is None or period_saved:
            try:
                goals = await self.repo.fetch_period_goals(user)
            except StoreError as exc:
                logger.error("Re-fetching period goals for %s failed: %s", user.value, exc)
            else:
                st.period_goal.confirm(select_active_period_goal(goals, self._today(), preferred=period))

        return self.summary(user)

    # ------------------------------------------------------------------
    # Points
    # ------------------------------------------------------------------

    async def _settle_balance(self, user: UserIdentity, delta: int) -> None:
        stored = await self.ledger.apply_delta(user, delta)
        if stored is not None:
            self.balances.replace(user, stored)

    async def complete_quest(self, user: UserIdentity, quest_id: str) -> UserSummary:
        quest = self.quests.find(quest_id)
        if quest is None:
            raise UnknownItem(f"Unknown quest: {quest_id}")
        st = self.states[user]
        if quest_id in st.completed_quest_ids:
            return self.summary(user)

        st.quest_history = prepend_capped(
            st.quest_history,
            QuestHistoryEntry(
                id=new_local_id("quest-local"),
                title=quest.title,
                points=quest.points,
                occurred_at=datetime.now(timezone.utc),
            ),
            self.window,
        )
        st.completed_quest_ids.insert(0, quest_id)
        self.balances.apply_local(user, quest.points)
        self.balances.level_up_if_due(user)

        try:
            await self.repo.append_quest_history(user, quest.title, quest.points)
        except StoreError as exc:
            logger.error("Recording quest %r for %s failed: %s", quest.title, user.value, exc)
        await self._settle_balance(user, quest.points)
        return self.summary(user)

    async def redeem_reward(self, user: UserIdentity, reward_id: str) -> UserSummary:
        reward = self.rewards.find(reward_id)
        if reward is None:
            raise UnknownItem(f"Unknown reward: {reward_id}")
        if self.balances.points(user) < reward.cost:
            raise InsufficientPoints(f"{reward.title} costs {reward.cost}, {user.value} has {self.balances.points(user)}")

        st = self.states[user]
        st.reward_history = prepend_capped(
            st.reward_history,
            RewardHistoryEntry(
                id=new_local_id("reward-local"),
                title=reward.title,
                cost=reward.cost,
                occurred_at=datetime.now(timezone.utc),
            ),
            self.window,
        )
        self.balances.apply_local(user, -reward.cost)

        try:
            await self.repo.append_reward_history(user, reward.title, reward.cost)
        except StoreError as exc:
            logger.error("Recording reward %r for %s failed: %s", reward.title, user.value, exc)
        await self._settle_balance(user, -reward.cost)
        return self.summary(user)

    # ------------------------------------------------------------------
    # Shared lists (scoped by the active user where the schema allows)
    # ------------------------------------------------------------------

    async def create_quest(self, fields: dict[str, Any]) -> QuestDefinition:
        return await self.quests.create(self.active_user, fields)

    async def update_quest(self, quest_id: str, fields: dict[str, Any]) -> list[QuestDefinition]:
        return await self.quests.update(self.active_user, quest_id, fields)

    async def delete_quest(self, quest_id: str) -> list[QuestDefinition]:
        for st in self.states.values():
            st.completed_quest_ids = [q for q in st.completed_quest_ids if q != quest_id]
        return await self.quests.delete(self.active_user, quest_id)

    async def create_reward(self, fields: dict[str, Any]) -> RewardDefinition:
        return await self.rewards.create(self.active_user, fields)

    async def update_reward(self, reward_id: str, fields: dict[str, Any]) -> list[RewardDefinition]:
        return await self.rewards.update(self.active_user, reward_id, fields)

    async def delete_reward(self, reward_id: str) -> list[RewardDefinition]:
        return await self.rewards.delete(self.active_user, reward_id)

    async def create_wish(self, fields: dict[str, Any]) -> WishItem:
        return await self.wishes.create(self.active_user, fields)

    async def update_wish(self, wish_id: str, fields: dict[str, Any]) -> list[WishItem]:
        return await self.wishes.update(self.active_user, wish_id, fields)

    async def delete_wish(self, wish_id: str) -> list[WishItem]:
        return await self.wishes.delete(self.active_user, wish_id)

    async def toggle_wish(self, wish_id: str) -> list[WishItem]:
        wish = self.wishes.find(wish_id)
        if wish is None:
            raise UnknownItem(f"Unknown wish: {wish_id}")
        return await self.wishes.set_fields(self.active_user, wish_id, {"completed": not wish.completed})


def build_store() -> Store:
    """SQL store when a database is configured, else a seeded local-only store."""
    if async_session is not None:
        return SqlStore(async_session)
    logger.warning("DATABASE_URL not set; running in local-only mode")
    return MemoryStore(unscoped_tables={"quests", "rewards", "wishes"}, seed=seed_rows())


def build_household() -> Household:
    return Household(build_store())
