"""Points ledger — per-user balances, never negative.

Store writes are read-then-write: the other user's session may have
changed the stored balance, so the clamp is computed against the value
just read, not against local state.
"""

from __future__ import annotations

import logging

from app.config import settings
from app.tracker.reconcile import Reconciled
from app.tracker.store import Store, StoreError, eq, in_
from app.tracker.users import USERS, UserIdentity
from app.tracker.validation import finite_or_none

logger = logging.getLogger(__name__)


def clamp_balance(current: float | None, delta: int) -> int:
    base = finite_or_none(current)
    return max(0, int(base or 0) + int(delta))


class PointsLedger:
    """Authoritative balances in the ``profiles`` table."""

    def __init__(self, store: Store) -> None:
        self._store = store

    async def ensure_account(self, user: UserIdentity) -> None:
        """Make sure a profile row exists without resetting its points."""
        await self._store.upsert("profiles", {"user": user.label}, conflict_keys=["user"])

    async def ensure_accounts(self) -> None:
        for user in USERS:
            try:
                await self.ensure_account(user)
            except StoreError as exc:
                logger.error("ensure_account(%s) failed: %s", user.value, exc)

    async def read_balance(self, user: UserIdentity) -> int:
        rows = await self._store.select("profiles", ["points"], [eq("user", user.label)], limit=1)
        if not rows:
            return 0
        return clamp_balance(rows[0].get("points"), 0)

    async def apply_delta(self, user: UserIdentity, delta: int) -> int | None:
        """Ensure, read, clamp, write. Returns the stored balance, None on failure."""
        try:
            await self.ensure_account(user)
        except StoreError as exc:
            logger.error("ensure_account(%s) failed: %s", user.value, exc)

        try:
            current = await self.read_balance(user)
        except StoreError as exc:
            logger.error("read_balance(%s) failed; delta %+d not applied: %s", user.value, delta, exc)
            return None

        new_balance = clamp_balance(current, delta)
        try:
            await self._store.update("profiles", {"points": new_balance}, [eq("user", user.label)])
        except StoreError as exc:
            logger.error("Writing balance for %s failed: %s", user.value, exc)
            return None
        return new_balance

    async def fetch_balances(self) -> dict[UserIdentity, int]:
        """Stored balances for both users. Users without a row are omitted."""
        rows = await self._store.select("profiles", ["user", "points"], [in_("user", [u.label for u in USERS])])
        balances: dict[UserIdentity, int] = {}
        for row in rows:
            user = UserIdentity.parse(str(row.get("user") or ""))
            if user is not None:
                balances[user] = clamp_balance(row.get("points"), 0)
        return balances


class BalanceBook:
    """Local, UI-visible balances and levels for both users."""

    def __init__(self, initial_level: int | None = None) -> None:
        level = settings.initial_level if initial_level is None else initial_level
        self._points: dict[UserIdentity, Reconciled[int]] = {u: Reconciled(0) for u in USERS}
        self._levels: dict[UserIdentity, int] = {u: level for u in USERS}

    def points(self, user: UserIdentity) -> int:
        return self._points[user].value

    def level(self, user: UserIdentity) -> int:
        return self._levels[user]

    def cell(self, user: UserIdentity) -> Reconciled[int]:
        return self._points[user]

    def apply_local(self, user: UserIdentity, delta: int) -> int:
        return self._points[user].propose(clamp_balance(self.points(user), delta))

    def level_up_if_due(self, user: UserIdentity) -> int:
        """One level per call when points reach ``level * level_step_points``."""
        if self.points(user) >= self._levels[user] * settings.level_step_points:
            self._levels[user] += 1
        return self._levels[user]

    def replace(self, user: UserIdentity, authoritative: int) -> int:
        return self._points[user].confirm(authoritative)

    def replace_all(self, balances: dict[UserIdentity, int]) -> None:
        for user, value in balances.items():
            self.replace(user, value)
