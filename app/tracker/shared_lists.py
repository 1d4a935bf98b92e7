"""Shared catalogs (quests, rewards, wishes) — visible identically to both users.

Local edits apply first; store writes follow and a refresh from the
store replaces the local list. Items with a Pending id were never
persisted, so updates on them become inserts and deletes skip the store.

Deployments differ in whether these tables still carry a per-user
``"user"`` column. Each call tries the scoped form first; on
ScopingUnsupported it retries once without the scope and remembers the
answer per table so later calls skip the probe.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

from app.tracker.models import (
    DEFAULT_WISH_ICON,
    Pending,
    QuestDefinition,
    RewardDefinition,
    WishItem,
    new_local_id,
    normalize_quest_icon,
    normalize_reward_icon,
    parse_item_id,
)
from app.tracker.store import (
    USER_COLUMN,
    Filter,
    ScopingUnsupported,
    Store,
    StoreError,
    eq,
)
from app.tracker.users import UserIdentity
from app.tracker.validation import finite_or_none, require_amount, require_title

logger = logging.getLogger(__name__)

Item = TypeVar("Item", QuestDefinition, RewardDefinition, WishItem)
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Per-list configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ListSpec(Generic[Item]):
    table: str
    columns: tuple[str, ...]
    local_prefix: str
    parse_row: Callable[[dict[str, Any]], Item | None]
    clean_fields: Callable[[dict[str, Any]], dict[str, Any]]  # raises ValidationFailure
    make_local: Callable[[str, dict[str, Any]], Item]
    insert_defaults: dict[str, Any]


def _row_id(row: dict[str, Any]) -> str:
    raw = row.get("id")
    return str(raw) if raw is not None else ""


def _revalidate(item: Item, fields: dict[str, Any]) -> Item:
    return type(item).model_validate({**item.model_dump(), **fields})


def _parse_quest(row: dict[str, Any]) -> QuestDefinition | None:
    item_id = _row_id(row)
    title = row.get("title") if isinstance(row.get("title"), str) else ""
    points = finite_or_none(row.get("points"))
    if not item_id or not title or points is None:
        return None
    description = row.get("description") if isinstance(row.get("description"), str) else ""
    return QuestDefinition(
        id=item_id,
        title=title,
        description=description,
        points=int(points),
        icon=normalize_quest_icon(row.get("icon")),
    )


def _parse_reward(row: dict[str, Any]) -> RewardDefinition | None:
    item_id = _row_id(row)
    title = row.get("title") if isinstance(row.get("title"), str) else ""
    cost = finite_or_none(row.get("cost"))
    if not item_id or not title or cost is None:
        return None
    return RewardDefinition(id=item_id, title=title, cost=int(cost), icon=normalize_reward_icon(row.get("icon")))


def _parse_wish(row: dict[str, Any]) -> WishItem | None:
    item_id = _row_id(row)
    title = row.get("title") if isinstance(row.get("title"), str) else ""
    if not item_id or not title:
        return None
    icon = row.get("icon") if isinstance(row.get("icon"), str) and row.get("icon") else DEFAULT_WISH_ICON
    created_at = row.get("created_at") if isinstance(row.get("created_at"), datetime) else None
    return WishItem(
        id=item_id,
        icon=icon,
        title=title,
        completed=bool(row.get("completed") or False),
        created_at=created_at,
    )


def _clean_quest(fields: dict[str, Any]) -> dict[str, Any]:
    return {
        "title": require_title(fields.get("title")),
        "description": (fields.get("description") or "").strip(),
        "points": require_amount(fields.get("points"), "points"),
        "icon": normalize_quest_icon(fields.get("icon")).value,
    }


def _clean_reward(fields: dict[str, Any]) -> dict[str, Any]:
    return {
        "title": require_title(fields.get("title")),
        "cost": require_amount(fields.get("cost"), "cost"),
        "icon": normalize_reward_icon(fields.get("icon")).value,
    }


def _clean_wish(fields: dict[str, Any]) -> dict[str, Any]:
    icon = fields.get("icon")
    return {
        "title": require_title(fields.get("title")),
        "icon": (icon.strip() if isinstance(icon, str) else "") or DEFAULT_WISH_ICON,
    }


QUEST_LIST: ListSpec[QuestDefinition] = ListSpec(
    table="quests",
    columns=("id", "title", "description", "points", "icon", "created_at"),
    local_prefix="quest-local",
    parse_row=_parse_quest,
    clean_fields=_clean_quest,
    make_local=lambda item_id, f: QuestDefinition(id=item_id, **f),
    insert_defaults={},
)

REWARD_LIST: ListSpec[RewardDefinition] = ListSpec(
    table="rewards",
    columns=("id", "title", "cost", "icon", "created_at"),
    local_prefix="reward-local",
    parse_row=_parse_reward,
    clean_fields=_clean_reward,
    make_local=lambda item_id, f: RewardDefinition(id=item_id, **f),
    insert_defaults={},
)

WISH_LIST: ListSpec[WishItem] = ListSpec(
    table="wishes",
    columns=("id", "icon", "title", "completed", "created_at"),
    local_prefix="wish-local",
    parse_row=_parse_wish,
    clean_fields=_clean_wish,
    make_local=lambda item_id, f: WishItem(id=item_id, completed=False, **f),
    insert_defaults={"completed": False},
)


# ---------------------------------------------------------------------------
# Scope capability flags
# ---------------------------------------------------------------------------

class ScopeCapabilities:
    """Per-table memory of whether the ``"user"`` column exists.

    None = not probed yet, True = scoped calls work, False = unscoped only.
    """

    def __init__(self) -> None:
        self._flags: dict[str, bool | None] = {}

    def get(self, table: str) -> bool | None:
        return self._flags.get(table)

    def mark(self, table: str, supported: bool) -> None:
        self._flags[table] = supported


# ---------------------------------------------------------------------------
# Synchronizer
# ---------------------------------------------------------------------------

class SharedList(Generic[Item]):
    def __init__(
        self,
        spec: ListSpec[Item],
        store: Store,
        capabilities: ScopeCapabilities,
        initial: Sequence[Item] = (),
    ) -> None:
        self.spec = spec
        self._store = store
        self._caps = capabilities
        self._items: list[Item] = list(initial)

    @property
    def items(self) -> list[Item]:
        return list(self._items)

    def find(self, item_id: str) -> Item | None:
        return next((i for i in self._items if i.id == item_id), None)

    async def _with_scope_fallback(self, user: UserIdentity, call: Callable[[UserIdentity | None], Awaitable[T]]) -> T:
        """Run ``call`` scoped to ``user``, falling back to unscoped exactly once."""
        table = self.spec.table
        if self._caps.get(table) is False:
            return await call(None)
        try:
            result = await call(user)
        except ScopingUnsupported:
            logger.debug("%s has no %r column; retrying unscoped", table, USER_COLUMN)
            self._caps.mark(table, False)
            return await call(None)
        self._caps.mark(table, True)
        return result

    @staticmethod
    def _scoped(filters: list[Filter], user: UserIdentity | None) -> list[Filter]:
        return filters + [eq(USER_COLUMN, user.label)] if user is not None else filters

    @staticmethod
    def _owned(row: dict[str, Any], user: UserIdentity | None) -> dict[str, Any]:
        return {USER_COLUMN: user.label, **row} if user is not None else row

    async def _insert(self, user: UserIdentity, fields: dict[str, Any]) -> dict[str, Any]:
        row = {**fields, **self.spec.insert_defaults}
        return await self._with_scope_fallback(
            user, lambda scope: self._store.insert(self.spec.table, self._owned(row, scope))
        )

    async def _write_update(self, user: UserIdentity, item_id: str, fields: dict[str, Any]) -> None:
        await self._with_scope_fallback(
            user,
            lambda scope: self._store.update(self.spec.table, fields, self._scoped([eq("id", item_id)], scope)),
        )

    # -- operations --------------------------------------------------------

    async def refresh(self, user: UserIdentity) -> bool:
        """Replace the local list with the store's, newest first. False (list untouched) on failure."""
        try:
            rows = await self._with_scope_fallback(
                user,
                lambda scope: self._store.select(
                    self.spec.table,
                    list(self.spec.columns),
                    self._scoped([], scope),
                    order_by="created_at",
                    descending=True,
                ),
            )
        except StoreError as exc:
            logger.error("refresh %s failed: %s", self.spec.table, exc)
            return False
        self._items = [item for item in map(self.spec.parse_row, rows) if item is not None]
        return True

    async def create(self, user: UserIdentity, fields: dict[str, Any]) -> Item:
        clean = self.spec.clean_fields(fields)
        try:
            row = await self._insert(user, clean)
        except StoreError as exc:
            logger.error("create in %s failed; keeping a local-only entry: %s", self.spec.table, exc)
            local = self.spec.make_local(new_local_id(self.spec.local_prefix), clean)
            self._items.insert(0, local)
            return local

        created = self.spec.parse_row({**clean, **row}) or self.spec.make_local(_row_id(row), clean)
        if not await self.refresh(user):
            self._items.insert(0, created)
        return created

    async def update(self, user: UserIdentity, item_id: str, fields: dict[str, Any]) -> list[Item]:
        clean = self.spec.clean_fields(fields)
        self._items = [_revalidate(i, clean) if i.id == item_id else i for i in self._items]

        if isinstance(parse_item_id(item_id), Pending):
            try:
                await self._insert(user, clean)
            except StoreError as exc:
                logger.error("persisting local %s item %s failed: %s", self.spec.table, item_id, exc)
                return self.items
            await self.refresh(user)
            return self.items

        try:
            await self._write_update(user, item_id, clean)
        except StoreError as exc:
            logger.error("update %s/%s failed: %s", self.spec.table, item_id, exc)
            return self.items
        await self.refresh(user)
        return self.items

    async def delete(self, user: UserIdentity, item_id: str) -> list[Item]:
        self._items = [i for i in self._items if i.id != item_id]

        if not isinstance(parse_item_id(item_id), Pending):
            try:
                await self._with_scope_fallback(
                    user,
                    lambda scope: self._store.delete(self.spec.table, self._scoped([eq("id", item_id)], scope)),
                )
            except StoreError as exc:
                logger.error("delete %s/%s failed: %s", self.spec.table, item_id, exc)
                return self.items
        await self.refresh(user)
        return self.items

    async def set_fields(self, user: UserIdentity, item_id: str, fields: dict[str, Any]) -> list[Item]:
        """Raw field write for persisted items (e.g. wish completion), no validation."""
        self._items = [_revalidate(i, fields) if i.id == item_id else i for i in self._items]
        if isinstance(parse_item_id(item_id), Pending):
            return self.items
        try:
            await self._write_update(user, item_id, fields)
        except StoreError as exc:
            logger.error("update %s/%s failed: %s", self.spec.table, item_id, exc)
            return self.items
        await self.refresh(user)
        return self.items
