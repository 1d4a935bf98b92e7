"""Fixed-length display windows for quest/reward histories.

Placeholders fill the window when a user has fewer real entries. They
are tagged ``is_placeholder`` and never written to the store.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Sequence, TypeVar

from app.tracker.models import QuestHistoryEntry, RewardHistoryEntry
from app.tracker.users import UserIdentity

DEFAULT_TARGET_COUNT = 20
PLACEHOLDER_SPACING = timedelta(hours=1)

Entry = TypeVar("Entry", QuestHistoryEntry, RewardHistoryEntry)


@dataclass(frozen=True, slots=True)
class PlaceholderPalette:
    titles: tuple[str, ...]
    amounts: tuple[int, ...]


QUEST_PALETTE = PlaceholderPalette(
    titles=("トレーニング", "お風呂掃除", "朝の散歩", "ストレッチ", "野菜を食べた", "早寝"),
    amounts=(10, 20, 30, 40, 50, 80, 100),
)

REWARD_PALETTE = PlaceholderPalette(
    titles=("コーヒータイム", "お菓子", "孫と電話", "テレビ1時間", "ビール1本", "お買い物"),
    amounts=(10, 30, 50, 60, 80, 100, 200),
)


def quest_placeholder(user: UserIdentity) -> Callable[[int, int, datetime], QuestHistoryEntry]:
    def make(i: int, offset: int, occurred_at: datetime) -> QuestHistoryEntry:
        k = offset + i
        return QuestHistoryEntry(
            id=f"placeholder-quest-{user.value}-{i}",
            title=QUEST_PALETTE.titles[k % len(QUEST_PALETTE.titles)],
            points=QUEST_PALETTE.amounts[k % len(QUEST_PALETTE.amounts)],
            occurred_at=occurred_at,
            is_placeholder=True,
        )

    return make


def reward_placeholder(user: UserIdentity) -> Callable[[int, int, datetime], RewardHistoryEntry]:
    def make(i: int, offset: int, occurred_at: datetime) -> RewardHistoryEntry:
        k = offset + i
        return RewardHistoryEntry(
            id=f"placeholder-reward-{user.value}-{i}",
            title=REWARD_PALETTE.titles[k % len(REWARD_PALETTE.titles)],
            cost=REWARD_PALETTE.amounts[k % len(REWARD_PALETTE.amounts)],
            occurred_at=occurred_at,
            is_placeholder=True,
        )

    return make


def cap_and_pad(
    entries: Sequence[Entry],
    make_placeholder: Callable[[int, int, datetime], Entry],
    target_count: int = DEFAULT_TARGET_COUNT,
    now: datetime | None = None,
) -> list[Entry]:
    """Newest-first window of exactly ``target_count`` entries.

    Real entries come first (most recent ``target_count`` of them). Any
    shortfall is padded with placeholders from the palette, cycling from
    the number of real entries, each one hour older than the previous and
    all strictly older than the oldest real entry (or ``now`` when empty).
    """
    if target_count <= 0:
        return []

    real = sorted(entries, key=lambda e: e.occurred_at, reverse=True)[:target_count]
    out: list[Entry] = list(real)

    if real:
        anchor = real[-1].occurred_at
    else:
        anchor = now or datetime.now(timezone.utc)

    i = 0
    while len(out) < target_count:
        out.append(make_placeholder(i, len(real), anchor - PLACEHOLDER_SPACING * (i + 1)))
        i += 1
    return out[:target_count]


def prepend_capped(entries: Sequence[Entry], entry: Entry, target_count: int = DEFAULT_TARGET_COUNT) -> list[Entry]:
    """Optimistically add a fresh completion at the top, keeping the window size."""
    return [entry, *entries][:target_count]
