"""Built-in catalog — shown before the first refresh and used to seed local-only mode."""

from __future__ import annotations

from typing import Any

from app.tracker.models import QuestDefinition, QuestIcon, RewardDefinition, RewardIcon, WishItem
from app.tracker.users import USERS

SEED_QUESTS: list[QuestDefinition] = [
    QuestDefinition(id="q1", title="朝の散歩", description="30分以上歩く", points=50, icon=QuestIcon.walk),
    QuestDefinition(id="q2", title="お酒を控えた", description="今日はお酒なし", points=100, icon=QuestIcon.alcohol),
    QuestDefinition(id="q3", title="野菜を食べた", description="3種類以上の野菜", points=30, icon=QuestIcon.food),
    QuestDefinition(id="q4", title="ストレッチ", description="5分間のストレッチ", points=20, icon=QuestIcon.exercise),
    QuestDefinition(id="q5", title="間食を控えた", description="おやつなしで過ごす", points=80, icon=QuestIcon.food),
    QuestDefinition(id="q6", title="早寝", description="22時前に就寝", points=50, icon=QuestIcon.sleep),
]

SEED_REWARDS: list[RewardDefinition] = [
    RewardDefinition(id="r1", title="ビール1本", cost=100, icon=RewardIcon.beer),
    RewardDefinition(id="r2", title="お菓子", cost=80, icon=RewardIcon.snack),
    RewardDefinition(id="r3", title="孫と電話", cost=50, icon=RewardIcon.call),
    RewardDefinition(id="r4", title="コーヒータイム", cost=30, icon=RewardIcon.coffee),
    RewardDefinition(id="r5", title="テレビ1時間", cost=60, icon=RewardIcon.tv),
    RewardDefinition(id="r6", title="お買い物", cost=200, icon=RewardIcon.shopping),
]

SEED_WISHES: list[WishItem] = [
    WishItem(id="w1", icon="👔", title="昔のスーツを着る"),
    WishItem(id="w2", icon="✈️", title="旅行に行く"),
    WishItem(id="w3", icon="📸", title="家族写真を撮る"),
    WishItem(id="w4", icon="⛰️", title="山登りをする"),
]


def seed_rows() -> dict[str, list[dict[str, Any]]]:
    """Store rows for a fresh local-only store. Store-assigned ids replace the q1/r1/w1 ones.

    Rows are listed oldest first so newest-first ordering shows the
    catalog in the order listed above.
    """
    return {
        "profiles": [{"user": u.label, "points": 0} for u in USERS],
        "quests": [
            {"title": q.title, "description": q.description, "points": q.points, "icon": q.icon.value}
            for q in reversed(SEED_QUESTS)
        ],
        "rewards": [
            {"title": r.title, "cost": r.cost, "icon": r.icon.value}
            for r in reversed(SEED_REWARDS)
        ],
        "wishes": [
            {"icon": w.icon, "title": w.title, "completed": False}
            for w in reversed(SEED_WISHES)
        ],
    }
