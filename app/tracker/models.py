"""Tracker data contract — Pydantic v2 models plus the item-id variant."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from app.tracker.users import UserIdentity

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Item identity
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Persisted:
    """Identifier assigned by the store."""

    id: str


@dataclass(frozen=True, slots=True)
class Pending:
    """Locally synthesized identifier; no store row exists for it."""

    local_id: str


ItemId = Persisted | Pending


def parse_item_id(raw: str) -> ItemId:
    if _UUID_RE.match(raw or ""):
        return Persisted(raw)
    return Pending(raw)


def new_local_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4()}"


# ---------------------------------------------------------------------------
# Icons
# ---------------------------------------------------------------------------

class QuestIcon(str, Enum):
    walk = "walk"
    alcohol = "alcohol"
    food = "food"
    sleep = "sleep"
    exercise = "exercise"


class RewardIcon(str, Enum):
    beer = "beer"
    snack = "snack"
    call = "call"
    coffee = "coffee"
    tv = "tv"
    shopping = "shopping"


DEFAULT_WISH_ICON = "⭐"


def normalize_quest_icon(value: object) -> QuestIcon:
    try:
        return QuestIcon(value)
    except ValueError:
        return QuestIcon.walk


def normalize_reward_icon(value: object) -> RewardIcon:
    try:
        return RewardIcon(value)
    except ValueError:
        return RewardIcon.coffee


# ---------------------------------------------------------------------------
# Per-user records
# ---------------------------------------------------------------------------

class WeightSample(BaseModel):
    date: str  # DateKey
    weight: float


class PeriodGoal(BaseModel):
    start_date: str
    end_date: str
    target_weight: float | None = None


class QuestHistoryEntry(BaseModel):
    id: str
    title: str
    points: int
    occurred_at: datetime
    is_placeholder: bool = False


class RewardHistoryEntry(BaseModel):
    id: str
    title: str
    cost: int
    occurred_at: datetime
    is_placeholder: bool = False


# ---------------------------------------------------------------------------
# Shared catalogs
# ---------------------------------------------------------------------------

class QuestDefinition(BaseModel):
    id: str
    title: str
    description: str = ""
    points: int
    icon: QuestIcon = QuestIcon.walk


class RewardDefinition(BaseModel):
    id: str
    title: str
    cost: int
    icon: RewardIcon = RewardIcon.coffee


class WishItem(BaseModel):
    id: str
    icon: str = DEFAULT_WISH_ICON
    title: str
    completed: bool = False
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Derived progress
# ---------------------------------------------------------------------------

class Comparison(BaseModel):
    """Change versus a sample ``n`` positions back. has_data=False means insufficient history."""

    diff: float = 0.0
    has_data: bool = False


class GoalProgress(BaseModel):
    current_weight: float = 0.0
    final_goal_weight: float | None = None
    final_remaining: float | None = None
    period_goal: PeriodGoal | None = None
    period_remaining: float | None = None
    baseline: float | None = None
    progress_ratio: float | None = None
    vs_yesterday: Comparison = Field(default_factory=Comparison)
    vs_last_week: Comparison = Field(default_factory=Comparison)
    vs_last_month: Comparison = Field(default_factory=Comparison)


class UserBalance(BaseModel):
    user: UserIdentity
    label: str
    points: int = 0
    level: int = 1


class UserSummary(BaseModel):
    user: UserIdentity
    label: str
    points: int
    level: int
    progress: GoalProgress
    weights: list[WeightSample] = Field(default_factory=list)
    completed_quest_ids: list[str] = Field(default_factory=list)
    quest_history: list[QuestHistoryEntry] = Field(default_factory=list)
    reward_history: list[RewardHistoryEntry] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------

class RecordWeightRequest(BaseModel):
    weight: float
    date: str | None = None


class SaveGoalsRequest(BaseModel):
    final_goal_weight: float | None = None
    period_goal: PeriodGoal | None = None


class ActiveUserRequest(BaseModel):
    user: str


class QuestFields(BaseModel):
    title: str
    description: str = ""
    points: int = 0
    icon: QuestIcon = QuestIcon.walk


class RewardFields(BaseModel):
    title: str
    cost: int = 0
    icon: RewardIcon = RewardIcon.coffee


class WishFields(BaseModel):
    title: str
    icon: str = DEFAULT_WISH_ICON


class WeightRange(BaseModel):
    """Month-chart samples. ``stale`` means a newer range request superseded this one."""

    start: str
    end: str
    samples: list[WeightSample] = Field(default_factory=list)
    stale: bool = False
