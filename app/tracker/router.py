"""Tracker HTTP router — users, weights, goals, points and shared lists."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from app.tracker.models import (
    ActiveUserRequest,
    QuestDefinition,
    QuestFields,
    RecordWeightRequest,
    RewardDefinition,
    RewardFields,
    SaveGoalsRequest,
    UserBalance,
    UserSummary,
    WeightRange,
    WishFields,
    WishItem,
)
from app.tracker.session import UNSET, Household, InsufficientPoints, UnknownItem
from app.tracker.users import UserIdentity
from app.tracker.validation import ValidationFailure

router = APIRouter(prefix="/tracker", tags=["tracker"])


def get_household(request: Request) -> Household:
    """The household loaded at startup (see ``app.main.lifespan``)."""
    return request.app.state.household


def _parse_user(value: str) -> UserIdentity:
    user = UserIdentity.parse(value)
    if user is None:
        raise HTTPException(status_code=404, detail=f"Unknown user: {value}")
    return user


def _invalid(exc: ValidationFailure) -> HTTPException:
    return HTTPException(status_code=422, detail=str(exc))


def _missing(exc: UnknownItem) -> HTTPException:
    return HTTPException(status_code=404, detail=str(exc))


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@router.get("/users", response_model=list[UserBalance])
async def list_users(household: Household = Depends(get_household)) -> list[UserBalance]:
    await household.refresh_balances()
    return household.balances_overview()


@router.post("/active-user", response_model=UserSummary)
async def switch_active_user(
    body: ActiveUserRequest,
    household: Household = Depends(get_household),
) -> UserSummary:
    return await household.switch_user(_parse_user(body.user))


@router.get("/users/{user}/summary", response_model=UserSummary)
async def user_summary(user: str, household: Household = Depends(get_household)) -> UserSummary:
    return household.summary(_parse_user(user))


# ---------------------------------------------------------------------------
# Weights & goals
# ---------------------------------------------------------------------------


@router.post("/users/{user}/weights", response_model=UserSummary)
async def record_weight(
    user: str,
    body: RecordWeightRequest,
    household: Household = Depends(get_household),
) -> UserSummary:
    identity = _parse_user(user)
    try:
        return await household.record_weight(identity, body.weight, body.date)
    except ValidationFailure as exc:
        raise _invalid(exc)


@router.get("/users/{user}/weights", response_model=WeightRange)
async def weights_in_range(
    user: str,
    household: Household = Depends(get_household),
    from_date: str = Query(..., alias="from", description="Start date (YYYY-MM-DD)"),
    to_date: str = Query(..., alias="to", description="Exclusive end date (YYYY-MM-DD)"),
) -> WeightRange:
    identity = _parse_user(user)
    try:
        samples = await household.fetch_weights_for_range(identity, from_date, to_date)
    except ValidationFailure as exc:
        raise _invalid(exc)
    if samples is None:
        return WeightRange(start=from_date, end=to_date, stale=True)
    return WeightRange(start=from_date, end=to_date, samples=samples)


@router.put("/users/{user}/goals", response_model=UserSummary)
async def save_goals(
    user: str,
    body: SaveGoalsRequest,
    household: Household = Depends(get_household),
) -> UserSummary:
    identity = _parse_user(user)
    final = body.final_goal_weight if "final_goal_weight" in body.model_fields_set else UNSET
    try:
        return await household.save_goals(identity, final, body.period_goal)
    except ValidationFailure as exc:
        raise _invalid(exc)


# ---------------------------------------------------------------------------
# Points
# ---------------------------------------------------------------------------


@router.post("/users/{user}/quests/{quest_id}/complete", response_model=UserSummary)
async def complete_quest(
    user: str,
    quest_id: str,
    household: Household = Depends(get_household),
) -> UserSummary:
    identity = _parse_user(user)
    try:
        return await household.complete_quest(identity, quest_id)
    except UnknownItem as exc:
        raise _missing(exc)


@router.post("/users/{user}/rewards/{reward_id}/redeem", response_model=UserSummary)
async def redeem_reward(
    user: str,
    reward_id: str,
    household: Household = Depends(get_household),
) -> UserSummary:
    identity = _parse_user(user)
    try:
        return await household.redeem_reward(identity, reward_id)
    except UnknownItem as exc:
        raise _missing(exc)
    except InsufficientPoints as exc:
        raise HTTPException(status_code=409, detail=str(exc))


# ---------------------------------------------------------------------------
# Shared lists
# ---------------------------------------------------------------------------


@router.get("/quests", response_model=list[QuestDefinition])
async def list_quests(household: Household = Depends(get_household)) -> list[QuestDefinition]:
    return household.quests.items


@router.post("/quests", response_model=QuestDefinition, status_code=201)
async def create_quest(body: QuestFields, household: Household = Depends(get_household)) -> QuestDefinition:
    try:
        return await household.create_quest(body.model_dump(mode="json"))
    except ValidationFailure as exc:
        raise _invalid(exc)


@router.put("/quests/{quest_id}", response_model=list[QuestDefinition])
async def update_quest(
    quest_id: str,
    body: QuestFields,
    household: Household = Depends(get_household),
) -> list[QuestDefinition]:
    if household.quests.find(quest_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown quest: {quest_id}")
    try:
        return await household.update_quest(quest_id, body.model_dump(mode="json"))
    except ValidationFailure as exc:
        raise _invalid(exc)


@router.delete("/quests/{quest_id}", response_model=list[QuestDefinition])
async def delete_quest(quest_id: str, household: Household = Depends(get_household)) -> list[QuestDefinition]:
    return await household.delete_quest(quest_id)


@router.get("/rewards", response_model=list[RewardDefinition])
async def list_rewards(household: Household = Depends(get_household)) -> list[RewardDefinition]:
    return household.rewards.items


@router.post("/rewards", response_model=RewardDefinition, status_code=201)
async def create_reward(body: RewardFields, household: Household = Depends(get_household)) -> RewardDefinition:
    try:
        return await household.create_reward(body.model_dump(mode="json"))
    except ValidationFailure as exc:
        raise _invalid(exc)


@router.put("/rewards/{reward_id}", response_model=list[RewardDefinition])
async def update_reward(
    reward_id: str,
    body: RewardFields,
    household: Household = Depends(get_household),
) -> list[RewardDefinition]:
    if household.rewards.find(reward_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown reward: {reward_id}")
    try:
        return await household.update_reward(reward_id, body.model_dump(mode="json"))
    except ValidationFailure as exc:
        raise _invalid(exc)


@router.delete("/rewards/{reward_id}", response_model=list[RewardDefinition])
async def delete_reward(reward_id: str, household: Household = Depends(get_household)) -> list[RewardDefinition]:
    return await household.delete_reward(reward_id)


@router.get("/wishes", response_model=list[WishItem])
async def list_wishes(household: Household = Depends(get_household)) -> list[WishItem]:
    return household.wishes.items


@router.post("/wishes", response_model=WishItem, status_code=201)
async def create_wish(body: WishFields, household: Household = Depends(get_household)) -> WishItem:
    try:
        return await household.create_wish(body.model_dump())
    except ValidationFailure as exc:
        raise _invalid(exc)


@router.put("/wishes/{wish_id}", response_model=list[WishItem])
async def update_wish(
    wish_id: str,
    body: WishFields,
    household: Household = Depends(get_household),
) -> list[WishItem]:
    if household.wishes.find(wish_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown wish: {wish_id}")
    try:
        return await household.update_wish(wish_id, body.model_dump())
    except ValidationFailure as exc:
        raise _invalid(exc)


@router.delete("/wishes/{wish_id}", response_model=list[WishItem])
async def delete_wish(wish_id: str, household: Household = Depends(get_household)) -> list[WishItem]:
    return await household.delete_wish(wish_id)


@router.post("/wishes/{wish_id}/toggle", response_model=list[WishItem])
async def toggle_wish(wish_id: str, household: Household = Depends(get_household)) -> list[WishItem]:
    try:
        return await household.toggle_wish(wish_id)
    except UnknownItem as exc:
        raise _missing(exc)
