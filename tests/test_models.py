"""Tests for the data contract, seed catalog and input validation."""

from __future__ import annotations

import pytest

from app.tracker.models import (
    QuestIcon,
    RewardIcon,
    SaveGoalsRequest,
    new_local_id,
    normalize_quest_icon,
    normalize_reward_icon,
    parse_item_id,
    Pending,
)
from app.tracker.seed import SEED_QUESTS, SEED_REWARDS, SEED_WISHES, seed_rows
from app.tracker.validation import (
    ValidationFailure,
    finite_or_none,
    require_amount,
    require_period,
    require_title,
)


class TestIcons:
    def test_known(self):
        assert normalize_quest_icon("sleep") is QuestIcon.sleep
        assert normalize_reward_icon("tv") is RewardIcon.tv

    def test_unknown_falls_back(self):
        assert normalize_quest_icon("rocket") is QuestIcon.walk
        assert normalize_reward_icon(None) is RewardIcon.coffee


class TestIds:
    def test_local_ids_are_pending(self):
        assert isinstance(parse_item_id(new_local_id("wish-local")), Pending)

    def test_local_ids_unique(self):
        assert new_local_id("x") != new_local_id("x")


class TestSaveGoalsRequest:
    def test_omitted_vs_null(self):
        assert "final_goal_weight" not in SaveGoalsRequest().model_fields_set
        assert "final_goal_weight" in SaveGoalsRequest(final_goal_weight=None).model_fields_set


class TestValidation:
    def test_finite_or_none(self):
        assert finite_or_none("70.5") == 70.5
        assert finite_or_none(float("-inf")) is None
        assert finite_or_none(True) is None
        assert finite_or_none("abc") is None

    def test_title_stripped(self):
        assert require_title("  散歩 ") == "散歩"

    def test_amount(self):
        assert require_amount(-10) == 0
        assert require_amount(12.7) == 12
        with pytest.raises(ValidationFailure):
            require_amount(float("nan"))

    def test_period_same_day_allowed(self):
        assert require_period("2024-02-01", "2024-02-01") == ("2024-02-01", "2024-02-01")

    def test_validation_failure_is_value_error(self):
        with pytest.raises(ValueError):
            require_title("")


class TestSeed:
    def test_catalog_sizes(self):
        assert len(SEED_QUESTS) == 6
        assert len(SEED_REWARDS) == 6
        assert len(SEED_WISHES) == 4

    def test_rows_reverse_ordered(self):
        rows = seed_rows()
        assert rows["quests"][-1]["title"] == SEED_QUESTS[0].title
        assert [r["user"] for r in rows["profiles"]] == ["じぃじ", "ばぁば"]
