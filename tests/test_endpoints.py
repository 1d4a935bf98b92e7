"""Endpoint tests — FastAPI app via httpx."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient

from app.main import app
from app.tracker.session import Household
from tests.conftest import TODAY


class TestMeta:
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_index(self, client):
        resp = await client.get("/")
        assert resp.status_code == 200
        assert resp.json()["tracker"]["quests"] == "/tracker/quests"


class TestUsersEndpoints:
    @pytest.mark.asyncio
    async def test_list_users(self, client):
        resp = await client.get("/tracker/users")
        assert resp.status_code == 200
        data = resp.json()
        assert [u["user"] for u in data] == ["jiiji", "baaba"]
        assert [u["label"] for u in data] == ["じぃじ", "ばぁば"]
        assert all(u["points"] == 0 and u["level"] == 5 for u in data)

    @pytest.mark.asyncio
    async def test_switch_active_user(self, client, household):
        resp = await client.post("/tracker/active-user", json={"user": "ばぁば"})
        assert resp.status_code == 200
        assert resp.json()["user"] == "baaba"
        assert household.active_user.value == "baaba"

    @pytest.mark.asyncio
    async def test_unknown_user_404(self, client):
        assert (await client.get("/tracker/users/grandson/summary")).status_code == 404
        assert (await client.post("/tracker/active-user", json={"user": "grandson"})).status_code == 404

    @pytest.mark.asyncio
    async def test_summary_shape(self, client):
        resp = await client.get("/tracker/users/jiiji/summary")
        assert resp.status_code == 200
        body = resp.json()
        assert body["progress"]["vs_yesterday"] == {"diff": 0.0, "has_data": False}
        assert len(body["quest_history"]) == 20
        assert all(e["is_placeholder"] for e in body["reward_history"])


class TestWeightEndpoints:
    @pytest.mark.asyncio
    async def test_record_weight(self, client):
        resp = await client.post("/tracker/users/jiiji/weights", json={"weight": 70.2})
        assert resp.status_code == 200
        body = resp.json()
        assert body["weights"] == [{"date": TODAY, "weight": 70.2}]
        assert body["points"] == 10

    @pytest.mark.asyncio
    async def test_record_weight_invalid_422(self, client):
        resp = await client.post("/tracker/users/jiiji/weights", json={"weight": 0})
        assert resp.status_code == 422
        resp = await client.post("/tracker/users/jiiji/weights", json={"weight": 70, "date": "2024-13-01"})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_weights_range(self, client):
        for d, w in (("2024-01-31", 71.0), ("2024-02-10", 70.0)):
            await client.post("/tracker/users/baaba/weights", json={"weight": w, "date": d})
        resp = await client.get("/tracker/users/baaba/weights?from=2024-02-01&to=2024-03-01")
        assert resp.status_code == 200
        body = resp.json()
        assert body["stale"] is False
        assert body["samples"] == [{"date": "2024-02-10", "weight": 70.0}]

    @pytest.mark.asyncio
    async def test_weights_range_requires_dates(self, client):
        assert (await client.get("/tracker/users/baaba/weights")).status_code == 422
        assert (await client.get("/tracker/users/baaba/weights?from=x&to=2024-03-01")).status_code == 422


class TestGoalEndpoints:
    @pytest.mark.asyncio
    async def test_save_goals(self, client):
        await client.post("/tracker/users/jiiji/weights", json={"weight": 70.0})
        resp = await client.put(
            "/tracker/users/jiiji/goals",
            json={
                "final_goal_weight": 65.0,
                "period_goal": {"start_date": "2024-02-01", "end_date": "2024-02-28", "target_weight": 68.0},
            },
        )
        assert resp.status_code == 200
        progress = resp.json()["progress"]
        assert progress["final_goal_weight"] == 65.0
        assert progress["period_goal"]["start_date"] == "2024-02-01"
        assert progress["period_remaining"] == pytest.approx(2.0)

    @pytest.mark.asyncio
    async def test_omitted_final_goal_untouched(self, client):
        await client.put("/tracker/users/jiiji/goals", json={"final_goal_weight": 65.0})
        resp = await client.put(
            "/tracker/users/jiiji/goals",
            json={"period_goal": {"start_date": "2024-02-01", "end_date": "2024-02-28"}},
        )
        assert resp.json()["progress"]["final_goal_weight"] == 65.0

    @pytest.mark.asyncio
    async def test_explicit_null_clears_final_goal(self, client):
        await client.put("/tracker/users/jiiji/goals", json={"final_goal_weight": 65.0})
        resp = await client.put("/tracker/users/jiiji/goals", json={"final_goal_weight": None})
        assert resp.json()["progress"]["final_goal_weight"] is None

    @pytest.mark.asyncio
    async def test_start_after_end_422(self, client):
        resp = await client.put(
            "/tracker/users/jiiji/goals",
            json={"period_goal": {"start_date": "2024-03-01", "end_date": "2024-02-01"}},
        )
        assert resp.status_code == 422


class TestPointsEndpoints:
    @pytest.mark.asyncio
    async def test_complete_and_redeem(self, client):
        resp = await client.post("/tracker/users/jiiji/quests/q2/complete")
        assert resp.status_code == 200
        assert resp.json()["points"] == 100
        resp = await client.post("/tracker/users/jiiji/rewards/r4/redeem")
        assert resp.status_code == 200
        assert resp.json()["points"] == 70

    @pytest.mark.asyncio
    async def test_insufficient_points_409(self, client):
        resp = await client.post("/tracker/users/baaba/rewards/r6/redeem")
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_unknown_items_404(self, client):
        assert (await client.post("/tracker/users/jiiji/quests/nope/complete")).status_code == 404
        assert (await client.post("/tracker/users/jiiji/rewards/nope/redeem")).status_code == 404


class TestSharedListEndpoints:
    @pytest.mark.asyncio
    async def test_seed_catalog_before_refresh(self, client):
        quests = (await client.get("/tracker/quests")).json()
        rewards = (await client.get("/tracker/rewards")).json()
        wishes = (await client.get("/tracker/wishes")).json()
        assert [q["id"] for q in quests] == ["q1", "q2", "q3", "q4", "q5", "q6"]
        assert len(rewards) == 6
        assert len(wishes) == 4

    @pytest.mark.asyncio
    async def test_quest_crud(self, client):
        resp = await client.post("/tracker/quests", json={"title": "腕立て", "points": 40, "icon": "exercise"})
        assert resp.status_code == 201
        created = resp.json()
        assert len(created["id"]) == 36

        resp = await client.put(f"/tracker/quests/{created['id']}", json={"title": "腕立て20回", "points": 60})
        assert resp.status_code == 200
        assert resp.json()[0]["title"] == "腕立て20回"

        resp = await client.delete(f"/tracker/quests/{created['id']}")
        assert resp.status_code == 200
        assert created["id"] not in [q["id"] for q in resp.json()]

    @pytest.mark.asyncio
    async def test_empty_title_422(self, client):
        resp = await client.post("/tracker/rewards", json={"title": "  ", "cost": 10})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_update_unknown_404(self, client):
        resp = await client.put("/tracker/wishes/missing", json={"title": "x"})
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_wish_toggle(self, client):
        created = (await client.post("/tracker/wishes", json={"title": "温泉", "icon": "♨️"})).json()
        resp = await client.post(f"/tracker/wishes/{created['id']}/toggle")
        assert resp.status_code == 200
        toggled = next(w for w in resp.json() if w["id"] == created["id"])
        assert toggled["completed"] is True

    @pytest.mark.asyncio
    async def test_toggle_unknown_404(self, client):
        assert (await client.post("/tracker/wishes/missing/toggle")).status_code == 404


class TestStartup:
    @pytest.mark.asyncio
    async def test_fresh_app_serves_stored_data(self, store):
        await store.insert("weights", {"user": "じぃじ", "weight": 70.0, "recorded_at": "2024-02-14"})
        household = Household(store, today=lambda: TODAY)
        with patch("app.main.build_household", return_value=household):
            async with app.router.lifespan_context(app):
                transport = ASGITransport(app=app)
                async with AsyncClient(transport=transport, base_url="http://test") as ac:
                    summary = (await ac.get("/tracker/users/jiiji/summary")).json()
                    quests = (await ac.get("/tracker/quests")).json()
        assert summary["weights"] == [{"date": "2024-02-14", "weight": 70.0}]
        # Stored rows carry store-issued ids, not the seed's local ones.
        assert len(quests) == 6
        assert not {q["id"] for q in quests} & {"q1", "q2", "q3", "q4", "q5", "q6"}
