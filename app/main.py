import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.config import settings
from app.tracker.router import router as tracker_router
from app.tracker.session import build_household

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    household = build_household()
    await household.load(household.active_user)
    app.state.household = household
    yield


app = FastAPI(title="WeighIn", version="0.1.0", lifespan=lifespan)
app.include_router(tracker_router)


@app.get("/")
async def root() -> dict:
    return {
        "status": "ok",
        "docs": "/docs",
        "health": "/health",
        "tracker": {
            "users": "/tracker/users",
            "active_user": "/tracker/active-user",
            "summary": "/tracker/users/{user}/summary",
            "weights": "/tracker/users/{user}/weights",
            "goals": "/tracker/users/{user}/goals",
            "complete_quest": "/tracker/users/{user}/quests/{id}/complete",
            "redeem_reward": "/tracker/users/{user}/rewards/{id}/redeem",
            "quests": "/tracker/quests",
            "rewards": "/tracker/rewards",
            "wishes": "/tracker/wishes",
        },
    }


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
