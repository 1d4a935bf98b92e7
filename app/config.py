from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Unset → local-only mode on the seeded in-memory store.
    database_url: str | None = None
    default_tz: str = "Asia/Tokyo"
    log_level: str = "INFO"

    # Points
    record_bonus_points: int = 10  # Awarded per weight record call (not deduplicated by date)
    level_step_points: int = 100  # Level up when points >= level * this
    initial_level: int = 5

    # History display window (quest/reward completions)
    history_window: int = 20

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
