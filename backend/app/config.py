from typing import List, Optional
import json

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "SnippetEngagement"
    app_env: str = "dev"
    log_level: str = "INFO"
    # level for the per-event engagement loggers, e.g. WARNING to keep only failures
    engagement_log_level: Optional[str] = None

    database_url: str = "sqlite:///./data/app.db"

    # read raw string from env (works with comma-separated values)
    cors_origins: str = ""

    # dedup / throttle
    dedup_backend: str = "memory"  # "memory" | "sqlite"
    play_start_dedup_seconds: float = 60.0
    toggle_throttle_seconds: float = 3.0
    dedup_sweep_interval_seconds: float = 300.0
    dedup_sweep_threshold: int = 100
    dedup_max_entries: int = 50000

    # variant allocation
    allocation_sticky: bool = True

    # trending
    trending_window_hours: int = 48
    trending_half_life_hours: float = 12.0
    trending_refresh_interval_seconds: float = 300.0  # 0 disables the background refresh
    new_rail_days: int = 7
    underground_view_threshold: int = 500
    max_per_creator: int = 2
    candidate_pool_factor: int = 5

    @property
    def cors_origins_list(self) -> List[str]:
        s = (self.cors_origins or "").strip()
        if not s:
            return []
        if s.startswith("["):
            # also accept JSON list
            return [str(x) for x in json.loads(s)]
        return [part.strip() for part in s.split(",") if part.strip()]


settings = Settings()
