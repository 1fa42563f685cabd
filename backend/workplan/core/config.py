"""Application configuration managed via environment variables."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Work Plan Engine"
    debug: bool = False
    log_level: str = "INFO"
    repair_log_level: str | None = None
    database_url: str = "sqlite:///./workplans.db"
    acceptance_endpoint_url: str = "http://localhost:3000/api/tasks/create-session"
    acceptance_timeout_seconds: float = 60.0
    repair_max_attempts: int = 5
    repair_backoff_base_ms: int = 1000
    repair_parse_backoff_base_ms: int = 2000
    rate_limit_backoff_floor_ms: int = 10_000
    overload_backoff_floor_ms: int = 15_000
    frog_late_policy: str = "warn"
    default_work_start: str = "09:00"
    default_work_end: str = "17:00"
    openai_model: str = "gpt-4o"
    opik_enabled: bool = False
    opik_api_key: str | None = None
    opik_project: str = "workplan-engine"


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()


settings = get_settings()
