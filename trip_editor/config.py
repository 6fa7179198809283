from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    openai_api_key: str | None = None
    openai_base_url: str | None = None
    openai_model: str = "gpt-4o-mini"

    mapbox_access_token: str | None = None
    trip_api_base_url: str | None = None
    trip_api_user_id: str | None = None

    history_limit: int = 20
    save_debounce_sec: float = 1.0
    save_max_retries: int | None = None
    llm_timeout_sec: int = 60
    geocode_timeout_sec: float = 10.0
    llm_max_retries: int = 2
    retry_backoff_sec: float = 1.5
    chat_timeout_sec: int = 120
    session_idle_sec: float = 3600


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
