from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_name: str = "Atlas Agent"
    debug: bool = False

    # Generative provider
    llm_provider: str = "openai"
    openai_api_key: str = ""
    gemini_api_key: str = ""
    llm_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.7
    llm_max_tokens: int = 800
    generation_timeout_seconds: float = 10.0

    # Batch generation (provider rate limits)
    batch_max_concurrent: int = 3
    batch_concurrency_cap: int = 20
    max_batch_size: int = 20
    batch_chunk_delay_seconds: float = 0.1

    # Progress persistence: "memory" | "supabase"
    progress_store: str = "memory"
    supabase_url: str = ""
    supabase_service_key: str = ""

    # Telemetry
    enable_generation_telemetry_db: bool = False

    # Caller-boundary age bounds
    min_age: int = 8
    max_age: int = 100

    # CORS
    frontend_url: str = "http://localhost:5173"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    return Settings()
