from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "dev"

    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_model: str = "gemini-1.5-flash"

    ai_timeout_seconds: float = 30.0
    ai_max_attempts: int = 3
    ai_backoff_base_seconds: float = 0.5
    ai_backoff_max_seconds: float = 8.0

    ocr_lang: str = "eng"
    ocr_pool_size: int = 2
    ocr_timeout_seconds: float = 60.0

    extraction_timeout_seconds: float = 30.0

    # Heuristics are the guaranteed-success path when the AI call fails.
    fallback_to_heuristics: bool = True


settings = Settings()
