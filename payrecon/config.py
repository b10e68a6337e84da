# payrecon/config.py

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    app_name: str = "Payrecon API"
    app_env: str = "development"
    debug: bool = True
    frontend_url: str = "http://localhost:3000"
    api_url: str = "http://localhost:8000"

    # Supabase
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_service_role_key: str = ""

    # Stripe (webhook ingestion only)
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""

    # Matching policy
    auto_match_threshold: int = 90
    review_threshold: int = 75
    auto_match_gap: int = 10
    conflict_gap: int = 5
    top_candidates: int = 5
    entity_alias_min_score: int = 85

    # Payments
    default_currency: str = "ARS"

    # Batch processing
    write_chunk_size: int = 500
    batch_max_workers: int = 4

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
