"""
Centralised application configuration.
"""
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    app_name: str = "Ghardaar CRM"
    debug: bool = False

    # Database
    database_url: str = "sqlite:///./crm.db"

    # CRM grid
    crm_page_size: int = 100

    # CSV import
    import_preview_rows: int = 5

    # Extra CORS origins (JSON list in the environment)
    cors_origins: List[str] = []

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Return the cached application settings."""
    return Settings()
