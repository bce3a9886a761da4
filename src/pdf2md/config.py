"""Runtime configuration settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Settings read from ``PDF2MD_*`` environment variables or ``.env``."""

    # AI service
    gemini_model: str = "gemini-2.5-flash"
    gemini_cli: str = "gemini"
    request_timeout: float = 300.0

    # Conversion defaults
    dpi: int = 150
    max_pages_per_window: int = 50
    concurrency: int = 3

    log_level: str = "WARNING"

    class Config:
        env_prefix = "PDF2MD_"
        env_file = ".env"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
