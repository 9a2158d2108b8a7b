"""Configuration settings for the babylog server."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment (``BABYLOG_*``)."""

    # Storage
    database_path: str = "babylog.db"

    # App
    debug: bool = False
    log_level: str = "INFO"
    # Require the upstream proxy's X-Owner-Id header to match the path owner
    trust_owner_header: bool = False
    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    class Config:
        env_prefix = "BABYLOG_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
