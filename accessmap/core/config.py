"""
AccessMap - Configuration Management
Centralized configuration using pydantic-settings.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: str = "development"
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite:///./accessmap.db"
    db_echo: bool = False

    # API Settings
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    public_base_url: str = ""

    # Geospatial
    duplicate_merge_radius_m: float = 20.0
    nearby_default_radius_m: float = 1000.0

    # Expiry reaper
    reaper_enabled: bool = True
    reaper_interval_minutes: int = 60
    removed_retention_days: int = 7

    # Concurrency
    mutation_retry_attempts: int = 3

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
