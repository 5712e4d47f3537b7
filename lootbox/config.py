from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ==========================================================================
    # MongoDB Configuration
    # ==========================================================================
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "lootbox"

    # ==========================================================================
    # Redis Configuration
    # ==========================================================================
    redis_url: str = "redis://localhost:6379/0"

    # ==========================================================================
    # Backend Client Configuration
    # ==========================================================================
    backend_base_url: str = "http://localhost:8000"
    backend_timeout_seconds: float = 10.0
    api_v1_str: str = "/api/v1"

    # ==========================================================================
    # Admin API Configuration
    # ==========================================================================
    admin_api_secret: str = "dev-admin-secret-change-in-production"

    # ==========================================================================
    # Economy
    # ==========================================================================
    max_reward_value: int = 10_000_000
    free_cooldown_seconds: int = 24 * 60 * 60
    ad_cooldown_seconds: int = 10 * 60
    open_lock_ttl_seconds: int = 15

    # ==========================================================================
    # Rate Limiting
    # ==========================================================================
    rate_limit_max_attempts: int = 10
    rate_limit_window_seconds: float = 60.0
    rate_limit_block_seconds: float = 300.0

    # ==========================================================================
    # Anomaly Detection
    # ==========================================================================
    anomaly_window_seconds: float = 10 * 60
    anomaly_frequency_threshold: int = 20
    anomaly_high_value_threshold: int = 50_000

    # ==========================================================================
    # Roulette Generation (backend)
    # ==========================================================================
    roulette_length: int = 50
    roulette_winner_min: int = 35

    # ==========================================================================
    # Reveal Animation (client)
    # ==========================================================================
    animation_opening_seconds: float = 1.0
    animation_scroll_seconds: float = 4.0
    animation_settle_seconds: float = 1.0
    roulette_item_width: int = 128
    roulette_item_margin: int = 8
    roulette_viewport_width: int = 1280

    # ==========================================================================
    # Application Settings
    # ==========================================================================
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse comma-separated CORS origins into list."""
        if self.cors_origins == "*":
            return ["*"]
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", case_sensitive=False
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to avoid re-reading env vars on every call.
    """
    return Settings()


# Convenience export
settings = get_settings()
