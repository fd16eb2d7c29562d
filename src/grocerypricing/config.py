"""Application configuration using pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database (price cache)
    database_url: str = "postgresql+asyncpg://localhost/grocerypricing"

    # Redis (Celery broker)
    redis_url: str = "redis://localhost:6379/0"

    # Upstream price source (chat-completions API)
    perplexity_api_key: str = ""
    perplexity_base_url: str = "https://api.perplexity.ai"
    perplexity_model: str = "sonar"
    perplexity_max_tokens: int = 250
    upstream_timeout: float = 9.5  # seconds, production
    upstream_timeout_dev: float = 60.0  # seconds, local development
    pricing_batch_size: int = 2

    # Upstream rate limiting
    rate_limit_max_requests: int = 30
    rate_limit_window_seconds: float = 60.0

    # Price cache
    cache_ttl_hours: float = 48.0
    cache_stale_hours: float = 72.0

    # Store directory (Google Places, optional)
    google_places_api_key: str = ""
    places_base_url: str = "https://maps.googleapis.com/maps/api/place"
    places_timeout: float = 5.0
    places_max_retries: int = 2

    # Application
    environment: str = "development"
    log_level: str = "INFO"
    allowed_origins: str = "http://localhost:3000,http://localhost:8000"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def effective_upstream_timeout(self) -> float:
        """Upstream timeout for the current environment."""
        return self.upstream_timeout_dev if self.is_development else self.upstream_timeout


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
