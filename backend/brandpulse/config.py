import logging
from pydantic_settings import BaseSettings
from pydantic import model_validator, ConfigDict
from functools import lru_cache

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment: "development" or "production"
    environment: str = "development"

    database_url: str = "postgresql+asyncpg://localhost/brandpulse"
    database_ssl: bool = False

    @model_validator(mode="before")
    @classmethod
    def _fix_database_url_for_asyncpg(cls, values: dict) -> dict:
        """Hosted Postgres gives postgresql://, we need postgresql+asyncpg:// for asyncpg."""
        if not isinstance(values, dict):
            return values
        url = values.get("database_url") or ""
        if url.startswith("postgresql://") and "+asyncpg" not in url:
            values["database_url"] = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return values
    secret_key: str = "change-me-in-production"
    cors_origins: str = "http://localhost:3000,http://localhost:5173"
    encryption_key: str = ""  # Fernet key for review source credentials
    cron_secret: str = ""

    # AI provider keys; model ids are "provider:model"
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    sentiment_model_id: str = "openai:gpt-4o-mini"
    summary_model_id: str = "openai:gpt-4o-mini"
    sentiment_batch_size: int = 20
    ai_summary_max_tokens: int = 500
    ai_summary_review_count: int = 100
    ai_summary_validity_hours: int = 24

    # Review platforms
    google_places_api_key: str = ""
    facebook_graph_api_version: str = "v19.0"
    trustpilot_api_key: str = ""
    platform_timeout_seconds: float = 30.0

    # Upstash Redis (dashboard + summary cache)
    upstash_redis_rest_url: str = ""
    upstash_redis_rest_token: str = ""
    dashboard_cache_ttl_seconds: int = 600
    summary_cache_ttl_seconds: int = 86400

    # Review sync pipeline
    scheduler_enabled: bool = False
    daily_sync_hour: int = 3
    daily_sync_minute: int = 0
    sync_timezone: str = "Europe/Warsaw"
    sync_worker_pool_size: int = 4
    manual_sync_cooldown_hours: int = 24
    stale_job_timeout_minutes: int = 120
    sync_error_max_length: int = 1000
    initial_import_days: int = 90

    @model_validator(mode="after")
    def _validate_production_settings(self) -> "Settings":
        """Enforce that critical secrets are set when running in production."""
        if self.is_production:
            if self.secret_key == "change-me-in-production":
                raise ValueError(
                    "SECRET_KEY must be set to a secure value in production. "
                    "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
                )
            if not self.encryption_key:
                raise ValueError(
                    "ENCRYPTION_KEY must be set in production. "
                    "Generate one with: python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""
                )
            if not self.database_url or "localhost" in self.database_url:
                logger.warning("DATABASE_URL appears to point at localhost in production.")
        if self.sync_worker_pool_size < 1:
            raise ValueError("SYNC_WORKER_POOL_SIZE must be at least 1")
        if self.sentiment_batch_size < 1:
            raise ValueError("SENTIMENT_BATCH_SIZE must be at least 1")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def cors_origin_list(self) -> list[str]:
        origins = [o.strip() for o in self.cors_origins.split(",") if o.strip()]
        return origins or ["http://localhost:3000", "http://localhost:5173"]


@lru_cache
def get_settings() -> Settings:
    return Settings()
