"""Application Configuration — environment-driven settings via pydantic-settings.

Invariants:
    - All secrets come from environment variables (never hardcoded)
    - get_settings() is cached (lru_cache) — single instance per process
    - Linear API key may be absent here; the client then falls back to the KV store

Design Decisions:
    - Cache TTLs live here so tests can shorten them without patching services
    - superadmin_emails_fallback is a comma-separated string, parsed by
      superadmin_list() so an empty env var yields an empty list
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Database
    database_url: str = (
        "postgresql+asyncpg://portal:portal@db:5432/portal"
    )

    @field_validator("database_url", mode="before")
    @classmethod
    def convert_postgres_url(cls, v: str) -> str:
        """Hosted Postgres provides postgresql:// but asyncpg needs postgresql+asyncpg://."""
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Linear
    linear_api_key: str | None = None
    linear_api_url: str = "https://api.linear.app/graphql"
    linear_timeout_seconds: int = 15
    linear_max_retries: int = 3
    linear_base_delay_ms: int = 500
    linear_max_delay_ms: int = 8_000

    # Access control
    superadmin_emails_fallback: str = ""
    internal_email_domains: list[str] = ["@teifi.com", "@teifi.ca"]

    # Cache TTLs
    enriched_teams_cache_ttl_seconds: int = 30
    ownership_cache_ttl_seconds: int = 300
    superadmin_cache_ttl_seconds: int = 300
    superadmin_audit_cache_ttl_seconds: int = 300
    issue_detail_cache_ttl_seconds: int = 120

    # Kanban
    drag_throttle_seconds: float = 1.0

    # API
    app_version: str = "2.1.0"
    environment: str = "production"
    cors_origins: list[str] = ["http://localhost:5173"]

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"

    def superadmin_list(self) -> list[str]:
        """Fallback superadmin emails, trimmed and lowercased."""
        return [
            e.strip().lower()
            for e in self.superadmin_emails_fallback.split(",")
            if e.strip()
        ]


@lru_cache
def get_settings() -> Settings:
    return Settings()
