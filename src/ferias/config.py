"""Configuration settings for the vacation suggester."""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings, read from ``FERIAS_*`` environment variables or ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="FERIAS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Hosted holiday table (PostgREST)
    supabase_url: str = ""
    supabase_key: str = ""
    holiday_table: str = "feriados"

    # Fetch budget
    fetch_timeout: float = 10.0
    fetch_retries: int = 2

    # Caching
    holiday_cache_ttl: float = 7 * 24 * 60 * 60
    suggestion_ttl: float = 5 * 60
    cache_file: str | None = None

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)
