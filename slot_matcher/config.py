"""Service configuration read from the environment."""

import os
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field

from slot_matcher.timezones import DEFAULT_TIMEZONE


class Settings(BaseModel):
    """Runtime settings; see from_env for the variable names."""

    organization_id: int = 85685
    default_timezone: str = DEFAULT_TIMEZONE
    window_days: int = Field(default=60, ge=1, le=365)
    csv_path: Optional[str] = None
    database_url: Optional[str] = None
    cache_ttl_seconds: Optional[int] = Field(default=900, ge=0)
    rate_limit_per_minute: int = Field(default=10, ge=1)
    trust_proxy_headers: bool = False
    log_level: str = "INFO"
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.environ
        ttl = env.get("AVAILABILITY_CACHE_TTL_SECONDS", "900")
        return cls(
            organization_id=int(env.get("ORGANIZATION_ID", "85685")),
            default_timezone=env.get("DEFAULT_TIMEZONE", DEFAULT_TIMEZONE),
            window_days=int(env.get("AVAILABILITY_WINDOW_DAYS", "60")),
            csv_path=env.get("AVAILABILITY_CSV_PATH") or None,
            database_url=env.get("AVAILABILITY_DATABASE_URL") or None,
            # Empty value disables time-based expiry; day rollover still applies
            cache_ttl_seconds=int(ttl) if ttl else None,
            rate_limit_per_minute=int(env.get("RATE_LIMIT_PER_MINUTE", "10")),
            trust_proxy_headers=env.get("TRUST_PROXY_HEADERS", "false").lower() in ("1", "true", "yes"),
            log_level=env.get("LOG_LEVEL", "INFO"),
            openai_api_key=env.get("OPENAI_API_KEY", ""),
            openai_base_url=env.get("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/"),
            openai_model=env.get("OPENAI_MODEL", "gpt-4o-mini"),
        )


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, read once."""
    return Settings.from_env()
