"""Settings for the event intake API.

Values come from environment variables (or a local .env file).
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # -------------------------------------------------------------------------
    # DATABASE
    # -------------------------------------------------------------------------
    DATABASE_URL: str = "sqlite:///./intake.db"

    # -------------------------------------------------------------------------
    # AUTH
    # -------------------------------------------------------------------------
    SCRAPER_API_SECRET: Optional[SecretStr] = None
    # Migration + upload routes; falls back to SCRAPER_API_SECRET
    ADMIN_API_SECRET: Optional[SecretStr] = None

    # -------------------------------------------------------------------------
    # OWNED STORAGE
    # -------------------------------------------------------------------------
    STORAGE_ROOT: Path = Path("./storage")
    STORAGE_BUCKET: str = "event-images"
    STORAGE_PUBLIC_BASE_URL: str = ""

    # -------------------------------------------------------------------------
    # MIGRATION
    # -------------------------------------------------------------------------
    DOWNLOAD_TIMEOUT_S: float = Field(15.0, gt=0)
    DOWNLOAD_MAX_BYTES: int = Field(5 * 1024 * 1024, gt=0)
    MIGRATION_CONCURRENCY: int = Field(4, ge=1, le=32)
    MIGRATION_DEFAULT_LIMIT: int = Field(10, ge=1)

    # -------------------------------------------------------------------------
    # ENTITY RESOLUTION
    # -------------------------------------------------------------------------
    VENUE_SEARCH: Literal["trigram", "sequence", "none"] = "trigram"
    VENUE_MATCH_THRESHOLD: float = Field(0.70, ge=0, le=1)

    DEFAULT_TIMEZONE: str = "America/Chicago"
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def admin_secret(self) -> Optional[str]:
        secret = self.ADMIN_API_SECRET or self.SCRAPER_API_SECRET
        return secret.get_secret_value() if secret else None

    def scraper_secret(self) -> Optional[str]:
        return self.SCRAPER_API_SECRET.get_secret_value() if self.SCRAPER_API_SECRET else None


@lru_cache
def get_settings() -> Settings:
    return Settings()
