from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    debug: bool = Field(False, alias="GEORESOLVE_DEBUG")

    catalog_base_url: str = Field(
        "http://localhost:8000/api/v1", alias="GEORESOLVE_CATALOG_BASE_URL"
    )
    catalog_api_token: str | None = Field(None, alias="GEORESOLVE_CATALOG_API_TOKEN")
    catalog_timeout: float = Field(10.0, alias="GEORESOLVE_CATALOG_TIMEOUT")
    catalog_cache_size: int = Field(4096, alias="GEORESOLVE_CATALOG_CACHE_SIZE")

    # Address resolution
    lookup_timeout: float = Field(10.0, alias="GEORESOLVE_LOOKUP_TIMEOUT")
    debounce_seconds: float = Field(0.4, alias="GEORESOLVE_DEBOUNCE_SECONDS")
    settlement_page_limit: int = Field(
        1000, alias="GEORESOLVE_SETTLEMENT_PAGE_LIMIT"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @field_validator("catalog_base_url", mode="before")
    def _strip_base_url(cls, value: str) -> str:
        if isinstance(value, str):
            return value.strip().rstrip("/")
        return value

    @field_validator("debounce_seconds")
    def _check_debounce_window(cls, value: float) -> float:
        if not 0.3 <= value <= 0.5:
            raise ValueError("debounce window must be between 0.3 and 0.5 seconds")
        return value

    @field_validator("lookup_timeout", "catalog_timeout")
    def _check_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts must be positive")
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()  # type: ignore[call-arg]
