"""Application configuration powered by Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Strongly typed application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    environment: Literal["dev", "staging", "prod"] = Field(default="dev")
    project_name: str = Field(default="Financial Data Ingestion API")
    version: str = Field(default="0.1.0")

    structured_db_url: str = Field(default="sqlite+aiosqlite:///./data/ingestion.db")
    artifacts_dir: str = Field(default="./data/artifacts")

    max_upload_mb: int = Field(default=40, ge=1)
    detection_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    auto_select_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    default_currency: str = Field(default="EUR", min_length=3, max_length=3)
    duplicate_window_hours: int = Field(default=24, ge=0)
    seed_builtin_templates: bool = Field(default=True)

    # token -> "user_id:role"
    api_tokens: dict[str, str] = Field(default_factory=dict)

    openai_api_key: str | None = Field(default=None, min_length=1)
    openai_api_base: str | None = None
    normalization_model: str = Field(default="gpt-4o-mini")
    normalization_temperature: float = Field(default=0.0, ge=0.0, le=2.0)

    langsmith_api_key: str | None = None
    langsmith_endpoint: str | None = None
    langsmith_project: str = Field(default="financial-data-ingestion")
    enable_tracing: bool = Field(default=False)

    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="json")

    cors_allowed_origins: list[str] = Field(default_factory=list)

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024


@lru_cache
def get_settings() -> AppSettings:
    """Provide a cached singleton settings instance."""

    return AppSettings()
