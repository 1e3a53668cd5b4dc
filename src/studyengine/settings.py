"""Environment-driven configuration."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STUDYENGINE_", env_file=".env", extra="ignore")

    # Base URL of the assignment/module service, e.g. https://school.example.com/api
    api_base_url: str = Field(default="http://localhost:3000/api")
    api_token: str | None = Field(default=None)
    http_timeout_seconds: float = Field(default=10.0, gt=0)

    data_dir: Path = Field(default=Path(".studyengine"))
    log_level: str = Field(default="WARNING")

    @property
    def db_path(self) -> Path:
        return self.data_dir / "progress.db"


def load_settings() -> Settings:
    """Read settings from the environment and an optional .env file."""
    return Settings()
