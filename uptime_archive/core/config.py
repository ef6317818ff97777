from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_USER_AGENT = "uptime-archive-monitor/1.0"


class Settings(BaseSettings):
    output_dir: Path = Path("status-data")
    endpoints_file: Path | None = None
    maintenance_file: Path | None = None
    hot_window_days: int = Field(default=14, ge=1)
    summary_window_days: int = Field(default=90, ge=1)
    store_backend: Literal["local", "git"] = "local"
    git_remote: str | None = "origin"
    git_branch: str = "status-data"
    git_author_name: str = "uptime-archive"
    git_author_email: str = "uptime-archive@localhost"
    commit_max_attempts: int = Field(default=4, ge=1)
    commit_backoff_base_sec: float = Field(default=1.0, ge=0)
    commit_backoff_cap_sec: float = Field(default=5.0, ge=0)
    user_agent: str = DEFAULT_USER_AGENT
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # ENV-only configuration; the CLI passes its flags as init kwargs
    model_config = SettingsConfigDict(env_prefix="UPTIME_")

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value

    @property
    def maintenance_path(self) -> Path:
        return self.maintenance_file or self.output_dir / "maintenance.json"


@lru_cache
def get_settings() -> Settings:
    return Settings()
