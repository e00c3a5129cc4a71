"""
Configuration management for the plan execution engine.

One pydantic-settings model read from the environment and an optional .env
file. Values are validated once, when get_settings() is first called.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Engine, storage and server settings.

    Variables are prefixed with PLANEXEC_ (PLANEXEC_STEP_TIMEOUT_MS=5000).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PLANEXEC_",
        case_sensitive=False,  # PLANEXEC_DATABASE_URL == planexec_database_url
        extra="ignore",
    )

    # ===================
    # Storage Configuration
    # ===================
    # "sql" keeps sessions in the database below, "file" writes one JSON
    # document per session under data_dir/execution-sessions/
    storage_backend: Literal["sql", "file"] = "sql"
    database_url: str = "sqlite+aiosqlite:///./.data/planexec.db"
    data_dir: str = "./.data"

    # ===================
    # Executor Configuration
    # ===================
    # Per-step timeout for function calls in milliseconds. 0 disables it.
    # User input steps are never timed.
    step_timeout_ms: int = 30000

    # ===================
    # Server Configuration
    # ===================
    server_host: str = "0.0.0.0"
    server_port: int = 8002

    # ===================
    # Logging
    # ===================
    log_level: str = "INFO"
    log_json: bool = False

    @property
    def data_path(self) -> Path:
        """Get the data directory as an absolute Path object."""
        return Path(self.data_dir).resolve()


@lru_cache
def get_settings() -> Settings:
    """
    Process-wide settings, loaded on first use.

    Call get_settings.cache_clear() in tests after changing the environment.

    Usage:
        settings = get_settings()
        print(settings.database_url)
    """
    return Settings()
