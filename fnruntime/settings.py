"""Runtime settings loaded from environment variables."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_MAX_SIZE = "100kb"


class Settings(BaseSettings):
    """Environment-driven configuration shared by the server and the supervisor."""

    # Body parsing
    max_raw_size: str = Field(default=DEFAULT_MAX_SIZE, alias="MAX_RAW_SIZE")
    max_json_size: str = Field(default=DEFAULT_MAX_SIZE, alias="MAX_JSON_SIZE")
    max_text_size: str = Field(default=DEFAULT_MAX_SIZE, alias="MAX_TEXT_SIZE")
    max_form_size: str = Field(default=DEFAULT_MAX_SIZE, alias="MAX_FORM_SIZE")
    raw_body: bool = Field(default=False, alias="RAW_BODY")
    urlencoded_extended: bool = Field(default=True, alias="URLENCODED_EXTENDED")

    # HTTP server
    http_port: int = Field(default=3000, alias="http_port")
    http_host: str = Field(default="0.0.0.0", alias="HTTP_HOST")
    environment: str = Field(
        default="production",
        validation_alias=AliasChoices("APP_ENV", "NODE_ENV"),
    )

    # Function
    handler_path: Path | None = Field(default=None, alias="HANDLER_PATH")
    handler_name: str = Field(default="handle", alias="HANDLER_NAME")
    exec_timeout: float | None = Field(default=None, alias="EXEC_TIMEOUT")

    # Observability
    log_level: str = Field(default="info", alias="LOG_LEVEL")
    metrics_enabled: bool = Field(default=False, alias="METRICS_ENABLED")

    # Supervisor
    restart_delay: float = Field(default=3.0, alias="RESTART_DELAY")
    stop_timeout: float = Field(default=30.0, alias="STOP_TIMEOUT")
    reload_debounce: float = Field(default=0.5, alias="RELOAD_DEBOUNCE")
    watch_path: Path = Field(default_factory=Path.cwd, alias="WATCH_PATH")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    @property
    def is_development(self) -> bool:
        return self.environment.strip().lower() == "development"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()
