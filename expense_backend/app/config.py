"""Runtime settings for the expense API, read from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

DATABASE_URL_ENV = "DATABASE_URL"
AZURE_CLIENT_ID_ENV = "AZURE_CLIENT_ID"
OPENAI_ENDPOINT_ENV = "OPENAI_ENDPOINT"
OPENAI_MODEL_NAME_ENV = "OPENAI_MODEL_NAME"
OPENAI_API_VERSION_ENV = "OPENAI_API_VERSION"
SEARCH_ENDPOINT_ENV = "SEARCH_ENDPOINT"
APP_INSIGHTS_ENV = "APPLICATIONINSIGHTS_CONNECTION_STRING"
RUN_MIGRATIONS_ENV = "RUN_MIGRATIONS_ON_STARTUP"
USE_STORED_PROCEDURES_ENV = "USE_STORED_PROCEDURES"
CHAT_MAX_TOOL_ROUNDS_ENV = "CHAT_MAX_TOOL_ROUNDS"
LOG_LEVEL_ENV = "LOG_LEVEL"

DEFAULT_OPENAI_MODEL_NAME = "gpt-4o"
DEFAULT_OPENAI_API_VERSION = "2024-06-01"
DEFAULT_CHAT_MAX_TOOL_ROUNDS = 8


def _read_optional_env(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None:
        return None
    stripped = raw.strip()
    return stripped or None


def _read_bool_env(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def read_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value < 0:
        raise ValueError(f"{name} must be non-negative")
    return value


@dataclass(frozen=True)
class AppSettings:
    """Snapshot of the configuration the web app runs with."""

    database_url: Optional[str]
    azure_client_id: Optional[str]
    openai_endpoint: Optional[str]
    openai_model_name: str
    openai_api_version: str
    search_endpoint: Optional[str]
    app_insights_connection_string: Optional[str]
    run_migrations_on_startup: bool
    use_stored_procedures: Optional[bool]
    chat_max_tool_rounds: int
    log_level: str

    @property
    def genai_enabled(self) -> bool:
        return bool(self.openai_endpoint)

    @classmethod
    def from_env(cls) -> "AppSettings":
        raw_procedures = os.getenv(USE_STORED_PROCEDURES_ENV)
        return cls(
            database_url=_read_optional_env(DATABASE_URL_ENV),
            azure_client_id=_read_optional_env(AZURE_CLIENT_ID_ENV),
            openai_endpoint=_read_optional_env(OPENAI_ENDPOINT_ENV),
            openai_model_name=_read_optional_env(OPENAI_MODEL_NAME_ENV)
            or DEFAULT_OPENAI_MODEL_NAME,
            openai_api_version=_read_optional_env(OPENAI_API_VERSION_ENV)
            or DEFAULT_OPENAI_API_VERSION,
            search_endpoint=_read_optional_env(SEARCH_ENDPOINT_ENV),
            app_insights_connection_string=_read_optional_env(APP_INSIGHTS_ENV),
            run_migrations_on_startup=_read_bool_env(RUN_MIGRATIONS_ENV, False),
            # None lets the gateway pick based on the database dialect.
            use_stored_procedures=(
                None
                if raw_procedures is None
                else _read_bool_env(USE_STORED_PROCEDURES_ENV)
            ),
            chat_max_tool_rounds=max(
                read_int_env(CHAT_MAX_TOOL_ROUNDS_ENV, DEFAULT_CHAT_MAX_TOOL_ROUNDS), 1
            ),
            log_level=(_read_optional_env(LOG_LEVEL_ENV) or "INFO").upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """Return the process-wide settings, read once from the environment."""
    return AppSettings.from_env()
