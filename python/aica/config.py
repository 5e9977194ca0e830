"""Application settings loaded from environment variables.

Server Configuration:
    AICA_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: Database connection string (required for the server)
    AICA_MAX_PAGE_SIZE: Upper bound for GET /conversations page size
    AICA_LOG_JSON: Emit JSON logs (default true)

Client Configuration:
    AICA_SERVER_URL: Base URL of the blob store API
    AICA_DATA_DIR: Directory holding the mirror snapshot and sync cursors
    AICA_HTTP_TIMEOUT_S: Timeout for each HTTP call
    AICA_SYNC_PAGE_SIZE: Rows requested per sync page

Server and client settings are separate classes so that the client never
needs DATABASE_URL and the server never reads client paths.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

# Hard ceiling on rows per page, shared by server and client.
MAX_PAGE_SIZE = 100


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Server configuration.

    Validation rules:
    - DATABASE_URL is always required
    - AICA_MAX_PAGE_SIZE must be within [1, 100]
    """

    aica_env: Environment = Field(default=Environment.LOCAL, alias="AICA_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]
    max_page_size: int = Field(default=MAX_PAGE_SIZE, alias="AICA_MAX_PAGE_SIZE")
    log_json: bool = Field(default=True, alias="AICA_LOG_JSON")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @field_validator("max_page_size")
    @classmethod
    def validate_max_page_size(cls, v: int) -> int:
        if not 1 <= v <= MAX_PAGE_SIZE:
            raise ValueError(f"AICA_MAX_PAGE_SIZE must be between 1 and {MAX_PAGE_SIZE}")
        return v


class ClientSettings(BaseSettings):
    """Client configuration used by the sync session and the CLI."""

    server_url: str = Field(default="http://localhost:8000", alias="AICA_SERVER_URL")
    data_dir: Path = Field(default=Path("~/.aica"), alias="AICA_DATA_DIR")
    http_timeout_s: float = Field(default=30.0, alias="AICA_HTTP_TIMEOUT_S")
    sync_page_size: int = Field(default=MAX_PAGE_SIZE, alias="AICA_SYNC_PAGE_SIZE")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @field_validator("sync_page_size")
    @classmethod
    def validate_sync_page_size(cls, v: int) -> int:
        if not 1 <= v <= MAX_PAGE_SIZE:
            raise ValueError(f"AICA_SYNC_PAGE_SIZE must be between 1 and {MAX_PAGE_SIZE}")
        return v

    @property
    def resolved_data_dir(self) -> Path:
        """Return data_dir with ~ expanded."""
        return self.data_dir.expanduser()

    @property
    def normalized_server_url(self) -> str:
        """Return server URL with trailing slash stripped."""
        return self.server_url.rstrip("/")


@lru_cache
def get_settings() -> Settings:
    """Get cached server settings.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


@lru_cache
def get_client_settings() -> ClientSettings:
    """Get cached client settings."""
    return ClientSettings()


def clear_settings_cache() -> None:
    """Clear the settings caches. Useful for testing."""
    get_settings.cache_clear()
    get_client_settings.cache_clear()
