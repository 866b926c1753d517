"""
Configuration module for Project Memory MCP Server.

Uses pydantic-settings for configuration management with environment variable support.
Environment variables use PROJECT_MEMORY_ prefix (e.g., PROJECT_MEMORY_STORAGE_PATH).
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _get_default_storage_path() -> Path:
    """Get default storage root for the document collections."""
    return Path.home() / ".project-memory" / "collections"


class Settings(BaseSettings):
    """Application settings with environment variable support.

    Environment variables:
    - PROJECT_MEMORY_STORAGE_PATH: Root directory holding the collections
    - PROJECT_MEMORY_DEFAULT_PAGE_SIZE: Page size used when a query sets no limit
    - PROJECT_MEMORY_MAX_PAGE_SIZE: Largest page size accepted from tool calls
    - PROJECT_MEMORY_LOG_LEVEL: Minimum log level (DEBUG, INFO, WARNING, ...)
    """

    storage_path: Path = Field(default_factory=_get_default_storage_path)
    default_page_size: int = Field(default=50, gt=0)
    max_page_size: int = Field(default=100, gt=0)
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="PROJECT_MEMORY_")


# Global settings instance
settings = Settings()

# Names of the collections created at startup
COLLECTIONS = ("projects", "entities", "observations", "relations")
