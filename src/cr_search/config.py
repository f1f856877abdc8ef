"""Application configuration and settings."""

from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Application
    app_name: str = "Content Repository Search Indexer"
    app_version: str = "0.1.0"

    # Logging
    log_level: str = "INFO"

    # Qdrant Configuration
    qdrant_url: str = "http://localhost:6333"
    qdrant_api_key: str | None = None
    qdrant_prefer_grpc: bool = False
    qdrant_local_mode: bool = False  # Use the embedded in-memory engine
    qdrant_timeout: int = 30  # Timeout in seconds
    qdrant_alias_registry: str = "search_alias_registry"

    # Index naming
    index_name: str = "contentrepository"  # Logical prefix, also the main alias

    # Indexing
    index_all_workspaces: bool = False
    batch_size_elements: int = 500  # Bulk request parts before an automatic flush
    batch_size_octets: int = 40_000_000  # Payload bytes before an automatic flush
    bulk_error_log_directory: Path = Path("Data/Logs/Search")

    # Content source for the CLI
    content_graph_path: Path | None = None

    # Node types taken into account by full rebuilds ("*" is the default)
    node_types_indexing: dict[str, bool] = {"*": True}

    @field_validator("index_name")
    @classmethod
    def _validate_index_name(cls, value: str) -> str:
        # Index names are "<prefix>-<dimensionsHash>-<postfix>"
        if not value or "-" in value:
            raise ValueError("index_name must be non-empty and must not contain '-'")
        return value


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
