"""
Configuration module for Logseq Search MCP Server.

Uses pydantic-settings for configuration management with environment variable support.
Environment variables use LOGSEQ_SEARCH_ prefix (e.g., LOGSEQ_SEARCH_API_TOKEN).
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _get_default_graph_path() -> Path:
    """Get default graph path (Logseq's own default location)."""
    return Path.home() / "Documents" / "logseq"


class Settings(BaseSettings):
    """Application settings with environment variable support.

    Environment variables:
    - LOGSEQ_SEARCH_PROVIDER: "api" for the Logseq HTTP API, "files" for a graph directory
    - LOGSEQ_SEARCH_API_URL: Base URL of the Logseq HTTP API server
    - LOGSEQ_SEARCH_API_TOKEN: Bearer token configured in Logseq
    - LOGSEQ_SEARCH_GRAPH_PATH: Path to the graph directory (files provider)
    - LOGSEQ_SEARCH_*_TTL: Cache TTLs in seconds
    - LOGSEQ_SEARCH_*_SCAN_LIMIT: Number of pages scanned by bounded filters
    """

    provider: Literal["api", "files"] = "api"
    api_url: str = "http://127.0.0.1:12315"
    api_token: str = ""
    graph_path: Path = Field(default_factory=_get_default_graph_path)
    request_timeout: float = 10.0

    # Cache TTLs (seconds)
    all_pages_ttl: float = 300
    page_blocks_ttl: float = 180
    search_results_ttl: float = 60
    templates_ttl: float = 600

    # Pagination
    default_limit: int = 20
    max_limit: int = 100

    # Bounded scans: pages inspected per atomic filter
    empty_page_scan_limit: int = 50
    date_scan_limit: int = 100
    link_scan_limit: int = 100
    block_scan_page_limit: int = 100

    max_nesting_level: int = 10
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="LOGSEQ_SEARCH_")


# Global settings instance
settings = Settings()

# Module-level aliases used as defaults
DEFAULT_LIMIT = settings.default_limit
MAX_NESTING_LEVEL = settings.max_nesting_level

# Task markers recognised at the start of a block
TASK_MARKERS = ("TODO", "DOING", "DONE", "WAITING", "LATER", "NOW", "CANCELED", "CANCELLED")

# Property keys whose values are treated as tags
TAG_PROPERTY_KEYS = ("tag", "tags", "category", "categories", "label", "labels", "topic", "topics")
