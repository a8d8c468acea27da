"""Persisted status cache model."""

from pydantic import BaseModel, Field

CACHE_SCHEMA_VERSION = 1


class CacheEntry(BaseModel):
    """Last known status of one repository, stored as JSON."""

    version: int = CACHE_SCHEMA_VERSION
    repo_path: str = Field(..., description="Exact repository path this entry was written for")
    last_check_time: int
    last_commit_hash: str | None = None
    branch: str = "unknown"
    behind_count: int = 0
    ahead_count: int = 0
    needs_update: bool = False
    has_plugin_updates: bool = False
