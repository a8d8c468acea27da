"""Models for repo-updater."""

from repo_updater.models.release import GitHubRelease, ReleaseDetails, ReleaseStatus, ReleaseTag
from repo_updater.models.state import CACHE_SCHEMA_VERSION, CacheEntry
from repo_updater.models.status import Commit, PluginReport, PluginUpdate, RepoStatus

__all__ = [
    "CACHE_SCHEMA_VERSION",
    "CacheEntry",
    "Commit",
    "GitHubRelease",
    "PluginReport",
    "PluginUpdate",
    "ReleaseDetails",
    "ReleaseStatus",
    "ReleaseTag",
    "RepoStatus",
]
