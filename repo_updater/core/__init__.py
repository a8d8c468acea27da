"""Core modules for repo-updater."""

from repo_updater.core.cache import StatusCache
from repo_updater.core.updater import Updater

__all__ = ["StatusCache", "Updater"]
