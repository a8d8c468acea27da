"""Status cache persistence for repo-updater."""

import hashlib
import os
import tempfile
import time
from pathlib import Path

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from repo_updater.models.state import CACHE_SCHEMA_VERSION, CacheEntry
from repo_updater.models.status import RepoStatus

CACHE_KEY_LENGTH = 16


def cache_key(repo_path: str) -> str:
    """Short stable file name for a repository path."""
    return hashlib.sha256(repo_path.encode()).hexdigest()[:CACHE_KEY_LENGTH]


class StatusCache:
    """One JSON file per repository path, replaced atomically on every write."""

    def __init__(self, cache_dir: Path | None = None) -> None:
        """Initialize StatusCache with cache directory."""
        self._cache_dir = cache_dir or Path.home() / ".cache" / "repo-updater"

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    def get_cache_path(self, repo_path: str) -> Path:
        return self._cache_dir / f"{cache_key(repo_path)}.json"

    def read(self, repo_path: str) -> CacheEntry | None:
        """Load the entry for a repository.

        Returns None when the file is missing or unreadable, or was written by a
        different schema version or for a different path.
        """
        path = self.get_cache_path(repo_path)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"Cannot read cache {path}: {e}")
            return None
        try:
            entry = CacheEntry.model_validate_json(raw)
        except PydanticValidationError as e:
            logger.debug(f"Ignoring invalid cache {path}: {e}")
            return None
        if entry.version != CACHE_SCHEMA_VERSION or entry.repo_path != repo_path:
            return None
        return entry

    def write(self, entry: CacheEntry) -> bool:
        """Write through a temporary file and rename, so readers never see a partial file."""
        path = self.get_cache_path(entry.repo_path)
        try:
            self._cache_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._cache_dir, prefix=f".{path.stem}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(entry.model_dump_json())
                Path(tmp_name).replace(path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            logger.warning(f"Could not write status cache {path}: {e}")
            return False
        return True

    def is_fresh(self, repo_path: str, frequency_minutes: float, *, now: float | None = None) -> bool:
        entry = self.read(repo_path)
        if entry is None:
            return False
        now = time.time() if now is None else now
        return now - entry.last_check_time < frequency_minutes * 60

    def update_after_check(
        self,
        repo_path: str,
        status: RepoStatus,
        *,
        needs_update: bool,
        has_plugin_updates: bool,
        now: float | None = None,
    ) -> bool:
        entry = CacheEntry(
            repo_path=repo_path,
            last_check_time=int(time.time() if now is None else now),
            last_commit_hash=status.current_commit,
            branch=status.branch,
            behind_count=status.behind_count,
            ahead_count=status.ahead_count,
            needs_update=needs_update,
            has_plugin_updates=has_plugin_updates,
        )
        return self.write(entry)
