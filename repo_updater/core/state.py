"""Session state shared by the orchestrated operations."""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING, Any, Literal, TypeAlias

from pydantic import BaseModel, Field

from repo_updater.core.errors import OperationInProgressError
from repo_updater.models.release import GitHubRelease, ReleaseStatus
from repo_updater.models.status import Commit, LogOrigin, PluginReport, RepoStatus

if TYPE_CHECKING:
    from collections.abc import Generator

GuardFlag: TypeAlias = Literal["is_refreshing", "is_updating", "is_installing_plugins", "is_switching_version"]
VersionMode: TypeAlias = Literal["latest", "pinned"]
UpdateTextFormat: TypeAlias = Literal["default", "short"]

GUARD_LABELS: dict[GuardFlag, str] = {
    "is_refreshing": "Refresh",
    "is_updating": "Update",
    "is_installing_plugins": "Plugin installation",
    "is_switching_version": "Version switch",
}
MUTATING_FLAGS: tuple[GuardFlag, ...] = ("is_updating", "is_installing_plugins", "is_switching_version")


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


class UpdaterState(BaseModel):
    """Everything known about the tracked repository during one session.

    Owned by the orchestrator and passed to whoever needs it. The ``is_*`` flags are
    mutual-exclusion guards, taken through ``exclusive()``.
    """

    repo: RepoStatus = Field(default_factory=RepoStatus)
    needs_update: bool = False
    last_check_time: int | None = None
    remote_url: str | None = None

    commits: list[Commit] = Field(default_factory=list)
    log_type: LogOrigin = "local"
    remote_commits: list[Commit] = Field(default_factory=list)
    commits_in_branch: dict[str, bool] = Field(default_factory=dict)

    plugins: PluginReport = Field(default_factory=PluginReport)

    release: ReleaseStatus = Field(default_factory=ReleaseStatus)
    version_mode: VersionMode = "latest"
    pinned_version: str | None = None
    github_releases: dict[str, GitHubRelease] = Field(default_factory=dict)

    recently_updated_repo: bool = False
    recently_updated_plugins: bool = False

    is_refreshing: bool = False
    is_updating: bool = False
    is_installing_plugins: bool = False
    is_switching_version: bool = False

    @contextlib.contextmanager
    def exclusive(self, flag: GuardFlag, *, blocked_by: tuple[GuardFlag, ...] = ()) -> Generator[None]:
        """Hold ``flag`` for the duration of the block.

        Raises OperationInProgressError, without waiting, when ``flag`` or any of
        ``blocked_by`` is already held.
        """
        for held in (flag, *blocked_by):
            if getattr(self, held):
                raise OperationInProgressError(GUARD_LABELS[held])
        setattr(self, flag, True)
        try:
            yield
        finally:
            setattr(self, flag, False)

    @property
    def busy(self) -> bool:
        return any(getattr(self, flag) for flag in GUARD_LABELS)

    @property
    def has_plugin_updates(self) -> bool:
        return self.plugins.has_updates

    @property
    def has_cached_data(self) -> bool:
        return self.last_check_time is not None

    def has_updates(self) -> bool:
        return self.needs_update or self.has_plugin_updates

    def has_recent_updates(self) -> bool:
        return self.recently_updated_repo or self.recently_updated_plugins

    def clear_recent_updates(self) -> None:
        self.recently_updated_repo = False
        self.recently_updated_plugins = False

    def update_count(self) -> int:
        count = 0
        if self.needs_update:
            count += self.repo.behind_count
        if self.has_plugin_updates:
            count += len(self.plugins.all_updates)
        return count

    def update_text(self, fmt: UpdateTextFormat = "default") -> str:
        """Status-line summary such as ``3 commits, 1 plugin updates`` or ``3c 1p``."""
        if not self.has_updates():
            return ""
        behind = self.repo.behind_count
        plugin_count = len(self.plugins.all_updates)
        parts = []
        if fmt == "short":
            if self.needs_update:
                parts.append(f"{behind}c")
            if self.has_plugin_updates:
                parts.append(f"{plugin_count}p")
            return " ".join(parts)

        if self.needs_update:
            parts.append(_plural(behind, "commit"))
        if self.has_plugin_updates:
            parts.append(_plural(plugin_count, "plugin"))
        suffix = "update" if self.update_count() == 1 else "updates"
        return f"{', '.join(parts)} {suffix}"

    def detect_version_mode(self, head_tag: str | None) -> None:
        """Settle ``version_mode`` from the tag on HEAD.

        Sitting on a tag means pinned unless the user explicitly chose latest and that
        tag is not the pinned one. Off any tag means latest unless explicitly pinned.
        """
        self.release.current_tag = head_tag
        if head_tag:
            if self.version_mode != "latest" or self.pinned_version == head_tag:
                self.version_mode = "pinned"
                self.pinned_version = head_tag
        elif self.version_mode != "pinned":
            self.version_mode = "latest"
            self.pinned_version = None

    def snapshot(self) -> dict[str, Any]:
        """Plain summary for status lines and scripts."""
        return {
            "needs_update": self.needs_update,
            "behind_count": self.repo.behind_count,
            "ahead_count": self.repo.ahead_count,
            "has_plugin_updates": self.has_plugin_updates,
            "plugin_update_count": len(self.plugins.all_updates),
            "current_branch": self.repo.branch,
            "current_tag": self.release.current_tag,
            "version_mode": self.version_mode,
            "last_check_time": self.last_check_time,
            "is_updating": self.is_updating,
            "is_installing_plugins": self.is_installing_plugins,
            "is_refreshing": self.is_refreshing,
            "is_switching_version": self.is_switching_version,
        }
