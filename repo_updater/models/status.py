"""Repository and plugin status models."""

from __future__ import annotations

from typing import Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field

LogOrigin: TypeAlias = Literal["local", "remote"]
PluginDirection: TypeAlias = Literal["behind", "ahead"]

MAX_COMMIT_MESSAGE_LENGTH = 80


class Commit(BaseModel):
    """A single parsed log entry."""

    model_config = ConfigDict(frozen=True)

    hash: str
    message: str
    author: str
    date: str


class RepoStatus(BaseModel):
    """Snapshot of the tracked repository relative to its upstream main branch.

    When ``error`` is set every other field is meaningless.
    """

    model_config = ConfigDict(frozen=True)

    branch: str = "unknown"
    current_commit: str | None = None
    ahead_count: int = Field(default=0, ge=0)
    behind_count: int = Field(default=0, ge=0)
    is_main_branch: bool = False
    has_local_changes: bool = False
    error: bool = False

    @property
    def up_to_date(self) -> bool:
        return not self.error and self.behind_count == 0

    @classmethod
    def failed(cls) -> RepoStatus:
        return cls(error=True)


class PluginUpdate(BaseModel):
    """A plugin whose installed commit differs from the lockfile pin."""

    model_config = ConfigDict(frozen=True)

    name: str
    installed_commit: str
    lockfile_commit: str
    branch: str = "main"
    direction: PluginDirection = "behind"


class PluginReport(BaseModel):
    """Outcome of one lockfile reconciliation pass."""

    model_config = ConfigDict(frozen=True)

    all_updates: list[PluginUpdate] = Field(default_factory=list)
    behind: list[PluginUpdate] = Field(default_factory=list)
    ahead: list[PluginUpdate] = Field(default_factory=list)

    @classmethod
    def from_updates(cls, updates: list[PluginUpdate]) -> PluginReport:
        ordered = sorted(updates, key=lambda u: u.name)
        return cls(
            all_updates=ordered,
            behind=[u for u in ordered if u.direction == "behind"],
            ahead=[u for u in ordered if u.direction == "ahead"],
        )

    @property
    def has_updates(self) -> bool:
        return bool(self.all_updates)
