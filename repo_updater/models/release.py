"""Release and tag models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from repo_updater.models.status import Commit


class GitHubRelease(BaseModel):
    """The fields of a GitHub release that are consumed."""

    model_config = ConfigDict(frozen=True)

    tag_name: str
    name: str | None = None
    body: str | None = None
    prerelease: bool = False
    draft: bool = False
    html_url: str | None = None
    published_at: str | None = None
    author: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> GitHubRelease:
        author = data.get("author")
        return cls(
            tag_name=data["tag_name"],
            name=data.get("name"),
            body=data.get("body"),
            prerelease=bool(data.get("prerelease")),
            draft=bool(data.get("draft")),
            html_url=data.get("html_url"),
            published_at=data.get("published_at"),
            author=author.get("login") if isinstance(author, dict) else None,
        )


class ReleaseTag(BaseModel):
    """A version tag together with the commit it points to."""

    model_config = ConfigDict(frozen=True)

    name: str
    commit: Commit | None = None
    date: str | None = None
    github: GitHubRelease | None = None


class ReleaseDetails(BaseModel):
    """What changed between a release and the release before it."""

    tag: str
    previous_tag: str | None = None
    commit: str | None = None
    message: str | None = None
    date: str | None = None
    url: str | None = None
    title: str | None = None
    description: str | None = None
    files_changed: int = 0
    lines_added: int = 0
    lines_deleted: int = 0
    plugin_changes: int = 0
    tool_changes: int = 0


class ReleaseStatus(BaseModel):
    """Where HEAD sits relative to the release tags."""

    current_release: str | None = None
    current_tag: str | None = None
    is_detached_head: bool = False
    latest_release: str | None = None
    releases_since_current: list[str] = Field(default_factory=list)
    releases_before_current: list[str] = Field(default_factory=list)
    commits_since_release: int = 0
    commits_since_release_list: list[Commit] = Field(default_factory=list)
    release_commit: Commit | None = None

    @property
    def has_new_release(self) -> bool:
        return bool(self.releases_since_current)
