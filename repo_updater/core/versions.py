"""Release tag resolution and version switching."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

from loguru import logger

from repo_updater.core.errors import ProcessError, UpdaterError, ValidationError
from repo_updater.core.result import SwitchResult
from repo_updater.core.tools.git import validate_ref
from repo_updater.models.release import ReleaseStatus, ReleaseTag

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from repo_updater.core.plugins import PluginManager, ToolRestorer
    from repo_updater.core.query import RepositoryQueryEngine
    from repo_updater.models.release import GitHubRelease

AVAILABLE_PREVIEW_COUNT = 5


def releases_since(current: str | None, tags: list[str]) -> list[str]:
    """Return the tags newer than ``current`` from a newest-first list.

    With no known current release every tag counts as newer.
    """
    if current is None or current not in tags:
        return list(tags)
    return tags[: tags.index(current)]


def releases_before(current: str | None, tags: list[str], max_count: int) -> list[str]:
    """Return up to ``max_count`` tags older than ``current`` from a newest-first list."""
    if current is None or current not in tags:
        return []
    start = tags.index(current) + 1
    return tags[start : start + max_count]


class VersionResolver:
    """Lists release tags and moves the working tree between them."""

    def __init__(
        self,
        query: RepositoryQueryEngine,
        plugins: PluginManager,
        tools: ToolRestorer,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.query = query
        self.git = query.git
        self.config = query.config
        self.plugins = plugins
        self.tools = tools
        self._clock = clock
        self._tags: list[str] = []
        self._tags_fetched_at: float | None = None

    def invalidate(self) -> None:
        self._tags_fetched_at = None

    async def available_versions(self, *, force: bool = False) -> list[str]:
        """Return release tags newest first, cached for ``version_cache_ttl`` seconds."""
        now = self._clock()
        if (
            not force
            and self._tags_fetched_at is not None
            and now - self._tags_fetched_at < self.config.version_cache_ttl
        ):
            return list(self._tags)
        self._tags = await self.query.version_tags()
        self._tags_fetched_at = now
        return list(self._tags)

    def completion_list(self, prefix: str = "") -> list[str]:
        """Filter the cached tags by prefix. Never runs git."""
        return [tag for tag in self._tags if tag.startswith(prefix)]

    async def release_tags(self, github: Mapping[str, GitHubRelease] | None = None) -> list[ReleaseTag]:
        """Return the available tags newest first, each with the commit it points to."""
        tags = await self.available_versions()
        commits = await asyncio.gather(*(self.query.tag_commit_info(tag) for tag in tags))
        github = github or {}
        return [
            ReleaseTag(name=tag, commit=commit, date=commit.date if commit else None, github=github.get(tag))
            for tag, commit in zip(tags, commits, strict=True)
        ]

    async def release_status(self) -> ReleaseStatus:
        """Place HEAD among the release tags."""
        is_detached, current_release, head_tag, tags = await asyncio.gather(
            self.query.is_detached_head(),
            self.query.latest_release_for_ref("HEAD"),
            self.query.head_tag(),
            self.available_versions(force=True),
        )
        status = ReleaseStatus(
            current_release=current_release,
            current_tag=head_tag,
            is_detached_head=is_detached,
            latest_release=tags[0] if tags else None,
            releases_since_current=releases_since(current_release, tags),
            releases_before_current=releases_before(current_release, tags, self.config.max_section_items),
        )
        if head_tag is None and current_release:
            status.commits_since_release, status.commits_since_release_list = await asyncio.gather(
                self.query.commits_since_tag(current_release),
                self.query.commits_since_tag_list(current_release),
            )
        status.release_commit = await self.query.tag_commit_info(current_release)
        return status

    async def _ensure_clean(self) -> None:
        try:
            dirty = await self.query.has_uncommitted_changes()
        except UpdaterError as e:
            msg = f"Failed to check for changes: {e}"
            raise ProcessError(msg) from e
        if dirty:
            msg = "Cannot switch: uncommitted changes exist. Commit or stash your changes first."
            raise ValidationError(msg)

    async def _restore_after_checkout(self) -> list[str]:
        warnings = []
        cwd = self.git.repo_path
        if self.plugins.is_available():
            try:
                await self.plugins.restore(cwd)
            except UpdaterError as e:
                logger.warning(f"Plugin restore failed: {e}")
                warnings.append(f"Plugin restore failed: {e}. Restore plugins manually.")
        if self.tools.is_available():
            try:
                await self.tools.restore(cwd)
            except UpdaterError as e:
                logger.warning(f"Tool restore failed: {e}")
                warnings.append(f"Tool restore failed: {e}. Restore tools manually.")
        return warnings

    async def _checkout(self, tag: str) -> SwitchResult:
        try:
            await self.git.execute("checkout", "--quiet", tag, timeout_key="default")
        except ProcessError as e:
            msg = f"Failed to checkout {tag}: {e}"
            raise ProcessError(msg, cmd=e.cmd, returncode=e.returncode, output=e.output) from e
        logger.info(f"Checked out {tag}")
        warnings = await self._restore_after_checkout()
        return SwitchResult(tag=tag, message=f"Switched to {tag}", warnings=warnings)

    async def switch_to_version(self, tag: str) -> SwitchResult:
        """Check out a release tag, then restore plugins and tools.

        Refuses on a dirty working tree or an unknown tag. Restore failures come back
        as warnings; the checkout is kept either way.
        """
        validate_ref(tag)
        await self._ensure_clean()
        tags = await self.available_versions()
        if tag not in tags:
            tags = await self.available_versions(force=True)
        if tag not in tags:
            available = ", ".join(tags[:AVAILABLE_PREVIEW_COUNT]) or "none"
            msg = f"Version {tag} not found. Available: {available}"
            raise ValidationError(msg)
        return await self._checkout(tag)

    async def switch_to_latest(self) -> SwitchResult:
        await self._ensure_clean()
        tags = await self.available_versions(force=True)
        if not tags:
            msg = "No release tags found"
            raise ValidationError(msg)
        return await self._checkout(tags[0])
