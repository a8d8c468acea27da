"""Orchestrates refreshes, updates and version switches for one repository."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from loguru import logger

from repo_updater.core.apply import UpdateApplier
from repo_updater.core.cache import StatusCache
from repo_updater.core.errors import (
    OperationInProgressError,
    RollbackFailedError,
    UpdaterError,
    ValidationError,
)
from repo_updater.core.github import GitHubReleaseSource, NullReleaseSource
from repo_updater.core.plugins import PluginLockfileReconciler, plugin_manager_from_config, tool_restorer_from_config
from repo_updater.core.query import RepositoryQueryEngine, to_https_url
from repo_updater.core.result import OperationResult
from repo_updater.core.state import MUTATING_FLAGS, UpdaterState
from repo_updater.core.tools.git import GitController
from repo_updater.core.versions import VersionResolver
from repo_updater.models.status import PluginReport, RepoStatus

if TYPE_CHECKING:
    from repo_updater.core.config import UpdaterConfig
    from repo_updater.core.github import ReleaseSource
    from repo_updater.core.plugins import PluginManager, ToolRestorer
    from repo_updater.core.result import SwitchResult
    from repo_updater.core.state import VersionMode
    from repo_updater.models.release import GitHubRelease, ReleaseDetails, ReleaseTag

VERSIONED_UPDATE_HINT = "Plain updates are disabled in versioned releases mode. Switch to the latest release instead."
ROLLED_BACK_NOTE = "Your branch has been restored to its previous state."


class Updater:
    """Single entry point for everything the command line (or an editor) asks for.

    Every public operation returns exactly one OperationResult; exceptions from the
    components below never escape.
    """

    def __init__(  # noqa: PLR0913
        self,
        config: UpdaterConfig,
        *,
        state: UpdaterState | None = None,
        git: GitController | None = None,
        plugins: PluginManager | None = None,
        tools: ToolRestorer | None = None,
        releases: ReleaseSource | None = None,
        cache: StatusCache | None = None,
    ) -> None:
        self.config = config
        self.state = state or UpdaterState()
        self.git = git or GitController(config.repo_path, config.timeouts)
        self.query = RepositoryQueryEngine(self.git, config)
        self.plugin_manager = plugins or plugin_manager_from_config(config)
        self.tools = tools or tool_restorer_from_config(config)
        self.reconciler = PluginLockfileReconciler(
            self.plugin_manager, config.repo_path / config.plugin_lockfile, config.timeouts
        )
        self.versions = VersionResolver(self.query, self.plugin_manager, self.tools)
        if releases is None:
            releases = (
                GitHubReleaseSource(config.repo_path, ttl=config.github.cache_ttl, timeout=config.github.timeout)
                if config.github.enabled
                else NullReleaseSource()
            )
        self.releases = releases
        self.cache = cache or StatusCache(config.cache_dir)

    @property
    def repo_key(self) -> str:
        return str(self.config.repo_path)

    async def _ensure_repository(self) -> None:
        if not await self.git.is_repository():
            msg = f"Not a git repository: {self.config.repo_path}"
            raise ValidationError(msg)

    def _failure(self, name: str, error: UpdaterError) -> OperationResult:
        if isinstance(error, OperationInProgressError):
            logger.debug(f"{name} skipped: {error}")
            return OperationResult(name=name, status="skipped", message=str(error))
        if isinstance(error, RollbackFailedError):
            return OperationResult(
                name=name,
                status="fatal",
                message=f"{error} Repository may be inconsistent; restore it manually to {error.rollback_commit[:7]}.",
            )
        logger.error(f"{name} failed: {error}")
        return OperationResult(name=name, status="failed", message=str(error))

    def _write_cache(self) -> None:
        self.cache.update_after_check(
            self.repo_key,
            self.state.repo,
            needs_update=self.state.needs_update,
            has_plugin_updates=self.state.has_plugin_updates,
        )

    def _mark_failed_check(self) -> None:
        self.state.repo = RepoStatus.failed()
        self.state.needs_update = False
        self.state.plugins = PluginReport()
        self.state.last_check_time = int(time.time())

    async def _refresh_release_info(self, remote_url: str | None) -> None:
        state = self.state
        state.github_releases = await self.releases.releases(remote_url)
        if not self.config.versioned_releases_only:
            state.detect_version_mode(await self.query.head_tag())
            return
        state.release = await self.versions.release_status()
        state.detect_version_mode(state.release.current_tag)

    async def _collect(self) -> RepoStatus:
        """Run one full refresh pass and store the result in the session state."""
        state = self.state
        raw_url = await self.query.remote_url()
        state.remote_url = to_https_url(raw_url) if raw_url else None

        repo = await self.query.repo_status()
        if repo.error:
            self._mark_failed_check()
            return repo
        state.repo = repo

        await self._refresh_release_info(raw_url)

        state.remote_commits = await self.query.remote_commits_not_in_local(repo.branch)
        if self.config.versioned_releases_only:
            state.needs_update = state.release.has_new_release
        else:
            state.needs_update = bool(state.remote_commits)
        state.commits_in_branch = await self.query.commits_in_branch(state.remote_commits, repo.branch)
        state.commits, state.log_type = await self.query.commit_log(repo.branch, repo.ahead_count, repo.behind_count)

        state.plugins = await self.reconciler.reconcile()
        state.last_check_time = int(time.time())
        self._write_cache()
        return repo

    def _summary(self) -> str:
        if self.state.has_updates():
            return f"Updates available: {self.state.update_text()}"
        return "Up to date"

    async def refresh(self) -> OperationResult:
        """Rebuild the full status snapshot."""
        try:
            with self.state.exclusive("is_refreshing", blocked_by=MUTATING_FLAGS):
                await self._ensure_repository()
                repo = await self._collect()
        except UpdaterError as e:
            return self._failure("refresh", e)
        if repo.error:
            return OperationResult(name="refresh", status="failed", message="Failed to check repository status")
        return OperationResult(name="refresh", status="success", message=self._summary())

    async def refresh_silent(self) -> bool:
        """Refresh without producing a result. Returns whether the refresh completed."""
        result = await self.refresh()
        return result.ok

    async def check_updates_silent(self) -> bool:
        """Lighter check for background use: status, plugins, releases. Writes the cache.

        Returns whether any update is available.
        """
        state = self.state
        try:
            with state.exclusive("is_refreshing", blocked_by=MUTATING_FLAGS):
                await self._ensure_repository()
                repo = await self.query.repo_status()
                if repo.error:
                    self._mark_failed_check()
                    return False
                state.repo = repo
                if not self.config.versioned_releases_only:
                    state.needs_update = repo.behind_count > 0
                state.plugins = await self.reconciler.reconcile()
                if self.config.versioned_releases_only:
                    state.release = await self.versions.release_status()
                    state.needs_update = state.release.has_new_release
                state.last_check_time = int(time.time())
                self._write_cache()
        except OperationInProgressError as e:
            logger.debug(f"Silent update check skipped: {e}")
            return False
        except UpdaterError as e:
            logger.debug(f"Silent update check failed: {e}")
            self._mark_failed_check()
            return False
        return state.has_updates()

    def _versioned_refusal(self, name: str) -> OperationResult | None:
        if self.config.versioned_releases_only:
            return OperationResult(name=name, status="skipped", message=VERSIONED_UPDATE_HINT)
        return None

    async def _run_update(self) -> OperationResult:
        applier = UpdateApplier(self.query)
        try:
            with self.state.exclusive("is_updating", blocked_by=("is_refreshing", *MUTATING_FLAGS)):
                await self._ensure_repository()
                result = await applier.run()
                self.state.needs_update = False
                if not result.already_up_to_date:
                    self.state.recently_updated_repo = True
                await self._collect()
        except UpdaterError as e:
            failure = self._failure("update", e)
            if applier.rolled_back:
                failure.message = f"{failure.message.rstrip('.')}. {ROLLED_BACK_NOTE}"
            return failure
        return OperationResult(name="update", status="success", message=result.message)

    async def update_repo(self) -> OperationResult:
        """Bring the current branch up to date with the upstream main branch."""
        if refusal := self._versioned_refusal("update"):
            return refusal
        return await self._run_update()

    async def _install_plugins(self) -> list[str]:
        if not self.plugin_manager.is_available():
            msg = "Cannot install plugin updates: plugin manager not found"
            raise ValidationError(msg)
        await self.plugin_manager.restore(self.config.repo_path)
        self.state.plugins = await self.reconciler.reconcile()
        self.state.recently_updated_plugins = True
        self._write_cache()
        remaining = len(self.state.plugins.all_updates)
        return [f"{remaining} plugins still differ from the lockfile"] if remaining else []

    async def update_repo_and_plugins(self) -> OperationResult:
        """Update the repository, then restore plugins from the updated lockfile."""
        if refusal := self._versioned_refusal("update"):
            return refusal
        outcome = await self._run_update()
        if not outcome.ok or not self.plugin_manager.is_available():
            return outcome
        try:
            with self.state.exclusive("is_installing_plugins", blocked_by=MUTATING_FLAGS):
                warnings = await self._install_plugins()
        except UpdaterError as e:
            logger.warning(f"Plugin restore after update failed: {e}")
            outcome.warnings.append(f"Plugin restore failed: {e}")
            return outcome
        outcome.message = f"{outcome.message}. Plugins restored from lockfile"
        outcome.warnings.extend(warnings)
        return outcome

    async def install_plugin_updates(self) -> OperationResult:
        """Restore plugins from the lockfile and re-check drift."""
        try:
            with self.state.exclusive("is_installing_plugins", blocked_by=MUTATING_FLAGS):
                warnings = await self._install_plugins()
        except UpdaterError as e:
            return self._failure("install-plugins", e)
        return OperationResult(
            name="install-plugins",
            status="success",
            message="Successfully restored plugins from lockfile",
            warnings=warnings,
        )

    async def _after_switch(self, switched: SwitchResult, *, mode: VersionMode) -> OperationResult:
        state = self.state
        state.version_mode = mode
        state.pinned_version = switched.tag if mode == "pinned" else None
        state.release.current_tag = switched.tag
        state.recently_updated_repo = True
        try:
            await self._collect()
        except UpdaterError as e:
            logger.debug(f"Refresh after switching to {switched.tag} failed: {e}")
        return OperationResult(name="switch", status="success", message=switched.message, warnings=switched.warnings)

    async def switch_to_version(self, tag: str) -> OperationResult:
        """Check out a release tag and pin to it."""
        try:
            with self.state.exclusive("is_switching_version", blocked_by=("is_refreshing", *MUTATING_FLAGS)):
                await self._ensure_repository()
                switched = await self.versions.switch_to_version(tag)
                return await self._after_switch(switched, mode="pinned")
        except UpdaterError as e:
            return self._failure("switch", e)

    async def switch_to_latest(self) -> OperationResult:
        """Check out the newest release tag and follow latest."""
        try:
            with self.state.exclusive("is_switching_version", blocked_by=("is_refreshing", *MUTATING_FLAGS)):
                await self._ensure_repository()
                switched = await self.versions.switch_to_latest()
                return await self._after_switch(switched, mode="latest")
        except UpdaterError as e:
            return self._failure("switch", e)

    async def available_versions(self) -> list[str]:
        try:
            await self._ensure_repository()
            return await self.versions.available_versions()
        except UpdaterError as e:
            logger.debug(f"Listing versions failed: {e}")
            return []

    async def _github_releases(self) -> dict[str, GitHubRelease]:
        if not self.state.github_releases:
            self.state.github_releases = await self.releases.releases(await self.query.remote_url())
        return self.state.github_releases

    async def release_tags(self) -> list[ReleaseTag]:
        """List release tags newest first, with commit dates and GitHub titles where known."""
        try:
            await self._ensure_repository()
            return await self.versions.release_tags(await self._github_releases())
        except UpdaterError as e:
            logger.debug(f"Listing release tags failed: {e}")
            return []

    async def release_details(self, tag: str) -> ReleaseDetails:
        """Describe one release relative to the release before it."""
        await self._ensure_repository()
        tags = await self.versions.available_versions()
        if tag not in tags:
            msg = f"Version {tag} not found"
            raise ValidationError(msg)
        index = tags.index(tag)
        previous = tags[index + 1] if index + 1 < len(tags) else None
        github = await self._github_releases()
        return await self.query.release_details(tag, previous, github.get(tag))
