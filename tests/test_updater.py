"""End-to-end tests for the orchestrated operations against real repositories."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, patch

import pytest

from repo_updater.core.apply import UpdateApplier
from repo_updater.core.errors import RollbackFailedError
from repo_updater.core.updater import ROLLED_BACK_NOTE, VERSIONED_UPDATE_HINT, Updater
from tests.repo_controller import RepositoryController

if TYPE_CHECKING:
    from repo_updater.core.config import UpdaterConfig
    from tests.conftest import ConfigFactory, RepoPair


class FakePluginManager:
    """Reports nothing installed and records restore calls."""

    def __init__(self) -> None:
        self.restored: list[Path] = []

    def is_available(self) -> bool:
        return True

    def plugin_dir(self, name: str) -> Path | None:  # noqa: ARG002
        return None

    async def installed_commit(self, name: str) -> str | None:  # noqa: ARG002
        return None

    async def restore(self, cwd: Path) -> None:
        self.restored.append(cwd)


@pytest.fixture
def updater(config: UpdaterConfig) -> Updater:
    return Updater(config)


@pytest.mark.asyncio
async def test_refresh_reports_incoming_commits(updater: Updater, repo_pair: RepoPair) -> None:
    repo_pair.upstream_commits(3)

    result = await updater.refresh()

    assert result.ok
    assert result.message == "Updates available: 3 commits updates"
    state = updater.state
    assert state.needs_update
    assert state.repo.behind_count == 3
    assert state.log_type == "remote"
    assert len(state.commits) == 3
    assert len(state.remote_commits) == 3
    assert set(state.commits_in_branch.values()) == {False}
    assert state.last_check_time is not None
    assert not state.is_refreshing

    cached = updater.cache.read(updater.repo_key)
    assert cached is not None
    assert cached.behind_count == 3
    assert cached.needs_update


@pytest.mark.asyncio
async def test_refresh_is_idempotent(updater: Updater, repo_pair: RepoPair) -> None:
    repo_pair.upstream_commits(2)
    await updater.refresh()
    first = updater.state.model_copy(deep=True)

    await updater.refresh()

    assert updater.state.repo == first.repo
    assert [c.hash for c in updater.state.commits] == [c.hash for c in first.commits]
    assert updater.state.needs_update == first.needs_update
    assert repo_pair.local.is_clean()


@pytest.mark.asyncio
async def test_refresh_up_to_date(updater: Updater) -> None:
    result = await updater.refresh()
    assert result.ok
    assert result.message == "Up to date"
    assert updater.state.log_type == "local"


@pytest.mark.asyncio
async def test_clean_update(updater: Updater, repo_pair: RepoPair) -> None:
    repo_pair.upstream_commits(3)
    await updater.refresh()

    result = await updater.update_repo()

    assert result.ok
    assert result.message == "Successfully pulled changes from origin/main"
    assert updater.state.repo.behind_count == 0
    assert not updater.state.needs_update
    assert updater.state.recently_updated_repo
    assert repo_pair.local.head() == repo_pair.upstream.head()
    cached = updater.cache.read(updater.repo_key)
    assert cached is not None
    assert not cached.needs_update


@pytest.mark.asyncio
async def test_conflicting_update_is_rolled_back(updater: Updater, repo_pair: RepoPair) -> None:
    repo_pair.upstream.add_and_commit("README.md", "# Upstream edit\n", "Edit README upstream")
    saved = repo_pair.local.add_and_commit("README.md", "# Local edit\n", "Edit README locally")

    result = await updater.update_repo()

    assert result.status == "failed"
    assert result.message.endswith(ROLLED_BACK_NOTE)
    assert "conflict" in result.message.lower()
    assert repo_pair.local.head() == saved
    assert not repo_pair.local.operation_in_progress()
    assert not updater.state.is_updating
    assert not updater.state.recently_updated_repo


@pytest.mark.asyncio
async def test_failed_rollback_is_fatal(updater: Updater) -> None:
    error = RollbackFailedError("Merge failed. Rollback also failed: boom", rollback_commit="abc1234def")
    with patch.object(UpdateApplier, "run", new=AsyncMock(side_effect=error)):
        result = await updater.update_repo()

    assert result.status == "fatal"
    assert "restore it manually to abc1234" in result.message
    assert ROLLED_BACK_NOTE not in result.message


@pytest.mark.asyncio
async def test_concurrent_operations_are_skipped(updater: Updater, repo_pair: RepoPair) -> None:
    repo_pair.upstream_commits(1)
    head = repo_pair.local.head()

    with updater.state.exclusive("is_updating"):
        result = await updater.update_repo()
    assert result.status == "skipped"
    assert result.message == "Update already in progress"

    with updater.state.exclusive("is_switching_version"):
        result = await updater.refresh()
    assert result.status == "skipped"
    assert result.message == "Version switch already in progress"

    with updater.state.exclusive("is_refreshing"):
        assert not await updater.check_updates_silent()

    assert repo_pair.local.head() == head


@pytest.mark.asyncio
async def test_versioned_mode_refuses_plain_update(repo_pair: RepoPair, make_config: ConfigFactory) -> None:
    repo_pair.upstream_commits(1)
    head = repo_pair.local.head()
    updater = Updater(make_config(repo_pair.local, versioned_releases_only=True))

    for operation in (updater.update_repo, updater.update_repo_and_plugins):
        result = await operation()
        assert result.status == "skipped"
        assert result.message == VERSIONED_UPDATE_HINT
    assert repo_pair.local.head() == head


@pytest.mark.asyncio
async def test_versioned_mode_tracks_new_releases(repo_pair: RepoPair, make_config: ConfigFactory) -> None:
    repo_pair.upstream.tag("v1.0.0")
    repo_pair.upstream.add_and_commit("next.txt", "x\n", "Next", date="2099-01-01T00:00:00+0000")
    repo_pair.upstream.tag("v1.1.0")
    repo_pair.local.fetch()
    repo_pair.local.checkout("v1.0.0")
    updater = Updater(make_config(repo_pair.local, versioned_releases_only=True))

    assert await updater.check_updates_silent()
    assert updater.state.release.releases_since_current == ["v1.1.0"]

    await updater.refresh()
    assert updater.state.release.current_tag == "v1.0.0"
    assert updater.state.needs_update


@pytest.mark.asyncio
async def test_switch_refused_on_dirty_tree(updater: Updater, repo_pair: RepoPair) -> None:
    repo_pair.local.tag("v1.0.0")
    repo_pair.local.add_file("README.md", "# Edited\n")

    result = await updater.switch_to_version("v1.0.0")

    assert result.status == "failed"
    assert result.message == "Cannot switch: uncommitted changes exist. Commit or stash your changes first."
    assert not updater.state.is_switching_version


@pytest.mark.asyncio
async def test_switch_pins_and_latest_unpins(updater: Updater, repo_pair: RepoPair) -> None:
    local = repo_pair.local
    first = local.head()
    local.tag("v1.0.0")
    latest = local.add_and_commit("next.txt", "x\n", "Next", date="2099-01-01T00:00:00+0000")
    local.tag("v1.1.0")

    result = await updater.switch_to_version("v1.0.0")
    assert result.ok
    assert result.message == "Switched to v1.0.0"
    assert local.head() == first
    assert updater.state.version_mode == "pinned"
    assert updater.state.pinned_version == "v1.0.0"
    assert updater.state.release.current_tag == "v1.0.0"
    assert updater.state.recently_updated_repo

    result = await updater.switch_to_latest()
    assert result.ok
    assert local.head() == latest
    assert updater.state.version_mode == "latest"
    assert updater.state.pinned_version is None


@pytest.mark.asyncio
async def test_check_updates_silent(updater: Updater, repo_pair: RepoPair) -> None:
    assert not await updater.check_updates_silent()
    repo_pair.upstream_commits(2)
    assert await updater.check_updates_silent()
    assert updater.state.repo.behind_count == 2
    cached = updater.cache.read(updater.repo_key)
    assert cached is not None
    assert cached.needs_update


@pytest.mark.asyncio
async def test_operations_on_plain_directory(tmp_path: Path, make_config: ConfigFactory) -> None:
    plain = tmp_path / "plain"
    plain.mkdir()
    updater = Updater(make_config(RepositoryController(plain)))

    result = await updater.refresh()
    assert result.status == "failed"
    assert result.message.startswith("Not a git repository")
    assert await updater.available_versions() == []
    assert not await updater.check_updates_silent()
    assert updater.state.repo.error


@pytest.mark.asyncio
async def test_install_plugins_without_manager(updater: Updater) -> None:
    result = await updater.install_plugin_updates()
    assert result.status == "failed"
    assert "plugin manager not found" in result.message


@pytest.mark.asyncio
async def test_install_plugins(config: UpdaterConfig) -> None:
    manager = FakePluginManager()
    updater = Updater(config, plugins=manager)

    result = await updater.install_plugin_updates()

    assert result.ok
    assert result.message == "Successfully restored plugins from lockfile"
    assert manager.restored == [config.repo_path]
    assert updater.state.recently_updated_plugins


@pytest.mark.asyncio
async def test_update_repo_and_plugins(config: UpdaterConfig, repo_pair: RepoPair) -> None:
    manager = FakePluginManager()
    updater = Updater(config, plugins=manager)
    repo_pair.upstream_commits(1)

    result = await updater.update_repo_and_plugins()

    assert result.ok
    assert result.message == "Successfully pulled changes from origin/main. Plugins restored from lockfile"
    assert manager.restored == [config.repo_path]
    assert updater.state.has_recent_updates()


@pytest.mark.asyncio
async def test_release_details(updater: Updater, repo_pair: RepoPair) -> None:
    local = repo_pair.local
    local.tag("v1.0.0")
    local.add_and_commit("init.lua", "-- config\n", "Add init", date="2099-01-01T00:00:00+0000")
    local.tag("v1.1.0")

    details = await updater.release_details("v1.1.0")
    assert details.previous_tag == "v1.0.0"
    assert details.files_changed == 1

    oldest = await updater.release_details("v1.0.0")
    assert oldest.previous_tag is None


@pytest.mark.asyncio
async def test_refresh_silent_and_release_tags(updater: Updater, repo_pair: RepoPair) -> None:
    repo_pair.local.tag("v1.0.0")

    assert await updater.refresh_silent()
    assert updater.state.has_cached_data

    tags = await updater.release_tags()
    assert [t.name for t in tags] == ["v1.0.0"]
    assert tags[0].commit is not None
