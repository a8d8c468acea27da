"""Tests for release tag resolution and version switching."""

from __future__ import annotations

import shlex
import sys
from typing import TYPE_CHECKING

import pytest

from repo_updater.core.errors import ValidationError
from repo_updater.core.plugins import CommandToolRestorer, NullPluginManager, NullToolRestorer
from repo_updater.core.versions import VersionResolver
from repo_updater.models.release import GitHubRelease

if TYPE_CHECKING:
    from repo_updater.core.query import RepositoryQueryEngine
    from tests.conftest import RepoPair
    from tests.repo_controller import RepositoryController

RELEASES = {
    "v1.0.0": "2024-01-01T00:00:00+0000",
    "v1.1.0": "2024-02-01T00:00:00+0000",
    "v2.0.0": "2024-03-01T00:00:00+0000",
}


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _release(repo: RepositoryController, tag: str, date: str) -> str:
    commit = repo.add_and_commit(f"{tag}.txt", f"{tag}\n", f"Release {tag}", date=date)
    repo.tag(tag)
    return commit


@pytest.fixture
def releases(repo_pair: RepoPair) -> dict[str, str]:
    return {tag: _release(repo_pair.local, tag, date) for tag, date in RELEASES.items()}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def resolver(query: RepositoryQueryEngine, clock: FakeClock) -> VersionResolver:
    return VersionResolver(query, NullPluginManager(), NullToolRestorer(), clock=clock)


@pytest.mark.asyncio
@pytest.mark.usefixtures("releases")
async def test_available_versions_are_cached(
    resolver: VersionResolver, repo_pair: RepoPair, clock: FakeClock
) -> None:
    assert await resolver.available_versions() == ["v2.0.0", "v1.1.0", "v1.0.0"]

    _release(repo_pair.local, "v3.0.0", "2024-04-01T00:00:00+0000")
    assert await resolver.available_versions() == ["v2.0.0", "v1.1.0", "v1.0.0"]

    clock.now += resolver.config.version_cache_ttl + 1
    assert (await resolver.available_versions())[0] == "v3.0.0"


@pytest.mark.asyncio
@pytest.mark.usefixtures("releases")
async def test_force_and_invalidate_bypass_cache(resolver: VersionResolver, repo_pair: RepoPair) -> None:
    await resolver.available_versions()
    _release(repo_pair.local, "v3.0.0", "2024-04-01T00:00:00+0000")
    assert (await resolver.available_versions(force=True))[0] == "v3.0.0"

    _release(repo_pair.local, "v4.0.0", "2024-05-01T00:00:00+0000")
    resolver.invalidate()
    assert (await resolver.available_versions())[0] == "v4.0.0"


@pytest.mark.asyncio
@pytest.mark.usefixtures("releases")
async def test_completion_list_filters_cached_tags(resolver: VersionResolver) -> None:
    assert resolver.completion_list("v1") == []
    await resolver.available_versions()
    assert resolver.completion_list("v1") == ["v1.1.0", "v1.0.0"]
    assert resolver.completion_list() == ["v2.0.0", "v1.1.0", "v1.0.0"]


@pytest.mark.asyncio
async def test_switch_to_version(resolver: VersionResolver, repo_pair: RepoPair, releases: dict[str, str]) -> None:
    result = await resolver.switch_to_version("v1.0.0")
    assert result.message == "Switched to v1.0.0"
    assert result.warnings == []
    assert repo_pair.local.head() == releases["v1.0.0"]
    assert repo_pair.local.branch() == "HEAD"


@pytest.mark.asyncio
async def test_switch_refuses_dirty_tree(
    resolver: VersionResolver, repo_pair: RepoPair, releases: dict[str, str]
) -> None:
    repo_pair.local.add_file("README.md", "# Edited\n")
    with pytest.raises(ValidationError, match="uncommitted changes exist"):
        await resolver.switch_to_version("v1.0.0")
    assert repo_pair.local.head() == releases["v2.0.0"]


@pytest.mark.asyncio
@pytest.mark.usefixtures("releases")
async def test_switch_to_unknown_version(resolver: VersionResolver) -> None:
    expected = r"^Version v9\.9\.9 not found\. Available: v2\.0\.0, v1\.1\.0, v1\.0\.0$"
    with pytest.raises(ValidationError, match=expected):
        await resolver.switch_to_version("v9.9.9")


@pytest.mark.asyncio
async def test_switch_rejects_option_like_tag(resolver: VersionResolver) -> None:
    with pytest.raises(ValidationError, match="Invalid ref name"):
        await resolver.switch_to_version("--orphan")


@pytest.mark.asyncio
async def test_switch_picks_up_new_tag_without_waiting(resolver: VersionResolver, repo_pair: RepoPair) -> None:
    assert await resolver.available_versions() == []
    commit = _release(repo_pair.local, "v1.0.0", "2024-01-01T00:00:00+0000")
    repo_pair.local.add_and_commit("after.txt", "x\n", "after")

    await resolver.switch_to_version("v1.0.0")
    assert repo_pair.local.head() == commit


@pytest.mark.asyncio
async def test_restore_failure_keeps_checkout(
    query: RepositoryQueryEngine, repo_pair: RepoPair, releases: dict[str, str]
) -> None:
    failing = CommandToolRestorer(f"{shlex.quote(sys.executable)} -c 'import sys; sys.exit(1)'", timeout=30)
    resolver = VersionResolver(query, NullPluginManager(), failing)

    result = await resolver.switch_to_version("v1.1.0")

    assert repo_pair.local.head() == releases["v1.1.0"]
    assert len(result.warnings) == 1
    assert result.warnings[0].startswith("Tool restore failed")


@pytest.mark.asyncio
async def test_switch_to_latest(resolver: VersionResolver, repo_pair: RepoPair, releases: dict[str, str]) -> None:
    repo_pair.local.checkout(releases["v1.0.0"])
    result = await resolver.switch_to_latest()
    assert result.tag == "v2.0.0"
    assert repo_pair.local.head() == releases["v2.0.0"]


@pytest.mark.asyncio
async def test_switch_to_latest_without_tags(resolver: VersionResolver) -> None:
    with pytest.raises(ValidationError, match="No release tags found"):
        await resolver.switch_to_latest()


@pytest.mark.asyncio
@pytest.mark.usefixtures("releases")
async def test_release_status_ahead_of_release(resolver: VersionResolver, repo_pair: RepoPair) -> None:
    repo_pair.local.add_and_commit("after.txt", "x\n", "after release")

    status = await resolver.release_status()

    assert status.current_release == "v2.0.0"
    assert status.current_tag is None
    assert not status.is_detached_head
    assert status.latest_release == "v2.0.0"
    assert status.releases_since_current == []
    assert status.releases_before_current == ["v1.1.0", "v1.0.0"]
    assert status.commits_since_release == 1
    assert [c.message for c in status.commits_since_release_list] == ["after release"]
    assert status.release_commit is not None
    assert status.release_commit.message == "Release v2.0.0"
    assert status.release_commit.date == "2024-03-01"


@pytest.mark.asyncio
async def test_release_status_on_old_tag(
    resolver: VersionResolver, repo_pair: RepoPair, releases: dict[str, str]
) -> None:
    repo_pair.local.checkout(releases["v1.0.0"])

    status = await resolver.release_status()

    assert status.current_release == "v1.0.0"
    assert status.current_tag == "v1.0.0"
    assert status.is_detached_head
    assert status.releases_since_current == ["v2.0.0", "v1.1.0"]
    assert status.has_new_release
    assert status.commits_since_release == 0


@pytest.mark.asyncio
@pytest.mark.usefixtures("releases")
async def test_release_tags_carry_commit_and_github_metadata(resolver: VersionResolver) -> None:
    github = {"v1.1.0": GitHubRelease(tag_name="v1.1.0", name="Spring cleanup", prerelease=True)}

    tags = await resolver.release_tags(github)

    assert [t.name for t in tags] == ["v2.0.0", "v1.1.0", "v1.0.0"]
    assert tags[0].date == "2024-03-01"
    assert tags[0].commit is not None
    assert tags[0].commit.message == "Release v2.0.0"
    assert tags[0].github is None
    assert tags[1].github is not None
    assert tags[1].github.name == "Spring cleanup"
